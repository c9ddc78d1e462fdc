"""Tests for OCR engines and response parsing."""

from __future__ import annotations

import asyncio
import json
import random
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from config import Settings
from errors import OcrError
from ocr import (
    SAMPLE_CARDS,
    CardImage,
    MockOcrEngine,
    OpenAIVisionOcrEngine,
    build_ocr_engine,
    parse_ocr_response,
    strip_code_fence,
)


class _FakeCompletions:
    def __init__(self, content: str | None = None, error: Exception | None = None, empty: bool = False) -> None:
        self.content = content
        self.error = error
        self.empty = empty
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        if self.empty:
            return SimpleNamespace(choices=[])
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(completions: _FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_strip_code_fence() -> None:
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('{"a": 1}') == '{"a": 1}'


def test_parse_response_normalises_fields() -> None:
    raw = "```json\n" + json.dumps({
        "company_name": "株式会社サンプル",
        "person_name": "  ",
        "email": "taro@example.com",
        "phone": None,
        "confidence": 0.73,
        "unexpected": "ignored",
    }, ensure_ascii=False) + "\n```"

    result = parse_ocr_response(raw)

    assert result.raw == raw
    assert result.confidence == pytest.approx(0.73)
    assert result.extracted_fields.company_name == "株式会社サンプル"
    assert result.extracted_fields.person_name is None
    assert result.extracted_fields.phone is None
    assert result.extracted_fields.detected() == ["company_name", "email"]


@pytest.mark.parametrize(("value", "expected"), [(1.7, 1.0), (-0.2, 0.0), ("0.4", 0.4), ("high", 0.0), (None, 0.0)])
def test_parse_response_clamps_confidence(value, expected: float) -> None:
    result = parse_ocr_response(json.dumps({"email": "a@b.c", "confidence": value}))

    assert result.confidence == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["not json", "[1, 2, 3]", ""])
def test_parse_response_rejects_garbage(raw: str) -> None:
    with pytest.raises(OcrError):
        parse_ocr_response(raw)


def test_card_image_data_uri() -> None:
    assert CardImage(b"abc", "card.JPG").data_uri() == "data:image/jpeg;base64,YWJj"
    assert CardImage(b"abc", "card.png").data_uri().startswith("data:image/png;base64,")
    assert CardImage(b"abc", "card", mime_type="image/webp").data_uri().startswith("data:image/webp;")


def test_card_image_from_upload() -> None:
    upload = SimpleNamespace(getvalue=lambda: b"xyz", name="front.jpeg", type="image/jpeg")

    image = CardImage.from_upload(upload)

    assert image == CardImage(b"xyz", "front.jpeg", "image/jpeg")
    assert image.ref == "front.jpeg"


def test_mock_engine_returns_a_sample() -> None:
    engine = MockOcrEngine(delay=0, rng=random.Random(42))

    result = asyncio.run(engine.extract(CardImage(b"", "card.png")))

    assert result.extracted_fields.as_contact() in SAMPLE_CARDS
    assert 0.85 <= result.confidence <= 0.99
    assert json.loads(result.raw)["email"] == result.extracted_fields.email


def test_openai_engine_sends_image_and_parses_answer() -> None:
    completions = _FakeCompletions(content='{"email": "m.sato@global-systems.jp", "confidence": 0.91}')
    engine = OpenAIVisionOcrEngine(model="gpt-4o", client=_fake_client(completions))

    result = asyncio.run(engine.extract(CardImage(b"abc", "card.png")))

    assert result.extracted_fields.email == "m.sato@global-systems.jp"
    assert result.confidence == pytest.approx(0.91)
    request = completions.requests[0]
    assert request["model"] == "gpt-4o"
    assert request["temperature"] == 0
    image_part = request["messages"][1]["content"][0]
    assert image_part["image_url"]["url"] == "data:image/png;base64,YWJj"


def test_openai_engine_wraps_api_errors() -> None:
    completions = _FakeCompletions(error=OpenAIError("rate limited"))
    engine = OpenAIVisionOcrEngine(client=_fake_client(completions))

    with pytest.raises(OcrError, match="rate limited"):
        asyncio.run(engine.extract(CardImage(b"abc", "card.png")))


def test_openai_engine_rejects_empty_completion() -> None:
    engine = OpenAIVisionOcrEngine(client=_fake_client(_FakeCompletions(empty=True)))

    with pytest.raises(OcrError, match="no choices"):
        asyncio.run(engine.extract(CardImage(b"abc", "card.png")))

def test_build_ocr_engine() -> None:
    assert isinstance(build_ocr_engine(Settings(_env_file=None)), MockOcrEngine)
    engine = build_ocr_engine(Settings(_env_file=None, ocr_engine="openai", openai_model="gpt-4o-mini"))
    assert isinstance(engine, OpenAIVisionOcrEngine)
    assert engine.model == "gpt-4o-mini"
