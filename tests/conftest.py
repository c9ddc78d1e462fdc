from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from config import Settings
from models import ExtractedFields, NewCard, OcrResult
from ocr import CardImage
from repository import CardRepository

T0 = datetime(2024, 1, 15, 1, 30, 0, tzinfo=timezone.utc)


class FakeClock:
    """Returns ``start``, then advances by ``step`` on every call."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class BlockingOcrEngine:
    """Holds the OCR call open until ``release`` is set."""

    def __init__(self, result: OcrResult):
        self.result = result
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def extract(self, image: CardImage) -> OcrResult:
        self.started.set()
        await self.release.wait()
        return self.result


def make_card(email: str = "taro@example.com", **fields) -> NewCard:
    base = {
        "company_name": "株式会社サンプル",
        "person_name": "山田 太郎",
        "department": "営業部",
        "position": "主任",
        "email": email,
        "phone": "03-1234-5678",
        "address": "東京都千代田区丸の内1-1-1",
        "website": "https://sample.example.com",
    }
    base.update(fields)
    return NewCard(**base)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository(clock: FakeClock) -> CardRepository:
    return CardRepository(clock=clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, ocr_timeout=5.0, mock_ocr_delay=0, low_confidence_threshold=0.5)


@pytest.fixture
def full_result() -> OcrResult:
    fields = ExtractedFields(
        company_name="グローバルシステムズ株式会社",
        person_name="佐藤 美咲",
        department="技術開発部",
        position="エンジニア",
        email="m.sato@global-systems.jp",
        phone="06-9999-8888",
        address="大阪府大阪市中央区本町2-3-4",
        website="https://global-systems.jp",
    )
    return OcrResult(raw=fields.model_dump_json(), confidence=0.9, extracted_fields=fields)


@pytest.fixture
def image() -> CardImage:
    return CardImage(data=b"\x89PNG fake", name="card.png")

