# ocr.py
import asyncio
import base64
import json
import random
from dataclasses import dataclass
from typing import List, Optional, Protocol

from loguru import logger
from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from config import Settings
from errors import OcrError
from models import CONTACT_FIELDS, ContactFields, ExtractedFields, OcrResult


@dataclass(frozen=True)
class CardImage:
    data: bytes
    name: str = "unknown"
    mime_type: Optional[str] = None

    @classmethod
    def from_upload(cls, upload) -> "CardImage":
        # Streamlit の UploadedFile / camera_input をそのまま受け取る
        return cls(
            data=upload.getvalue(),
            name=getattr(upload, "name", "unknown"),
            mime_type=getattr(upload, "type", None),
        )

    @property
    def ref(self) -> str:
        return self.name

    def data_uri(self) -> str:
        mime_type = self.mime_type
        if not mime_type:
            # ファイル名から MIME タイプを判定
            filename = self.name.lower()
            mime_type = "image/jpeg" if filename.endswith((".jpg", ".jpeg")) else "image/png"
        return f"data:{mime_type};base64," + base64.b64encode(self.data).decode()


class OcrEngine(Protocol):
    async def extract(self, image: CardImage) -> OcrResult:
        """Return the extraction for ``image`` or raise ``OcrError``."""
        ...


SYSTEM_PROMPT = """
あなたは名刺画像のテキストを正確に抽出するOCRエンジンです。
以下のフィールドを含むJSON形式でのみ回答してください：

{
  "company_name": "会社名",
  "person_name": "人物名",
  "department": "部署名",
  "position": "役職",
  "email": "email@example.com",
  "phone": "電話番号",
  "address": "会社住所",
  "website": "会社URL",
  "confidence": 0.0
}

存在しないフィールドはnullとしてください。
confidence には読み取り全体の確からしさを 0.0〜1.0 で入れてください。
"""


def strip_code_fence(content: str) -> str:
    # ```json ... ``` で囲まれた回答を剥がす
    text = content.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else ""
        last_backticks = text.rfind("```")
        if last_backticks != -1:
            text = text[:last_backticks]
    return text.strip()


def _clamp(value: object) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def parse_ocr_response(raw_content: str) -> OcrResult:
    """Turn the model's JSON answer into an ``OcrResult``."""
    try:
        payload = json.loads(strip_code_fence(raw_content))
    except json.JSONDecodeError as exc:
        raise OcrError(f"OCR response is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise OcrError("OCR response is not a JSON object")
    try:
        fields = ExtractedFields.model_validate({k: payload.get(k) for k in CONTACT_FIELDS})
    except ValidationError as exc:
        raise OcrError(f"OCR response has invalid fields: {exc}") from exc
    return OcrResult(raw=raw_content, confidence=_clamp(payload.get("confidence")), extracted_fields=fields)


class OpenAIVisionOcrEngine:
    def __init__(self, model: str = "gpt-4o", client: Optional[AsyncOpenAI] = None):
        self.model = model
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # OPENAI_API_KEY は事前に export / set しておく
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def extract(self, image: CardImage) -> OcrResult:
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": [
                        {"type": "image_url", "image_url": {"url": image.data_uri()}}
                    ]},
                ],
            )
        except OpenAIError as exc:
            raise OcrError(f"OpenAI request failed: {exc}") from exc

        if not resp.choices:
            raise OcrError("OpenAI response has no choices")
        raw_content = resp.choices[0].message.content or ""
        logger.debug("OCR response for {}: {}", image.name, raw_content)
        return parse_ocr_response(raw_content)


SAMPLE_CARDS: List[ContactFields] = [
    {
        "company_name": "株式会社サンプルテック",
        "person_name": "山田 太郎",
        "department": "営業部",
        "position": "主任",
        "email": "taro.yamada@sample-tech.co.jp",
        "phone": "03-1234-5678",
        "address": "東京都千代田区丸の内1-1-1",
        "website": "https://sample-tech.co.jp",
    },
    {
        "company_name": "グローバルシステムズ株式会社",
        "person_name": "佐藤 美咲",
        "department": "技術開発部",
        "position": "エンジニア",
        "email": "m.sato@global-systems.jp",
        "phone": "06-9999-8888",
        "address": "大阪府大阪市中央区本町2-3-4",
        "website": "https://global-systems.jp",
    },
    {
        "company_name": "イノベーション株式会社",
        "person_name": "鈴木 健太",
        "department": "企画部",
        "position": "マネージャー",
        "email": "k.suzuki@innovation.co.jp",
        "phone": "045-555-1234",
        "address": "神奈川県横浜市西区北幸1-2-3",
        "website": "https://innovation.co.jp",
    },
]


class MockOcrEngine:
    """Picks one of the sample cards after a short delay."""

    def __init__(self, delay: float = 2.0, rng: Optional[random.Random] = None,
                 samples: Optional[List[ContactFields]] = None):
        self.delay = delay
        self.rng = rng or random.Random()
        self.samples = samples or SAMPLE_CARDS

    async def extract(self, image: CardImage) -> OcrResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        fields = self.rng.choice(self.samples)
        return OcrResult(
            raw=json.dumps(fields, ensure_ascii=False),
            confidence=0.85 + self.rng.random() * 0.14,
            extracted_fields=ExtractedFields.model_validate(fields),
        )


class FixedOcrEngine:
    """Always returns the same result. Records the images it was given."""

    def __init__(self, result: OcrResult):
        self.result = result
        self.calls: List[CardImage] = []

    async def extract(self, image: CardImage) -> OcrResult:
        self.calls.append(image)
        return self.result


class FailingOcrEngine:
    def __init__(self, message: str = "OCR engine unavailable"):
        self.message = message

    async def extract(self, image: CardImage) -> OcrResult:
        raise OcrError(self.message)


def build_ocr_engine(settings: Settings) -> OcrEngine:
    if settings.ocr_engine == "openai":
        return OpenAIVisionOcrEngine(model=settings.openai_model)
    return MockOcrEngine(delay=settings.mock_ocr_delay)
