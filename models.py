# models.py
import math
from datetime import datetime
from enum import Enum
from typing import Generic, List, Literal, Optional, TypedDict, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

T = TypeVar("T")

# 表示・エクスポート・検索で共通に使う順序
CONTACT_FIELDS = (
    "company_name",
    "person_name",
    "department",
    "position",
    "email",
    "phone",
    "address",
    "website",
)

SEARCH_FIELDS = ("company_name", "person_name", "email", "department", "position")


class CardStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"


StatusFilter = Union[CardStatus, Literal["all"]]


class ContactFields(TypedDict, total=False):
    company_name: str
    person_name: str
    department: str    # 部署
    position: str      # 役職
    email: str
    phone: str
    address: str
    website: str


class ExtractedFields(BaseModel):
    """Fields detected by OCR. ``None`` means the field was not detected."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    company_name: Optional[str] = None
    person_name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None

    @field_validator(*CONTACT_FIELDS, mode="before")
    @classmethod
    def empty_to_none(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def as_contact(self) -> ContactFields:
        # 未検出は空文字としてフォームに流す
        return {name: getattr(self, name) or "" for name in CONTACT_FIELDS}

    def detected(self) -> List[str]:
        return [name for name in CONTACT_FIELDS if getattr(self, name) is not None]


class OcrResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extracted_fields: ExtractedFields = Field(default_factory=ExtractedFields)

    @classmethod
    def empty(cls) -> "OcrResult":
        return cls(raw="", confidence=0.0, extracted_fields=ExtractedFields())


class NewCard(BaseModel):
    """Card payload accepted by ``CardRepository.create``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    image_ref: str = ""
    ocr: OcrResult = Field(default_factory=OcrResult.empty)
    company_name: str = ""
    person_name: str = ""
    department: str = ""
    position: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    website: str = ""
    status: CardStatus = CardStatus.UNVERIFIED

    @field_validator(*CONTACT_FIELDS, mode="before")
    @classmethod
    def none_to_empty(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value)

    def contact(self) -> ContactFields:
        return {name: getattr(self, name) for name in CONTACT_FIELDS}


class BusinessCard(NewCard):
    id: str
    created_at: datetime
    updated_at: datetime


class CardPatch(TypedDict, total=False):
    # 指定されたキーだけ上書きする。"" は明示的なクリア
    company_name: str
    person_name: str
    department: str
    position: str
    email: str
    phone: str
    address: str
    website: str
    status: CardStatus
    image_ref: str
    ocr: OcrResult


PATCHABLE_FIELDS = frozenset(CardPatch.__annotations__)


class DuplicateCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    card: BusinessCard
    similarity: float
    matched_fields: List[str]


class Page(BaseModel, Generic[T]):
    data: List[T]
    total: int
    page: int
    page_size: int

    @computed_field
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size)


class Principal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    display_name: str
