# repository.py
"""Card repository: the only owner of the card collection."""

import uuid
from datetime import datetime, timezone, tzinfo
from typing import Callable, List, Optional

from loguru import logger
from pydantic import ValidationError

from db import InMemoryCardStore
from dedupe import DuplicateMatcher
from errors import InvalidPatchError, InvalidQueryError
from export import to_delimited
from models import (
    PATCHABLE_FIELDS,
    SEARCH_FIELDS,
    BusinessCard,
    CardPatch,
    CardStatus,
    DuplicateCandidate,
    NewCard,
    Page,
    StatusFilter,
)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _parse_status(status: Optional[StatusFilter]) -> Optional[CardStatus]:
    if status is None or status == "all":
        return None
    try:
        return CardStatus(status)
    except ValueError:
        raise InvalidQueryError(f"unknown status filter: {status!r}") from None


def _matches_search(card: BusinessCard, needle: str) -> bool:
    return any(needle in getattr(card, name).lower() for name in SEARCH_FIELDS)


class CardRepository:
    def __init__(
        self,
        store: Optional[InMemoryCardStore] = None,
        matcher: Optional[DuplicateMatcher] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_id,
        export_locale: str = "ja",
        export_tz: tzinfo = timezone.utc,
    ):
        self.store = store if store is not None else InMemoryCardStore()
        self.matcher = matcher or DuplicateMatcher()
        self._clock = clock
        self._id_factory = id_factory
        self.export_locale = export_locale
        self.export_tz = export_tz

    # ---- 読み取り -------------------------------------------------------

    def query(
        self,
        page: int,
        page_size: int,
        search: Optional[str] = None,
        status: Optional[StatusFilter] = "all",
    ) -> Page[BusinessCard]:
        if page < 1:
            raise InvalidQueryError(f"page must be >= 1, got {page}")
        if page_size <= 0:
            raise InvalidQueryError(f"page_size must be > 0, got {page_size}")
        wanted = _parse_status(status)
        logger.debug("query page={} size={} search={!r} status={}", page, page_size, search, status)

        cards = self.store.snapshot()
        if search:
            needle = search.lower()
            cards = [c for c in cards if _matches_search(c, needle)]
        if wanted is not None:
            cards = [c for c in cards if c.status == wanted]
        # 安定ソート: created_at が同じなら挿入順（新しい順）を保つ
        cards.sort(key=lambda c: c.created_at, reverse=True)

        start = (page - 1) * page_size
        return Page[BusinessCard](
            data=cards[start:start + page_size],
            total=len(cards),
            page=page,
            page_size=page_size,
        )

    def get_by_id(self, card_id: str) -> Optional[BusinessCard]:
        return self.store.get(card_id)

    def all(self) -> List[BusinessCard]:
        return self.store.snapshot()

    def count(self) -> int:
        return len(self.store)

    def exists(self, email: str) -> bool:
        return bool(self.find_duplicates(email))

    def find_duplicates(self, email: str, exclude_id: Optional[str] = None) -> List[DuplicateCandidate]:
        if not email:
            return []
        return self.matcher.match({"email": email}, self.store.snapshot(), exclude_id=exclude_id)

    # ---- 書き込み -------------------------------------------------------

    def create(self, new_card: NewCard) -> BusinessCard:
        with self.store.lock:
            card_id = self._id_factory()
            while self.store.contains(card_id):
                card_id = self._id_factory()
            now = self._clock()
            card = BusinessCard(
                **new_card.model_dump(exclude={"id", "created_at", "updated_at"}),
                id=card_id,
                created_at=now,
                updated_at=now,
            )
            self.store.insert_first(card)
        logger.info("Created card {} ({})", card.id, card.email or "no email")
        return card

    def update(self, card_id: str, patch: CardPatch) -> Optional[BusinessCard]:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise InvalidPatchError(f"fields cannot be patched: {', '.join(sorted(unknown))}")

        with self.store.lock:
            current = self.store.get(card_id)
            if current is None:
                logger.info("Update skipped, card {} not found", card_id)
                return None
            data = current.model_dump()
            data.update(patch)
            data["updated_at"] = max(self._clock(), current.updated_at)
            try:
                updated = BusinessCard.model_validate(data)
            except ValidationError as exc:
                raise InvalidPatchError(str(exc)) from exc
            self.store.replace(updated)
        logger.info("Updated card {} fields={}", card_id, sorted(patch))
        return updated

    def set_status(self, card_id: str, status: CardStatus) -> Optional[BusinessCard]:
        return self.update(card_id, {"status": CardStatus(status)})

    def delete(self, card_id: str) -> bool:
        removed = self.store.remove(card_id)
        if removed:
            logger.info("Deleted card {}", card_id)
        return removed

    # ---- エクスポート -----------------------------------------------------

    def export_delimited(self, locale: Optional[str] = None, tz: Optional[tzinfo] = None) -> str:
        return to_delimited(
            self.store.snapshot(),
            locale or self.export_locale,
            tz or self.export_tz,
        )
