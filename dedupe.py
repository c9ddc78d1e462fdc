# dedupe.py
"""Weighted duplicate matching between an incoming card and stored cards."""

from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping, Optional, Sequence

from models import BusinessCard, DuplicateCandidate


def _normalized(value: Optional[str]) -> str:
    return (value or "").lower()


def casefold_equal(probe: str, stored: str) -> bool:
    a, b = _normalized(probe), _normalized(stored)
    return bool(a) and a == b


def digits_equal(probe: str, stored: str) -> bool:
    # 電話番号はハイフン・空白を無視して比較
    a = "".join(ch for ch in probe or "" if ch.isdigit())
    b = "".join(ch for ch in stored or "" if ch.isdigit())
    return bool(a) and a == b


@dataclass(frozen=True)
class FieldComparator:
    field: str
    weight: float
    equals: Callable[[str, str], bool] = casefold_equal

    def matches(self, probe: Mapping[str, str], card: BusinessCard) -> bool:
        value = probe.get(self.field)
        if not value:
            return False
        return self.equals(value, getattr(card, self.field))


EMAIL_COMPARATOR = FieldComparator("email", 0.8)
PHONE_COMPARATOR = FieldComparator("phone", 0.1, digits_equal)
COMPANY_COMPARATOR = FieldComparator("company_name", 0.1)

DEFAULT_COMPARATORS = (EMAIL_COMPARATOR,)


class DuplicateMatcher:
    def __init__(self, comparators: Sequence[FieldComparator] = DEFAULT_COMPARATORS):
        if not comparators:
            raise ValueError("at least one comparator is required")
        self.comparators = tuple(comparators)

    def score(self, probe: Mapping[str, str], card: BusinessCard) -> Optional[DuplicateCandidate]:
        matched: List[str] = []
        similarity = 0.0
        for comparator in self.comparators:
            if comparator.matches(probe, card):
                matched.append(comparator.field)
                similarity += comparator.weight
        if not matched:
            return None
        return DuplicateCandidate(card=card, similarity=round(similarity, 6), matched_fields=matched)

    def match(
        self,
        probe: Mapping[str, str],
        cards: Iterable[BusinessCard],
        exclude_id: Optional[str] = None,
    ) -> List[DuplicateCandidate]:
        """Return candidates by similarity, newest card first on ties."""
        found = []
        for card in cards:
            if exclude_id is not None and card.id == exclude_id:
                continue
            candidate = self.score(probe, card)
            if candidate is not None:
                found.append(candidate)
        found.sort(key=lambda c: c.card.created_at, reverse=True)
        found.sort(key=lambda c: c.similarity, reverse=True)
        return found
