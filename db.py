# db.py
import threading
from typing import List, Optional

from models import BusinessCard


class InMemoryCardStore:
    """Ordered card collection, newest insert first.

    Every method runs under one re-entrant lock; callers that need several
    steps to be atomic hold ``store.lock`` around them.
    """

    def __init__(self, cards: Optional[List[BusinessCard]] = None):
        self._cards: List[BusinessCard] = list(cards or [])
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self._cards)

    def snapshot(self) -> List[BusinessCard]:
        with self.lock:
            return list(self._cards)

    def get(self, card_id: str) -> Optional[BusinessCard]:
        with self.lock:
            for card in self._cards:
                if card.id == card_id:
                    return card
            return None

    def contains(self, card_id: str) -> bool:
        return self.get(card_id) is not None

    def insert_first(self, card: BusinessCard) -> None:
        with self.lock:
            if self.contains(card.id):
                raise KeyError(f"duplicate card id: {card.id}")
            self._cards.insert(0, card)

    def replace(self, card: BusinessCard) -> bool:
        with self.lock:
            for i, existing in enumerate(self._cards):
                if existing.id == card.id:
                    self._cards[i] = card
                    return True
            return False

    def remove(self, card_id: str) -> bool:
        with self.lock:
            before = len(self._cards)
            self._cards = [c for c in self._cards if c.id != card_id]
            return len(self._cards) < before
