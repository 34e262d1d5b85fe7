"""
Flat checklist view over a scope's cards.

Same cards as the board; `completed` only matters here. Cards added from
the checklist have no column until someone drags them onto the board.
"""
import logging
from typing import List, Optional

from .schema import Card, Scope, ValidationError
from .store import BoardStore, StoreError

logger = logging.getLogger(__name__)


class Checklist:
    """Add / tick / remove to-dos for one scope."""

    def __init__(self, store: BoardStore, scope: Scope):
        self.store = store
        self.scope = scope
        self.cards: List[Card] = []

    def reload(self) -> bool:
        try:
            cards = self.store.list_cards(self.scope)
        except StoreError as e:
            logger.error(f"Checklist load failed for {self.scope}: {e}")
            return False
        # store returns creation order
        self.cards = list(reversed(cards))
        return True

    def items(self) -> List[Card]:
        """Newest first."""
        self.reload()
        return list(self.cards)

    def add(self, title: str) -> Optional[str]:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        try:
            card_id = self.store.create_card(self.scope, title)
        except StoreError as e:
            logger.error(f"Error creating to-do: {e}")
            return None
        self.reload()
        return card_id

    def toggle(self, card_id: str) -> Optional[bool]:
        """Flip `completed`. Returns the new value, or None if the write failed."""
        card = next((c for c in self.cards if c.card_id == card_id), None)
        if card is None:
            try:
                card = self.store.get_card(card_id)
            except StoreError as e:
                logger.error(f"Error loading to-do {card_id}: {e}")
                return None
        if card is None:
            logger.warning(f"To-do {card_id} not found")
            return None

        completed = not card.completed
        try:
            self.store.update_card(card_id, {"completed": completed})
        except StoreError as e:
            logger.error(f"Error updating to-do {card_id}: {e}")
            return None
        self.reload()
        return completed

    def remove(self, card_id: str) -> bool:
        try:
            self.store.delete_card(card_id)
        except StoreError as e:
            logger.error(f"Error deleting to-do {card_id}: {e}")
            return False
        self.reload()
        return True
