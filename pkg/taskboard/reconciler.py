"""
Board reconciler: drag-and-drop state machine for one board.

Gesture lifecycle:
  IDLE → DRAGGING_COLUMN | DRAGGING_CARD → (hover*) → released → IDLE

Hover only touches the in-memory board. Release persists the move, then
either re-reads cards (success) or throws the optimistic copy away and
reloads everything (failure). The state returns to IDLE before any
storage call, so a new gesture may start while a previous write is still
running. Overlapping writes to the same card: last one wins.

The board is never patched in place; every change builds a new Board.
"""
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Any

from .schema import Card, Column, Scope, ValidationError
from .store import BoardStore, StoreError

logger = logging.getLogger(__name__)


class DragState(Enum):
    """Where the current gesture is."""
    IDLE = "idle"
    DRAGGING_COLUMN = "dragging_column"
    DRAGGING_CARD = "dragging_card"


class DragError(Exception):
    """Raised when a gesture cannot start."""
    pass


def array_move(items: Sequence, old_index: int, new_index: int) -> list:
    """Remove the item at old_index and reinsert it at new_index."""
    moved = list(items)
    moved.insert(new_index, moved.pop(old_index))
    return moved


@dataclass(frozen=True)
class Board:
    """Columns in display order plus every card of one scope."""

    columns: Tuple[Column, ...] = ()
    cards: Tuple[Card, ...] = ()

    @property
    def column_ids(self) -> List[str]:
        return [c.column_id for c in self.columns]

    def find_column(self, column_id: Optional[str]) -> Optional[Column]:
        return next((c for c in self.columns if c.column_id == column_id), None)

    def find_card(self, card_id: Optional[str]) -> Optional[Card]:
        return next((c for c in self.cards if c.card_id == card_id), None)

    def column_index(self, column_id: str) -> int:
        return self.column_ids.index(column_id)

    def cards_in(self, column_id: str) -> List[Card]:
        return [c for c in self.cards if c.status == column_id]

    def unassigned(self) -> List[Card]:
        """Cards with no status, or a status naming a deleted column."""
        live = set(self.column_ids)
        return [c for c in self.cards if c.status not in live]

    def with_card(self, card: Card) -> "Board":
        cards = tuple(card if c.card_id == card.card_id else c for c in self.cards)
        return replace(self, cards=cards)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [
                dict(col.to_dict(), cards=[c.to_dict() for c in self.cards_in(col.column_id)])
                for col in self.columns
            ],
            "unassigned": [c.to_dict() for c in self.unassigned()],
        }


class BoardReconciler:
    """
    Owns the in-memory board for one scope during drag sessions.

    `confirm` is asked before destructive calls (column delete); it gets a
    prompt string and returns True to proceed. Without one, deletes are denied.
    """

    def __init__(self, store: BoardStore, scope: Scope,
                 confirm: Optional[Callable[[str], bool]] = None):
        self.store = store
        self.scope = scope
        self.confirm = confirm
        self.board = Board()
        self.state = DragState.IDLE
        self.active_id: Optional[str] = None
        self._snapshot: Optional[Board] = None   # board at drag start
        self._origin_status: Optional[str] = None

    # ──────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────

    def load(self) -> bool:
        """Replace the board with a fresh read of columns and cards."""
        try:
            columns = self.store.list_columns(self.scope)
            cards = self.store.list_cards(self.scope)
        except StoreError as e:
            logger.error(f"Board load failed for {self.scope}: {e}")
            return False
        self.board = Board(columns=tuple(columns), cards=tuple(cards))
        return True

    def refresh_cards(self) -> bool:
        """Re-read cards only; columns are left as they are."""
        try:
            cards = self.store.list_cards(self.scope)
        except StoreError as e:
            logger.error(f"Card refresh failed for {self.scope}: {e}")
            return False
        self.board = replace(self.board, cards=tuple(cards))
        return True

    # ──────────────────────────────────────────
    # Gesture
    # ──────────────────────────────────────────

    def begin_drag(self, item_id: str) -> DragState:
        """Start a gesture on a column or a card."""
        if self.state != DragState.IDLE:
            raise DragError(f"Already dragging {self.active_id}")

        if self.board.find_column(item_id):
            self.state = DragState.DRAGGING_COLUMN
        elif self.board.find_card(item_id):
            self.state = DragState.DRAGGING_CARD
            self._origin_status = self.board.find_card(item_id).status
        else:
            raise DragError(f"Unknown drag target: {item_id}")

        self.active_id = item_id
        self._snapshot = self.board
        logger.debug(f"Drag start {self.state.value}: {item_id}")
        return self.state

    def hover(self, over_id: Optional[str]) -> None:
        """Live preview. Idempotent, no I/O."""
        if self.state == DragState.DRAGGING_COLUMN:
            columns = self._reordered_columns(self._snapshot, self.active_id, over_id)
            if columns is not None:
                self.board = replace(self.board, columns=columns)

        elif self.state == DragState.DRAGGING_CARD:
            card = self.board.find_card(self.active_id)
            target = self._target_column(over_id)
            if card and target and target != card.status:
                self.board = self.board.with_card(replace(card, status=target))

    def end_drag(self, over_id: Optional[str]) -> bool:
        """
        Release the gesture and persist it.

        Returns True when the write succeeded. The state is IDLE afterwards
        whatever happens.
        """
        state, active_id = self.state, self.active_id
        snapshot, origin_status = self._snapshot, self._origin_status
        self._reset()

        if state == DragState.DRAGGING_COLUMN:
            return self._drop_column(snapshot, active_id, over_id)
        if state == DragState.DRAGGING_CARD:
            return self._drop_card(active_id, over_id, snapshot, origin_status)
        return False

    def cancel_drag(self) -> None:
        """Abort the gesture: restore the drag-start board, no persistence."""
        if self.state != DragState.IDLE and self._snapshot is not None:
            self.board = self._snapshot
        self._reset()

    def _reset(self) -> None:
        self.state = DragState.IDLE
        self.active_id = None
        self._snapshot = None
        self._origin_status = None

    @staticmethod
    def _reordered_columns(base: Optional[Board], active_id: str,
                           over_id: Optional[str]) -> Optional[Tuple[Column, ...]]:
        """
        Drag-start column order with the active column moved into over_id's
        slot, or None when over_id is not another column. Always computed
        from the drag-start board so repeated hovers give the same result.
        """
        if base is None or over_id == active_id:
            return None
        if not base.find_column(over_id) or not base.find_column(active_id):
            return None
        old_index = base.column_index(active_id)
        new_index = base.column_index(over_id)
        return tuple(array_move(base.columns, old_index, new_index))

    def _target_column(self, over_id: Optional[str]) -> Optional[str]:
        """Column a card would land in when released over `over_id`."""
        if self.board.find_column(over_id):
            return over_id
        over_card = self.board.find_card(over_id)
        if over_card and self.board.find_column(over_card.status):
            return over_card.status
        return None

    def _drop_column(self, snapshot: Optional[Board], active_id: str,
                     over_id: Optional[str]) -> bool:
        # No valid target: keep the last preview
        columns = self._reordered_columns(snapshot, active_id, over_id) or self.board.columns
        self.board = replace(self.board, columns=tuple(
            replace(col, order=index) for index, col in enumerate(columns)
        ))

        changed = [
            new for old, new in zip(columns, self.board.columns) if old.order != new.order
        ]
        ok = True
        for col in changed:
            try:
                self.store.update_column(col.column_id, {"order": col.order})
            except StoreError as e:
                # Not rolled back: the next successful write corrects it
                logger.warning(f"Column order write failed for {col.column_id}: {e}")
                ok = False
        if changed:
            logger.info(f"Column order saved ({len(changed)} changed)")
        return ok

    def _drop_card(self, card_id: str, over_id: Optional[str],
                   snapshot: Optional[Board], origin_status: Optional[str]) -> bool:
        target = self._target_column(over_id)
        if target is None:
            target = origin_status

        card = self.board.find_card(card_id)
        if card is not None and card.status != target:
            self.board = self.board.with_card(replace(card, status=target))

        try:
            self.store.update_card(card_id, {"status": target})
        except StoreError as e:
            logger.warning(f"Card move failed for {card_id}, reloading: {e}")
            if snapshot is not None:
                self.board = snapshot
            self.load()
            return False

        self.refresh_cards()
        return True

    # ──────────────────────────────────────────
    # Column / card CRUD
    # ──────────────────────────────────────────

    def add_column(self, name: str) -> Optional[str]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Column name is required")
        # One past the highest rank; the column count can collide after deletes
        next_order = max((c.order for c in self.board.columns), default=-1) + 1
        try:
            column_id = self.store.create_column(self.scope, name, next_order)
        except StoreError as e:
            logger.error(f"Error creating column: {e}")
            return None
        self.load()
        return column_id

    def rename_column(self, column_id: str, name: str) -> bool:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Column name is required")
        return self._write(lambda: self.store.update_column(column_id, {"name": name}),
                           f"renaming column {column_id}", cards_only=False)

    def delete_column(self, column_id: str) -> bool:
        """Delete after confirmation. Cards stay, now unassigned."""
        prompt = "Delete this column? All cards will remain but lose their status."
        if not self.confirm or not self.confirm(prompt):
            logger.debug(f"Column delete declined: {column_id}")
            return False
        return self._write(lambda: self.store.delete_column(column_id),
                           f"deleting column {column_id}", cards_only=False)

    def add_card(self, column_id: Optional[str], title: str,
                 assignee: Optional[str] = None) -> Optional[str]:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Card title is required")
        try:
            card_id = self.store.create_card(self.scope, title, status=column_id, assignee=assignee)
        except StoreError as e:
            logger.error(f"Error creating card: {e}")
            return None
        self.refresh_cards()
        return card_id

    def edit_card(self, card_id: str, title: str) -> bool:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Card title is required")
        return self._write(lambda: self.store.update_card(card_id, {"title": title}),
                           f"editing card {card_id}")

    def delete_card(self, card_id: str) -> bool:
        return self._write(lambda: self.store.delete_card(card_id),
                           f"deleting card {card_id}")

    def _write(self, call: Callable[[], None], label: str, cards_only: bool = True) -> bool:
        try:
            call()
        except StoreError as e:
            logger.error(f"Error {label}: {e}")
            return False
        if cards_only:
            self.refresh_cards()
        else:
            self.load()
        return True
