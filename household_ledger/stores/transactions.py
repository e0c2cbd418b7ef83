"""
Transaction Store

Ordered, most-recent-first collection of committed transactions.

DESIGN DECISION: The store is a plain in-memory list owned by the Ledger.
It knows nothing about the cloud; every mutation calls the `on_change`
hook and the sync coordinator decides when to persist.
"""

from typing import Callable, Iterable, Optional

import structlog

from household_ledger.models.ledger import (
    HouseholdUser,
    Transaction,
    ViewUser,
    is_all_users,
    new_entity_id,
)

logger = structlog.get_logger(__name__)

SORTABLE_FIELDS = ("date", "amount", "created_at")


class TransactionStore:
    """Most-recent-first list of transactions with change notification."""

    def __init__(self, on_change: Optional[Callable[[], None]] = None):
        self._items: list[Transaction] = []
        self._on_change = on_change

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def __contains__(self, transaction_id: str) -> bool:
        return self.get(transaction_id) is not None

    def all(self) -> list[Transaction]:
        """Copy of every transaction, most recent first."""
        return list(self._items)

    def get(self, transaction_id: str) -> Optional[Transaction]:
        for item in self._items:
            if item.id == transaction_id:
                return item
        return None

    def add(self, entry: Transaction) -> Transaction:
        """
        Prepend a transaction and return the stored copy.

        An id that collides with a stored entry is replaced by a fresh one;
        ids are never reused.
        """
        if self.get(entry.id) is not None:
            entry = entry.model_copy(update={"id": new_entity_id()})
        self._items.insert(0, entry)
        logger.debug("transaction_added", transaction_id=entry.id, type=entry.type.value)
        self._changed()
        return entry

    def remove(self, transaction_id: str) -> bool:
        """Remove the first match. Returns False (and does nothing) if absent."""
        for idx, item in enumerate(self._items):
            if item.id == transaction_id:
                del self._items[idx]
                logger.debug("transaction_removed", transaction_id=transaction_id)
                self._changed()
                return True
        return False

    def update(self, entry: Transaction) -> bool:
        """Replace the entry with the same id in place. No-op if absent."""
        for idx, item in enumerate(self._items):
            if item.id == entry.id:
                self._items[idx] = entry
                logger.debug("transaction_updated", transaction_id=entry.id)
                self._changed()
                return True
        return False

    def filter_by_user(self, view_user: ViewUser) -> list[Transaction]:
        """Entries owned by one member, or all of them for the "all" sentinel."""
        if is_all_users(view_user):
            return self.all()
        owner = HouseholdUser(view_user)
        return [item for item in self._items if item.owner == owner]

    def sorted_by(self, field: str = "date", descending: bool = True) -> list[Transaction]:
        if field not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort by {field!r}. Allowed: {SORTABLE_FIELDS}")
        return sorted(self._items, key=lambda t: getattr(t, field), reverse=descending)

    def replace_all(self, entries: Iterable[Transaction]) -> None:
        """
        Swap in a whole list, keeping its order.

        A repeated id keeps its first entry; later copies get fresh ids
        the same way add() handles a collision.
        """
        items: list[Transaction] = []
        seen: set[str] = set()
        for entry in entries:
            if entry.id in seen:
                fresh = new_entity_id()
                logger.warning("duplicate_transaction_id", transaction_id=entry.id, new_id=fresh)
                entry = entry.model_copy(update={"id": fresh})
            seen.add(entry.id)
            items.append(entry)
        self._items = items
        self._changed()

    def clear(self) -> None:
        self._items = []
        self._changed()
