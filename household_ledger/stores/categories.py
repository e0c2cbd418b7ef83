"""
Category Store

Holds income and expense categories in two partitions.

DESIGN DECISION: Transactions reference categories by id, so a rename is
visible everywhere immediately and a delete leaves transactions intact
(their label falls back to MISSING_CATEGORY_LABEL).
"""

from typing import Callable, Optional

import structlog

from household_ledger.models.ledger import (
    MAX_CATEGORY_NAME_LENGTH,
    MISSING_CATEGORY_LABEL,
    Category,
    CategoryBook,
    TransactionType,
    default_categories,
)

logger = structlog.get_logger(__name__)


def _same_name(a: str, b: str) -> bool:
    return a.strip().casefold() == b.strip().casefold()


class CategoryStore:
    """Income and expense categories with per-type, case-insensitive unique names."""

    def __init__(
        self,
        book: Optional[CategoryBook] = None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self._on_change = on_change
        self._partitions: dict[TransactionType, list[Category]] = {}
        self._load(book or default_categories())

    def _load(self, book: CategoryBook) -> None:
        self._partitions = {
            TransactionType.INCOME: list(book.income),
            TransactionType.EXPENSE: list(book.expense),
        }

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def by_type(self, category_type: TransactionType) -> list[Category]:
        return list(self._partitions[TransactionType(category_type)])

    def names(self, category_type: TransactionType) -> list[str]:
        return [c.name for c in self._partitions[TransactionType(category_type)]]

    def get(
        self,
        category_id: str,
        category_type: Optional[TransactionType] = None,
    ) -> Optional[Category]:
        types = [TransactionType(category_type)] if category_type else list(self._partitions)
        for t in types:
            for category in self._partitions[t]:
                if category.id == category_id:
                    return category
        return None

    def find_by_name(self, name: str, category_type: TransactionType) -> Optional[Category]:
        for category in self._partitions[TransactionType(category_type)]:
            if _same_name(category.name, name):
                return category
        return None

    def label_for(self, category_id: str) -> str:
        """Display name for a category id; dangling ids get the placeholder."""
        category = self.get(category_id)
        return category.name if category else MISSING_CATEGORY_LABEL

    def to_book(self) -> CategoryBook:
        return CategoryBook(
            income=list(self._partitions[TransactionType.INCOME]),
            expense=list(self._partitions[TransactionType.EXPENSE]),
        )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add(self, name: str, category_type: TransactionType) -> Optional[Category]:
        """
        Append a category.

        Returns None (and changes nothing) when a same-type category with a
        case-insensitively equal name exists.
        """
        category_type = TransactionType(category_type)
        if self.find_by_name(name, category_type) is not None:
            return None
        category = Category(name=name, type=category_type)
        self._partitions[category_type].append(category)
        logger.debug("category_added", category_id=category.id, type=category_type.value)
        self._changed()
        return category

    def rename(
        self,
        category_id: str,
        new_name: str,
        category_type: TransactionType,
    ) -> Optional[Category]:
        """
        Rename in place, keeping the id.

        Unknown ids and names already taken by another same-type category
        leave the store unchanged and return None.
        """
        if not new_name or not new_name.strip():
            raise ValueError("Category name cannot be empty")
        if len(new_name.strip()) > MAX_CATEGORY_NAME_LENGTH:
            raise ValueError(f"Category name must be at most {MAX_CATEGORY_NAME_LENGTH} characters")
        category_type = TransactionType(category_type)
        partition = self._partitions[category_type]
        for idx, category in enumerate(partition):
            if category.id != category_id:
                continue
            clash = self.find_by_name(new_name, category_type)
            if clash is not None and clash.id != category_id:
                return None
            renamed = category.model_copy(update={"name": new_name.strip()})
            partition[idx] = renamed
            logger.debug("category_renamed", category_id=category_id)
            self._changed()
            return renamed
        return None

    def delete(self, category_id: str, category_type: TransactionType) -> bool:
        """Remove a category. Referencing transactions are left untouched."""
        category_type = TransactionType(category_type)
        partition = self._partitions[category_type]
        for idx, category in enumerate(partition):
            if category.id == category_id:
                del partition[idx]
                logger.debug("category_deleted", category_id=category_id)
                self._changed()
                return True
        return False

    def replace_all(self, book: CategoryBook) -> None:
        self._load(book)
        self._changed()

    def reset_to_defaults(self) -> None:
        self.replace_all(default_categories())
