"""
Import Staging Buffer

Holds AI-suggested expenses from a statement while the user reviews them.

DESIGN DECISION: Nothing in the buffer touches the ledger until commit().
State machine:

    EMPTY --stage(non-empty)--> STAGED(N) --commit()/cancel()--> EMPTY

Removing the last staged item does NOT cancel the import; the buffer stays
STAGED with zero items and commit() refuses with a notice.
"""

import datetime as dt
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional

import structlog
from pydantic import ValidationError

from household_ledger.models.ledger import (
    DEFAULT_STATEMENT_DESCRIPTION,
    MAX_CATEGORY_NAME_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    ExpenseFields,
    HouseholdUser,
    StagedTransaction,
    StagingState,
    Transaction,
    TransactionType,
    normalize_tags,
)
from household_ledger.stores.ledger import Ledger

logger = structlog.get_logger(__name__)


EDITABLE_FIELDS = ("description", "amount", "date", "category", "owner", "tags")
_PENDING_CATEGORY_ID = "pending"


class StagingError(Exception):
    """A staged edit that the user must correct."""
    pass


class UnknownCategoryError(StagingError):
    """The chosen category name does not exist yet; offer to create it."""

    def __init__(self, name: str, temp_id: Optional[str] = None):
        self.name = name
        self.temp_id = temp_id
        super().__init__(f"Category '{name}' does not exist yet")


def coerce_amount(value: Any) -> Decimal:
    """
    Parse a user-typed amount.

    Non-numeric input becomes 0; negative input is rejected.
    """
    if isinstance(value, bool):
        return Decimal("0")
    text = str(value).strip()
    if "," in text and "." not in text:
        text = text.replace(",", ".")
    try:
        amount = Decimal(text)
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not amount.is_finite():
        return Decimal("0")
    if amount < 0:
        raise StagingError("Amount cannot be negative")
    return amount


def _coerce_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise StagingError(f"Invalid date: {value!r}. Use YYYY-MM-DD")


def _check_category_name(name: Any) -> str:
    name = str(name or "").strip()
    if not name:
        raise StagingError("Category name cannot be empty")
    if len(name) > MAX_CATEGORY_NAME_LENGTH:
        raise StagingError(
            f"Category name must be at most {MAX_CATEGORY_NAME_LENGTH} characters"
        )
    return name


class ImportStagingBuffer:
    """Reviewable list of proposed expenses, bound to one ledger."""

    def __init__(
        self,
        ledger: Ledger,
        clock: Callable[[], float] = time.time,
    ):
        self._ledger = ledger
        self._clock = clock
        self._items: list[StagedTransaction] = []
        self._state = StagingState.EMPTY
        self._counter = 0

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def state(self) -> StagingState:
        return self._state

    @property
    def items(self) -> list[StagedTransaction]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def running_total(self) -> Decimal:
        return sum((item.amount for item in self._items), Decimal("0"))

    @property
    def unresolved_categories(self) -> list[str]:
        """Suggested category names with no matching category, first-seen order."""
        names: list[str] = []
        for item in self._items:
            if not item.is_category_resolved and item.category not in names:
                names.append(item.category)
        return names

    def get(self, temp_id: str) -> Optional[StagedTransaction]:
        for item in self._items:
            if item.temp_id == temp_id:
                return item
        return None

    def _require(self, temp_id: str) -> StagedTransaction:
        item = self.get(temp_id)
        if item is None:
            raise StagingError(f"No staged item with id {temp_id}")
        return item

    def _resolve(self, name: str) -> Optional[str]:
        category = self._ledger.categories.find_by_name(name, TransactionType.EXPENSE)
        return category.id if category else None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def stage(
        self,
        fields_list: Iterable[ExpenseFields],
        acting_user: HouseholdUser,
    ) -> list[StagedTransaction]:
        """
        Replace the buffer contents with freshly extracted expenses.

        An empty list leaves the buffer as it was.
        """
        fields_list = list(fields_list)
        if not fields_list:
            return []

        ingestion_ms = int(self._clock() * 1000)
        today = dt.datetime.now(dt.timezone.utc).date()
        staged: list[StagedTransaction] = []
        for fields in fields_list:
            self._counter += 1
            staged.append(StagedTransaction(
                temp_id=f"{ingestion_ms}-{self._counter}",
                owner=acting_user,
                category=fields.category,
                category_id=self._resolve(fields.category),
                description=fields.description,
                amount=fields.amount,
                tags=fields.tags,
                date=fields.parsed_date(fallback=today),
            ))

        self._items = staged
        self._state = StagingState.STAGED
        logger.info("import_staged", items=len(staged), total=str(self.running_total))
        return list(staged)

    def update_field(self, temp_id: str, field: str, value: Any) -> StagedTransaction:
        """Edit one field of a staged item."""
        item = self._require(temp_id)

        if field == "amount":
            item.amount = coerce_amount(value)
        elif field == "description":
            text = "" if value is None else str(value).strip()
            if len(text) > MAX_DESCRIPTION_LENGTH:
                raise StagingError(
                    f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
                )
            item.description = text
        elif field == "date":
            item.date = _coerce_date(value)
        elif field == "tags":
            item.tags = normalize_tags(value)
        elif field == "owner":
            try:
                item.owner = HouseholdUser(value)
            except ValueError:
                raise StagingError(f"Unknown household member: {value!r}")
        elif field == "category":
            name = _check_category_name(value)
            category_id = self._resolve(name)
            if category_id is None:
                raise UnknownCategoryError(name, temp_id=temp_id)
            item.category = self._ledger.categories.get(category_id).name
            item.category_id = category_id
        else:
            raise StagingError(
                f"Field '{field}' cannot be edited. Editable: {', '.join(EDITABLE_FIELDS)}"
            )
        return item

    def create_category(self, temp_id: str, name: str) -> StagedTransaction:
        """
        Create an expense category from the staging screen and assign it.

        Reuses an existing same-name category. Every other staged item that
        suggested the same name is resolved too.
        """
        item = self._require(temp_id)
        name = _check_category_name(name)

        categories = self._ledger.categories
        category = categories.find_by_name(name, TransactionType.EXPENSE)
        if category is None:
            category = categories.add(name, TransactionType.EXPENSE)
            logger.info("staging_category_created", category_id=category.id)

        item.category = category.name
        item.category_id = category.id
        for other in self._items:
            if other.category_id is None and other.category.casefold() == name.casefold():
                other.category = category.name
                other.category_id = category.id
        return item

    def remove(self, temp_id: str) -> bool:
        for idx, item in enumerate(self._items):
            if item.temp_id == temp_id:
                del self._items[idx]
                return True
        return False

    def _build_entries(self) -> list[Transaction]:
        """
        Validate every staged item as a ledger entry.

        Items whose category is still unresolved carry a placeholder id
        until commit() assigns the real one.
        """
        for name in self.unresolved_categories:
            _check_category_name(name)
        return [
            Transaction(
                owner=item.owner,
                type=TransactionType.EXPENSE,
                category_id=item.category_id or _PENDING_CATEGORY_ID,
                description=item.description.strip() or DEFAULT_STATEMENT_DESCRIPTION,
                amount=item.amount,
                tags=item.tags,
                date=dt.datetime.combine(item.date, dt.time.min, tzinfo=dt.timezone.utc),
            )
            for item in self._items
        ]

    def commit(
        self,
        create_missing_categories: bool = False,
    ) -> tuple[list[Transaction], bool, str]:
        """
        Move every staged item into the transaction store.

        All entries are validated before any category is created, so a
        refused commit leaves both stores and the buffer as they were.

        Returns:
            (committed transactions, committed?, user-facing message)
        """
        if not self._items:
            return [], False, "There are no transactions to import."

        unresolved = self.unresolved_categories
        if unresolved and not create_missing_categories:
            return [], False, (
                "Create or choose these categories first: " + ", ".join(unresolved)
            )

        try:
            entries = self._build_entries()
        except StagingError as e:
            logger.warning("import_commit_refused", error=str(e))
            return [], False, str(e)
        except ValidationError as e:
            logger.warning("import_commit_refused", errors=e.error_count())
            return [], False, "Some staged transactions are invalid. Fix them and try again."

        categories = self._ledger.categories
        created: dict[str, str] = {}
        for name in unresolved:
            category = categories.add(name, TransactionType.EXPENSE)
            if category is None:
                category = categories.find_by_name(name, TransactionType.EXPENSE)
            created[name.casefold()] = category.id

        entries = [
            entry if item.category_id else entry.model_copy(
                update={"category_id": created[item.category.casefold()]}
            )
            for item, entry in zip(self._items, entries)
        ]

        # add() prepends, so insert in reverse to keep the staged order on top
        stored = [self._ledger.transactions.add(entry) for entry in reversed(entries)]
        stored.reverse()

        total = self.running_total
        self._reset()
        logger.info("import_committed", items=len(stored), total=str(total))
        return stored, True, f"{len(stored)} transactions imported."

    def cancel(self) -> int:
        """Discard everything. Returns how many items were dropped."""
        dropped = len(self._items)
        self._reset()
        if dropped:
            logger.info("import_cancelled", items=dropped)
        return dropped

    def _reset(self) -> None:
        self._items = []
        self._state = StagingState.EMPTY
