"""
Summary and Report Projections

DESIGN DECISION: Projections are DETERMINISTIC pure functions.
They take a list of transactions (already filtered by user) and return
plain pydantic rows for the UI. They never mutate the stores and never
estimate: an empty input gives zero totals and empty lists.
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel

from household_ledger.models.ledger import (
    MISSING_CATEGORY_LABEL,
    Transaction,
    TransactionType,
)
from household_ledger.stores.categories import CategoryStore

ZERO = Decimal("0")


class Summary(BaseModel):
    income: Decimal = ZERO
    expenses: Decimal = ZERO
    balance: Decimal = ZERO
    count: int = 0


class CategoryTotal(BaseModel):
    category_id: str
    label: str
    total: Decimal


class MonthTotal(BaseModel):
    month: str  # YYYY-MM
    income: Decimal = ZERO
    expense: Decimal = ZERO

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense


class TagTotal(BaseModel):
    tag: str
    total: Decimal
    count: int


def summarize(transactions: Iterable[Transaction]) -> Summary:
    """Income, expenses and balance for the given entries."""
    income = ZERO
    expenses = ZERO
    count = 0
    for t in transactions:
        count += 1
        if t.type == TransactionType.INCOME:
            income += t.amount
        else:
            expenses += t.amount
    return Summary(income=income, expenses=expenses, balance=income - expenses, count=count)


def totals_by_category(
    transactions: Iterable[Transaction],
    categories: CategoryStore,
    transaction_type: TransactionType = TransactionType.EXPENSE,
) -> list[CategoryTotal]:
    """
    Sum per category id, largest first, zero totals left out.

    Transactions whose category was deleted are grouped under their old
    id and labelled with the placeholder.
    """
    totals: dict[str, Decimal] = {}
    for t in transactions:
        if t.type != transaction_type:
            continue
        totals[t.category_id] = totals.get(t.category_id, ZERO) + t.amount

    rows = [
        CategoryTotal(
            category_id=category_id,
            label=categories.label_for(category_id),
            total=total,
        )
        for category_id, total in totals.items()
        if total > 0
    ]
    rows.sort(key=lambda r: (-r.total, r.label == MISSING_CATEGORY_LABEL, r.label))
    return rows


def totals_by_month(transactions: Iterable[Transaction]) -> list[MonthTotal]:
    """Income and expense per calendar month (YYYY-MM), oldest first."""
    months: dict[str, MonthTotal] = {}
    for t in transactions:
        key = t.date.strftime("%Y-%m")
        row = months.setdefault(key, MonthTotal(month=key))
        if t.type == TransactionType.INCOME:
            row.income += t.amount
        else:
            row.expense += t.amount
    return [months[key] for key in sorted(months)]


def totals_by_tag(
    transactions: Iterable[Transaction],
    transaction_type: Optional[TransactionType] = TransactionType.EXPENSE,
) -> list[TagTotal]:
    """Sum per tag (an entry with several tags counts toward each)."""
    totals: "OrderedDict[str, TagTotal]" = OrderedDict()
    for t in transactions:
        if transaction_type is not None and t.type != transaction_type:
            continue
        for tag in t.tags:
            row = totals.setdefault(tag, TagTotal(tag=tag, total=ZERO, count=0))
            row.total += t.amount
            row.count += 1
    return sorted(totals.values(), key=lambda r: (-r.total, r.tag))


def sort_transactions(
    transactions: Iterable[Transaction],
    field: str = "date",
    descending: bool = True,
) -> list[Transaction]:
    """Stable sort by date, amount or created_at."""
    if field not in ("date", "amount", "created_at"):
        raise ValueError(f"Cannot sort by {field!r}")
    return sorted(transactions, key=lambda t: getattr(t, field), reverse=descending)
