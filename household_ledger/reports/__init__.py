"""Summary and report projections."""

from household_ledger.reports.projections import (
    CategoryTotal,
    MonthTotal,
    Summary,
    TagTotal,
    sort_transactions,
    summarize,
    totals_by_category,
    totals_by_month,
    totals_by_tag,
)

__all__ = [
    "CategoryTotal",
    "MonthTotal",
    "Summary",
    "TagTotal",
    "sort_transactions",
    "summarize",
    "totals_by_category",
    "totals_by_month",
    "totals_by_tag",
]
