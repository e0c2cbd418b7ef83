"""Local ledger stores."""

from household_ledger.stores.categories import CategoryStore
from household_ledger.stores.ledger import Ledger
from household_ledger.stores.transactions import TransactionStore

__all__ = [
    "CategoryStore",
    "Ledger",
    "TransactionStore",
]
