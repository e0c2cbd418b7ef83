"""
Storage Services Package

Provides the abstract document store interface and concrete implementations.
Google Sheets is the hosted backend; the in-memory store serves tests and
local runs.
"""

from household_ledger.services.storage.interface import (
    ConnectionError,
    DocumentStoreInterface,
    StorageError,
)
from household_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)
from household_ledger.services.storage.memory import InMemoryDocumentStore

__all__ = [
    # Interface
    "DocumentStoreInterface",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
]
