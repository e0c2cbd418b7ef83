"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for remote persistence.
This allows us to:
1. Swap Google Sheets for a hosted document database later
2. Use in-memory storage for testing and local runs
3. Keep the sync coordinator decoupled from the storage backend

The interface is intentionally tiny - one JSON document per signed-in
account, read whole and written whole. Conflict handling is left to the
backend (last write wins).
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the remote ledger document store.

    Any storage implementation (Google Sheets, a hosted document DB, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def get_document(self, key: str) -> Optional[dict[str, Any]]:
        """
        Fetch the document stored under a key.

        Args:
            key: Document key (the signed-in user's id)

        Returns:
            The document as a dict, or None if nothing is stored yet

        Raises:
            ConnectionError: If the backend cannot be reached
            StorageError: If the stored payload cannot be read
        """
        pass

    @abstractmethod
    async def set_document(
        self,
        key: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        """
        Write a document under a key.

        Args:
            key: Document key (the signed-in user's id)
            data: JSON-safe document body
            merge: When True, top-level fields in `data` replace the stored
                ones and all other stored fields are kept. When False the
                stored document is replaced entirely.

        Raises:
            ConnectionError: If the backend cannot be reached
            StorageError: If the write fails
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
