"""
In-memory document store.

Used by the test suite and for running the app without Google credentials.
Documents are deep-copied on the way in and out so callers can never
mutate stored state by accident.
"""

import copy
from typing import Any, Optional

from household_ledger.services.storage.interface import DocumentStoreInterface


class InMemoryDocumentStore(DocumentStoreInterface):
    """Dict-backed implementation of the document store."""

    def __init__(self, documents: Optional[dict[str, dict[str, Any]]] = None):
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})

    async def get_document(self, key: str) -> Optional[dict[str, Any]]:
        document = self._documents.get(key)
        return copy.deepcopy(document) if document is not None else None

    async def set_document(
        self,
        key: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        incoming = copy.deepcopy(data)
        if merge and key in self._documents:
            self._documents[key] = {**self._documents[key], **incoming}
        else:
            self._documents[key] = incoming

    def keys(self) -> list[str]:
        return list(self._documents)
