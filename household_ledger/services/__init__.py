"""Services package."""

from household_ledger.services.extraction import (
    ExtractionError,
    ExtractionErrorKind,
    GeminiExtractionService,
)
from household_ledger.services.identity import (
    AuthError,
    AuthErrorKind,
    FirebaseIdentityProvider,
    IdentityProviderInterface,
    Session,
)
from household_ledger.services.storage import (
    ConnectionError,
    DocumentStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    StorageError,
)

__all__ = [
    # Extraction
    "ExtractionError",
    "ExtractionErrorKind",
    "GeminiExtractionService",
    # Identity
    "AuthError",
    "AuthErrorKind",
    "FirebaseIdentityProvider",
    "IdentityProviderInterface",
    "Session",
    # Storage
    "ConnectionError",
    "DocumentStoreInterface",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
    "StorageError",
]
