"""AI extraction services."""

from household_ledger.services.extraction.gemini_service import (
    ExtractionError,
    ExtractionErrorKind,
    GeminiExtractionService,
)

__all__ = [
    "ExtractionError",
    "ExtractionErrorKind",
    "GeminiExtractionService",
]
