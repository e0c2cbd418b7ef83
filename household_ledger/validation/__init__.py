"""Manual entry validation."""

from household_ledger.validation.validator import EntryValidator, ValidationError

__all__ = ["EntryValidator", "ValidationError"]
