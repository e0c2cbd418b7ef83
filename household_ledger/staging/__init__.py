"""Import staging package."""

from household_ledger.staging.buffer import (
    ImportStagingBuffer,
    StagingError,
    UnknownCategoryError,
    coerce_amount,
)

__all__ = [
    "ImportStagingBuffer",
    "StagingError",
    "UnknownCategoryError",
    "coerce_amount",
]
