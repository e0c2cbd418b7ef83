"""Data models package."""

from household_ledger.models.ledger import (
    ALL_USERS,
    ALLOWED_UPLOAD_MIME_TYPES,
    DEFAULT_EXPENSE_CATEGORY,
    DEFAULT_RECEIPT_DESCRIPTION,
    DEFAULT_STATEMENT_DESCRIPTION,
    MAX_CATEGORY_NAME_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MISSING_CATEGORY_LABEL,
    Category,
    CategoryBook,
    ExpenseFields,
    HouseholdUser,
    LedgerSnapshot,
    ManualEntryDraft,
    StagedTransaction,
    StagingState,
    Transaction,
    TransactionType,
    UploadedDocument,
    UserNames,
    ValidationIssue,
    ValidationResult,
    ViewUser,
    default_categories,
    is_all_users,
    new_entity_id,
    normalize_tags,
    utc_now,
)
from household_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "ALL_USERS",
    "ALLOWED_UPLOAD_MIME_TYPES",
    "DEFAULT_EXPENSE_CATEGORY",
    "DEFAULT_RECEIPT_DESCRIPTION",
    "DEFAULT_STATEMENT_DESCRIPTION",
    "MAX_CATEGORY_NAME_LENGTH",
    "MAX_DESCRIPTION_LENGTH",
    "MISSING_CATEGORY_LABEL",
    "Category",
    "CategoryBook",
    "ExpenseFields",
    "HouseholdUser",
    "LedgerSnapshot",
    "ManualEntryDraft",
    "StagedTransaction",
    "StagingState",
    "Transaction",
    "TransactionType",
    "UploadedDocument",
    "UserNames",
    "ValidationIssue",
    "ValidationResult",
    "ViewUser",
    "default_categories",
    "is_all_users",
    "new_entity_id",
    "normalize_tags",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
