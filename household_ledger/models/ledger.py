"""
Core Data Models for Household Ledger

These models define the schemas for every record that moves between
the local stores, the import staging buffer and the cloud document.
They are designed to:
1. Enforce the non-negative amount invariant at construction time
2. Keep category references stable (by id) across renames
3. Serialize to a plain JSON document for the remote store

DESIGN DECISION: The sign of money is carried by TransactionType, never by
the stored amount. A refund is an income entry, not a negative expense.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# IDENTIFIERS & TIME
# =============================================================================

def utc_now() -> dt.datetime:
    """Current instant, timezone-aware."""
    return dt.datetime.now(dt.timezone.utc)


def new_entity_id() -> str:
    """
    Client-generated id: epoch milliseconds plus a random suffix.

    Ids are never reused, even after the entity is deleted.
    """
    millis = int(utc_now().timestamp() * 1000)
    return f"{millis}-{uuid4().hex[:8]}"


def normalize_tags(value) -> list[str]:
    """Trim, drop blanks and de-duplicate while keeping first-seen order."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    tags: list[str] = []
    for raw in value:
        tag = str(raw).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of money. Also partitions the category list."""
    INCOME = "income"
    EXPENSE = "expense"


class HouseholdUser(str, Enum):
    """
    The two members of the household.

    Display names are user-editable and live in UserNames;
    the enum value is what gets stored on each transaction.
    """
    USER_A = "user_a"
    USER_B = "user_b"


# Sentinel for "show everyone's entries"
ALL_USERS = "all"
_ALL_USER_ALIASES = {"all", "both"}

ViewUser = Union[HouseholdUser, str]


def is_all_users(view_user: ViewUser) -> bool:
    """True for the unfiltered-view sentinel (accepts "all" and "both")."""
    if isinstance(view_user, HouseholdUser):
        return False
    return str(view_user).strip().lower() in _ALL_USER_ALIASES


MISSING_CATEGORY_LABEL = "Unknown category"
DEFAULT_EXPENSE_CATEGORY = "Other"
DEFAULT_STATEMENT_DESCRIPTION = "Statement entry"
DEFAULT_RECEIPT_DESCRIPTION = "Receipt expense"

MAX_DESCRIPTION_LENGTH = 300
MAX_CATEGORY_NAME_LENGTH = 100


def clip_text(value: str, limit: int) -> str:
    """Cut text to the stored limit, without leaving trailing whitespace."""
    return value[:limit].rstrip()


# =============================================================================
# CATEGORIES
# =============================================================================

class Category(BaseModel):
    """
    A named label for income or expense entries.

    The id is immutable; rename produces a copy with the same id.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(
        default_factory=new_entity_id,
        min_length=1,
        description="Stable category id"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=MAX_CATEGORY_NAME_LENGTH,
        description="Display name, unique per type (case-insensitive)"
    )
    type: TransactionType


class CategoryBook(BaseModel):
    """Categories partitioned by type, as stored in the cloud document."""

    income: list[Category] = Field(default_factory=list)
    expense: list[Category] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fill_category_types(cls, data):
        """Older documents stored bare {id, name} pairs under each type key."""
        if not isinstance(data, dict):
            return data
        filled = dict(data)
        for type_key in (TransactionType.INCOME.value, TransactionType.EXPENSE.value):
            items = filled.get(type_key)
            if not items:
                continue
            filled[type_key] = [
                {**item, "type": item.get("type", type_key)} if isinstance(item, dict) else item
                for item in items
            ]
        return filled

    def for_type(self, category_type: TransactionType) -> list[Category]:
        return self.income if category_type == TransactionType.INCOME else self.expense


def default_categories() -> CategoryBook:
    """Seed categories for a household with no cloud data yet."""
    expense = ["Food", "Housing", "Transport", "Leisure", "Health", "Other"]
    income = ["Salary", "Freelance", "Investments", "Other"]
    return CategoryBook(
        expense=[
            Category(id=f"e{i}", name=name, type=TransactionType.EXPENSE)
            for i, name in enumerate(expense, start=1)
        ],
        income=[
            Category(id=f"i{i}", name=name, type=TransactionType.INCOME)
            for i, name in enumerate(income, start=1)
        ],
    )


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A committed financial entry.

    `date` is the user-editable moment the money moved;
    `created_at` is the audit timestamp of when the entry was recorded.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_entity_id,
        min_length=1,
        description="Permanent id, assigned at creation"
    )
    owner: HouseholdUser
    type: TransactionType
    category_id: str = Field(
        ...,
        min_length=1,
        description="Id of the referenced category (may dangle after a delete)"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=MAX_DESCRIPTION_LENGTH,
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Non-negative amount; the sign is carried by `type`"
    )
    tags: list[str] = Field(default_factory=list)
    date: dt.datetime = Field(
        default_factory=utc_now,
        description="When the money moved (ISO-8601 instant)"
    )
    created_at: dt.datetime = Field(
        default_factory=utc_now,
        description="When the entry was recorded"
    )

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        return normalize_tags(v)

    @field_validator("date", "created_at")
    @classmethod
    def ensure_aware(cls, v: dt.datetime) -> dt.datetime:
        """Naive datetimes are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=dt.timezone.utc)
        return v

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == TransactionType.INCOME else -self.amount


# =============================================================================
# EXTRACTION & STAGING MODELS
# =============================================================================

class ExpenseFields(BaseModel):
    """
    Expense fields extracted from a receipt or statement image.

    CRITICAL: This is PROPOSED data, NOT verified.
    It goes through the staging buffer (or a pre-filled form) before
    anything is written to the ledger.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., ge=0)
    description: str
    date: str = Field(
        ...,
        description="Date as returned by the model, normally YYYY-MM-DD"
    )
    category: str = DEFAULT_EXPENSE_CATEGORY
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        return normalize_tags(v)

    @field_validator("description")
    @classmethod
    def clip_description(cls, v: str) -> str:
        return clip_text(v, MAX_DESCRIPTION_LENGTH)

    @field_validator("category")
    @classmethod
    def clip_category(cls, v: str) -> str:
        return clip_text(v, MAX_CATEGORY_NAME_LENGTH)

    def parsed_date(self, fallback: Optional[dt.date] = None) -> dt.date:
        """Calendar date of the expense, or the fallback (today) if unparseable."""
        text = (self.date or "").strip()
        for candidate in (text, text[:10]):
            try:
                return dt.date.fromisoformat(candidate)
            except ValueError:
                continue
        return fallback or utc_now().date()


class StagedTransaction(BaseModel):
    """
    An AI-suggested expense awaiting review in the import staging buffer.

    `temp_id` is only meaningful inside one staging session and is
    stripped on commit. `category` is the suggested or typed name;
    `category_id` is set once that name resolves to a real category.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    temp_id: str = Field(..., min_length=1)
    owner: HouseholdUser
    type: Literal[TransactionType.EXPENSE] = TransactionType.EXPENSE
    category: str = Field(..., max_length=MAX_CATEGORY_NAME_LENGTH)
    category_id: Optional[str] = None
    description: str = Field(default="", max_length=MAX_DESCRIPTION_LENGTH)
    amount: Decimal = Field(..., ge=0)
    tags: list[str] = Field(default_factory=list)
    date: dt.date

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        return normalize_tags(v)

    @property
    def is_category_resolved(self) -> bool:
        return self.category_id is not None


class StagingState(str, Enum):
    """Import staging buffer lifecycle."""
    EMPTY = "empty"
    STAGED = "staged"


# =============================================================================
# HOUSEHOLD & DOCUMENT MODELS
# =============================================================================

class UserNames(BaseModel):
    """Editable display names of the two household members."""
    model_config = ConfigDict(str_strip_whitespace=True)

    user_a: str = Field(..., min_length=1, max_length=50)
    user_b: str = Field(..., min_length=1, max_length=50)

    def display(self, user: HouseholdUser) -> str:
        return self.user_a if user == HouseholdUser.USER_A else self.user_b


class LedgerSnapshot(BaseModel):
    """
    The full ledger state, written as one document per signed-in account.

    Missing sections (a brand-new or partially written document) are
    left as None so the ledger can fall back to its defaults.
    """

    transactions: list[Transaction] = Field(default_factory=list)
    categories: Optional[CategoryBook] = None
    user_names: Optional[UserNames] = None

    def to_document(self) -> dict:
        """JSON-safe dict for the document store."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_document(cls, data: dict) -> "LedgerSnapshot":
        return cls.model_validate(data or {})


# =============================================================================
# UPLOADS
# =============================================================================

ALLOWED_UPLOAD_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "application/pdf",
}


class UploadedDocument(BaseModel):
    """A receipt photo or statement file handed to the extraction adapter."""

    filename: str
    mime_type: str
    data: bytes = Field(..., repr=False)

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, v: str) -> str:
        """Only allow images and PDFs."""
        if v.lower() not in ALLOWED_UPLOAD_MIME_TYPES:
            raise ValueError(
                f"Unsupported file type: {v}. Allowed: {sorted(ALLOWED_UPLOAD_MIME_TYPES)}"
            )
        return v.lower()

    @property
    def size_bytes(self) -> int:
        return len(self.data)


# =============================================================================
# MANUAL ENTRY & VALIDATION MODELS
# =============================================================================

class ManualEntryDraft(BaseModel):
    """
    Raw values from the add-transaction form.

    Everything is loosely typed on purpose: the validator reports what is
    wrong instead of the form crashing on a bad keystroke.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType = TransactionType.EXPENSE
    owner: Optional[HouseholdUser] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    date: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("amount", mode="before")
    @classmethod
    def amount_as_text(cls, v):
        return None if v is None else str(v)

    @field_validator("date", mode="before")
    @classmethod
    def date_as_text(cls, v):
        if isinstance(v, (dt.date, dt.datetime)):
            return v.isoformat()
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        return normalize_tags(v)


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'future_date')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation of a manual entry.

    Stage 1: Schema validation (required fields, formats)
    Stage 2: Semantic validation (category exists, date sanity)
    """

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]
