"""
Two-Stage Validation for Manual Entries

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (amount, description, category)
- Format validation (amount is a number, date is YYYY-MM-DD)

STAGE 2 - SEMANTIC VALIDATION:
- Amount greater than zero
- Category exists for the entry's type
- Future date detection

IMPORTANT: Validation NEVER silently fixes issues.
Errors block the entry locally; nothing reaches the store or the network.
"""

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Optional

from household_ledger.models.ledger import (
    MAX_DESCRIPTION_LENGTH,
    HouseholdUser,
    ManualEntryDraft,
    Transaction,
    ValidationIssue,
    ValidationResult,
)
from household_ledger.stores.categories import CategoryStore


class ValidationError(Exception):
    """A manual entry failed validation."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(issue.message for issue in result.errors)
        super().__init__(messages or "Entry is invalid")


def _parse_amount(text: Optional[str]) -> Optional[Decimal]:
    if text is None:
        return None
    cleaned = text.strip()
    if "," in cleaned and "." not in cleaned:
        cleaned = cleaned.replace(",", ".")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def _parse_date(text: Optional[str]) -> Optional[dt.datetime]:
    if not text:
        return None
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


class EntryValidator:
    """
    Validates the add-transaction form through a two-stage pipeline.

    Stage 1: Schema validation
    Stage 2: Semantic validation (needs the category store)
    """

    def __init__(self, categories: CategoryStore):
        self._categories = categories

    def _validate_schema(
        self,
        draft: ManualEntryDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: required fields and formats.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not draft.amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
                severity="error",
            ))
        elif _parse_amount(draft.amount) is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message=f"Amount '{draft.amount}' is not a number",
                severity="error",
                suggested_fix="Use digits with a dot for cents, e.g. 12.50",
            ))

        if not draft.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
                severity="error",
            ))
        elif len(draft.description) > MAX_DESCRIPTION_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message=f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
                severity="error",
            ))

        if not draft.category_id:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="missing",
                message="Category is required",
                severity="error",
            ))

        if draft.date and _parse_date(draft.date) is None:
            issues.append(ValidationIssue(
                field="date",
                issue_type="invalid_format",
                message=f"Date '{draft.date}' is not a valid date",
                severity="error",
                suggested_fix="Use YYYY-MM-DD",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        draft: ManualEntryDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: business checks on well-formed input.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        amount = _parse_amount(draft.amount)
        if amount is not None and amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Record refunds as income instead of a negative expense",
            ))

        if self._categories.get(draft.category_id, draft.type) is None:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="not_found",
                message=f"Choose an existing {draft.type.value} category",
                severity="error",
            ))

        parsed_date = _parse_date(draft.date)
        if parsed_date and parsed_date.date() > dt.date.today() + dt.timedelta(days=1):
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({parsed_date.date()}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, draft: ManualEntryDraft) -> ValidationResult:
        """Run both stages. Stage 2 is skipped when stage 1 fails."""
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(draft)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=[i.message for i in all_issues if i.severity == "warning"],
        )

    def build_transaction(
        self,
        draft: ManualEntryDraft,
        acting_user: HouseholdUser,
    ) -> tuple[Transaction, ValidationResult]:
        """
        Validate and convert a draft into a Transaction.

        Raises:
            ValidationError: If any error-level issue was found
        """
        result = self.validate(draft)
        if not result.is_valid:
            raise ValidationError(result)

        fields = dict(
            owner=draft.owner or acting_user,
            type=draft.type,
            category_id=draft.category_id,
            description=draft.description,
            amount=_parse_amount(draft.amount),
            tags=draft.tags,
        )
        parsed_date = _parse_date(draft.date)
        if parsed_date is not None:
            fields["date"] = parsed_date
        return Transaction(**fields), result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Short text for the form's error box."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        for issue in result.errors:
            lines.append(f"- {issue.message}")
            if issue.suggested_fix:
                lines.append(f"  {issue.suggested_fix}")
        if result.warnings:
            lines.append("Please verify:")
            lines.extend(f"- {warning}" for warning in result.warnings)
        return "\n".join(lines)
