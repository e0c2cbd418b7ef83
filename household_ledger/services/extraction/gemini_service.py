"""
Gemini Extraction Service

Turns a photographed receipt or a card statement into proposed expenses.

CRITICAL BOUNDARIES:
- CAN: Read the image and propose amount, description, date, category, tags
- CAN: Prefer the household's existing category names
- CANNOT: Write to the transaction or category stores
- CANNOT: Be trusted - every response is parsed and schema-validated here

The LLM is a TRANSCRIBER, not a BOOKKEEPER.
What it returns is PROPOSED data that the user reviews before commit.
"""

import json
import re
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

import google.generativeai as genai
import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
)

from household_ledger.config import get_settings
from household_ledger.config.settings import GeminiSettings
from household_ledger.models.ledger import (
    DEFAULT_EXPENSE_CATEGORY,
    DEFAULT_RECEIPT_DESCRIPTION,
    DEFAULT_STATEMENT_DESCRIPTION,
    ExpenseFields,
    HouseholdUser,
    UploadedDocument,
)

logger = structlog.get_logger(__name__)


class ExtractionErrorKind(str, Enum):
    MALFORMED_RESPONSE = "malformed_response"
    UNAVAILABLE = "unavailable"


class ExtractionError(Exception):
    """Extraction failed; `kind` says whether to blame the response or the service."""

    def __init__(self, message: str, kind: ExtractionErrorKind):
        self.kind = kind
        super().__init__(message)


# =============================================================================
# RESPONSE SCHEMAS - strict, so "12.50" or true is NOT a number
# =============================================================================

class _RawReceipt(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: Union[StrictInt, StrictFloat]
    description: StrictStr
    date: StrictStr
    category: Optional[StrictStr] = None
    tags: list[Any]


class _RawStatementItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: Union[StrictInt, StrictFloat]
    description: StrictStr
    date: StrictStr
    category: Optional[StrictStr] = None


STATEMENT_RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "amount": {
                "type": "NUMBER",
                "description": "The expense amount.",
            },
            "category": {
                "type": "STRING",
                "description": "Suggested category.",
            },
            "description": {
                "type": "STRING",
                "description": "Item description or merchant name.",
            },
            "date": {
                "type": "STRING",
                "description": "Transaction date as YYYY-MM-DD. If the year is unclear, use the current year.",
            },
        },
        "required": ["amount", "description", "date", "category"],
    },
}

_CODE_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*(.*?)\s*```$", re.DOTALL)


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding ``` or ```json fence if the model added one."""
    text = text.strip()
    match = _CODE_FENCE.match(text)
    return match.group(1).strip() if match else text


def _file_to_part(document: UploadedDocument) -> dict:
    """Inline data part understood by the Gemini SDK."""
    return {"mime_type": document.mime_type, "data": document.data}


def _to_amount(value: Union[int, float]) -> Decimal:
    # Statements sometimes print debits with a minus sign
    return abs(Decimal(str(value)))


class GeminiExtractionService:
    """
    Receipt and statement extraction through the Gemini vision model.

    The model client is created lazily so a missing API key only fails
    the extraction call (as UNAVAILABLE), not the app start-up.
    """

    def __init__(
        self,
        model: Optional[Any] = None,
        settings: Optional[GeminiSettings] = None,
    ):
        self._model = model
        self._settings = settings

    def _get_settings(self) -> GeminiSettings:
        if self._settings is None:
            self._settings = get_settings().gemini
        return self._settings

    def _get_model(self):
        """Get or create the Gemini model."""
        if self._model is None:
            settings = self._get_settings()
            if not settings.api_key:
                raise ExtractionError(
                    "Gemini API key is not configured. Set GEMINI_API_KEY.",
                    ExtractionErrorKind.UNAVAILABLE,
                )
            genai.configure(api_key=settings.api_key)
            self._model = genai.GenerativeModel(
                model_name=settings.model_name,
                generation_config={
                    "temperature": settings.temperature,
                    "max_output_tokens": settings.max_tokens,
                },
            )
        return self._model

    async def _generate(self, contents: list, **kwargs) -> str:
        """Call the model and return its raw text."""
        model = self._get_model()
        try:
            response = await model.generate_content_async(contents, **kwargs)
        except Exception as e:
            logger.warning("extraction_call_failed", error=str(e))
            raise ExtractionError(
                f"Could not reach the extraction service: {e}",
                ExtractionErrorKind.UNAVAILABLE,
            )
        try:
            text = response.text
        except (ValueError, AttributeError) as e:
            # Blocked or empty candidates
            raise ExtractionError(
                f"The extraction service returned no text: {e}",
                ExtractionErrorKind.MALFORMED_RESPONSE,
            )
        if not isinstance(text, str) or not text.strip():
            raise ExtractionError(
                "The extraction service returned an empty response",
                ExtractionErrorKind.MALFORMED_RESPONSE,
            )
        return text

    @staticmethod
    def _parse_json(text: str) -> Any:
        try:
            return json.loads(_strip_code_fence(text))
        except json.JSONDecodeError as e:
            raise ExtractionError(
                f"The extraction service returned invalid JSON: {e}",
                ExtractionErrorKind.MALFORMED_RESPONSE,
            )

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    def _receipt_prompt(self, known_category_names: list[str]) -> str:
        categories = ", ".join(f'"{name}"' for name in known_category_names) or "none yet"
        today = date.today().isoformat()
        return f"""Read this receipt or invoice for a household expense and return STRICTLY a JSON object with:
1. "amount": the total as a number (e.g. 123.45). If you cannot find it, return 0.
2. "category": a category for the expense. Prefer one of the existing categories: [{categories}]. If none fits, use "{DEFAULT_EXPENSE_CATEGORY}".
3. "description": a short description such as the merchant name. If you cannot find one, use "{DEFAULT_RECEIPT_DESCRIPTION}".
4. "date": the purchase date as YYYY-MM-DD. If it is not printed, use {today}.
5. "tags": an array of 3 to 5 relevant lowercase tags. If none apply, return an empty array.

Return ONLY the JSON object, without markdown or explanation.

Example:
{{"amount": 75.50, "category": "Food", "description": "Corner Market", "date": "{today}", "tags": ["groceries", "market"]}}"""

    async def extract_receipt(
        self,
        document: UploadedDocument,
        known_category_names: list[str],
    ) -> ExpenseFields:
        """
        Extract a single expense from a receipt photo.

        Raises:
            ExtractionError: MALFORMED_RESPONSE or UNAVAILABLE
        """
        text = await self._generate([
            _file_to_part(document),
            self._receipt_prompt(known_category_names),
        ])
        data = self._parse_json(text)
        if not isinstance(data, dict):
            raise ExtractionError(
                "Expected a JSON object for the receipt",
                ExtractionErrorKind.MALFORMED_RESPONSE,
            )

        try:
            raw = _RawReceipt.model_validate(data)
            fields = ExpenseFields(
                amount=_to_amount(raw.amount),
                description=raw.description.strip() or DEFAULT_RECEIPT_DESCRIPTION,
                date=raw.date,
                category=(raw.category or "").strip() or DEFAULT_EXPENSE_CATEGORY,
                tags=raw.tags,
            )
        except ValidationError as e:
            raise ExtractionError(
                f"Receipt response has an unexpected shape: {e.error_count()} problems",
                ExtractionErrorKind.MALFORMED_RESPONSE,
            )

        logger.info("receipt_extracted", filename=document.filename, amount=str(fields.amount))
        return fields

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def _statement_schema(self, known_category_names: list[str]) -> dict:
        schema = json.loads(json.dumps(STATEMENT_RESPONSE_SCHEMA))
        if known_category_names:
            schema["items"]["properties"]["category"]["description"] = (
                "Suggested category. Existing categories: "
                + ", ".join(known_category_names)
                + "."
            )
        return schema

    async def extract_statement(
        self,
        document: UploadedDocument,
        known_category_names: list[str],
        acting_user: HouseholdUser,
    ) -> list[ExpenseFields]:
        """
        Extract every expense line from a card statement.

        An empty list is a valid result (nothing to stage).

        Raises:
            ExtractionError: MALFORMED_RESPONSE or UNAVAILABLE
        """
        prompt = (
            "Read this card statement and extract every expense transaction. "
            "Prefer the existing category names when one fits."
        )
        text = await self._generate(
            [_file_to_part(document), prompt],
            generation_config={
                "response_mime_type": "application/json",
                "response_schema": self._statement_schema(known_category_names),
            },
        )
        data = self._parse_json(text)
        if not isinstance(data, list):
            raise ExtractionError(
                "Expected a JSON array of transactions",
                ExtractionErrorKind.MALFORMED_RESPONSE,
            )

        results: list[ExpenseFields] = []
        try:
            for item in data:
                raw = _RawStatementItem.model_validate(item)
                results.append(ExpenseFields(
                    amount=_to_amount(raw.amount),
                    description=raw.description.strip() or DEFAULT_STATEMENT_DESCRIPTION,
                    date=raw.date,
                    category=(raw.category or "").strip() or DEFAULT_EXPENSE_CATEGORY,
                ))
        except ValidationError as e:
            raise ExtractionError(
                f"Statement response has an unexpected shape: {e.error_count()} problems",
                ExtractionErrorKind.MALFORMED_RESPONSE,
            )

        logger.info(
            "statement_extracted",
            filename=document.filename,
            items=len(results),
            acting_user=acting_user.value,
        )
        return results
