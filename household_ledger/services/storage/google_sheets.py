"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets is used as the remote backend because:
1. The household can look at the raw data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Each ledger document is one row:

    document_id | updated_at | payload chunk 1 | payload chunk 2 | ...

The JSON payload is split across columns because a single cell holds at
most 50,000 characters.

TRADEOFFS:
- No transactions: the whole row is rewritten on every save (last write wins)
- Lookup is a linear scan of column A (fine for a handful of households)
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from household_ledger.config import get_settings
from household_ledger.config.settings import GoogleSheetsSettings
from household_ledger.services.storage.interface import (
    ConnectionError,
    DocumentStoreInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


DOCUMENT_COLUMNS = ["document_id", "updated_at", "payload"]

# Stay safely under the 50k characters-per-cell limit
PAYLOAD_CHUNK_SIZE = 45_000

# Columns before the first payload chunk
_PAYLOAD_OFFSET = 2


def split_payload(payload: str, chunk_size: int = PAYLOAD_CHUNK_SIZE) -> list[str]:
    """Split a serialized document into cell-sized chunks."""
    if not payload:
        return [""]
    return [payload[i:i + chunk_size] for i in range(0, len(payload), chunk_size)]


def join_payload(row: list[str]) -> str:
    """Reassemble the payload cells of a document row."""
    return "".join(cell for cell in row[_PAYLOAD_OFFSET:] if cell)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_documents_sheet(self) -> gspread.Worksheet:
        """Get or create the Documents worksheet."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(self._settings.documents_sheet_name)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=self._settings.documents_sheet_name,
                rows=100,
                cols=26,
            )
            sheet.append_row(DOCUMENT_COLUMNS)
        return sheet


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the document store.

    One row per document key, JSON payload chunked across columns.
    gspread is blocking, so every sheet call runs in a worker thread and
    the event loop (debounce timer, queued UI actions) keeps running.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _find_row(self, sheet: gspread.Worksheet, key: str) -> tuple[Optional[int], list[str]]:
        """Return (1-based row index, row values) for a key, or (None, [])."""
        all_rows = sheet.get_all_values()
        for idx, row in enumerate(all_rows[1:], start=2):  # row 1 is header
            if row and row[0] == key:
                return idx, row
        return None, []

    def _read_row(self, key: str) -> list[str]:
        try:
            sheet = self._client.get_documents_sheet()
            _, row = self._find_row(sheet, key)
        except ConnectionError:
            raise
        except Exception as e:
            raise ConnectionError(f"Failed to read document: {e}")
        return row

    def _write_row(self, key: str, data: dict[str, Any], merge: bool) -> None:
        try:
            sheet = self._client.get_documents_sheet()
            row_idx, existing_row = self._find_row(sheet, key)

            document = dict(data)
            if merge and existing_row:
                stored = join_payload(existing_row)
                if stored:
                    document = {**json.loads(stored), **document}

            chunks = split_payload(json.dumps(document, ensure_ascii=False))
            new_row = [key, datetime.now(timezone.utc).isoformat(), *chunks]

            # Blank out chunks left over from a longer previous payload
            if len(existing_row) > len(new_row):
                new_row.extend([""] * (len(existing_row) - len(new_row)))

            if len(new_row) > sheet.col_count:
                sheet.add_cols(len(new_row) - sheet.col_count)

            if row_idx is None:
                sheet.append_row(new_row, value_input_option="RAW")
            else:
                sheet.update(
                    range_name=f"A{row_idx}",
                    values=[new_row],
                    value_input_option="RAW",
                )
            logger.debug(
                "document_written",
                key=key,
                chunks=len(chunks),
                appended=row_idx is None,
            )
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write document: {e}")

    async def get_document(self, key: str) -> Optional[dict[str, Any]]:
        """Fetch and decode the document stored under `key`."""
        row = await asyncio.to_thread(self._read_row, key)
        if not row:
            return None

        payload = join_payload(row)
        if not payload:
            return None
        try:
            document = json.loads(payload)
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored document for {key} is not valid JSON: {e}")
        if not isinstance(document, dict):
            raise StorageError(f"Stored document for {key} is not an object")
        return document

    async def set_document(
        self,
        key: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        """Write the document under `key`, shallow-merging into the stored one by default."""
        await asyncio.to_thread(self._write_row, key, data, merge)
