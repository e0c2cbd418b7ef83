"""Tests for the document stores (in-memory and Google Sheets with a fake worksheet)."""

import json
import threading

import pytest

from household_ledger.services.storage.google_sheets import (
    GoogleSheetsDocumentStore,
    join_payload,
    split_payload,
)
from household_ledger.services.storage.interface import ConnectionError, StorageError
from household_ledger.services.storage.memory import InMemoryDocumentStore


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the document store."""

    def __init__(self, rows=None, col_count: int = 26):
        self.rows = [list(r) for r in (rows or [["document_id", "updated_at", "payload"]])]
        self.col_count = col_count
        self.calling_threads: list[int] = []

    def get_all_values(self):
        self.calling_threads.append(threading.get_ident())
        return [list(r) for r in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append(list(values))

    def update(self, range_name, values, value_input_option=None):
        row_idx = int(range_name[1:])
        self.rows[row_idx - 1] = list(values[0])

    def add_cols(self, count):
        self.col_count += count


class FakeSheetsClient:
    def __init__(self, sheet=None, error=None):
        self.sheet = sheet or FakeWorksheet()
        self.error = error

    def get_documents_sheet(self):
        if self.error is not None:
            raise self.error
        return self.sheet


class TestPayloadChunks:
    """Tests for splitting documents across cells."""

    def test_split_and_join(self):
        chunks = split_payload("abcdefg", chunk_size=3)
        assert chunks == ["abc", "def", "g"]
        assert join_payload(["key", "ts", *chunks, ""]) == "abcdefg"

    def test_empty_payload(self):
        assert split_payload("") == [""]


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    @pytest.mark.asyncio
    async def test_missing_document(self):
        assert await InMemoryDocumentStore().get_document("nobody") is None

    @pytest.mark.asyncio
    async def test_merge_keeps_other_sections(self):
        store = InMemoryDocumentStore({"u": {"transactions": [], "user_names": {"user_a": "A"}}})
        await store.set_document("u", {"transactions": [{"id": "1"}]})
        document = await store.get_document("u")
        assert document["transactions"] == [{"id": "1"}]
        assert document["user_names"] == {"user_a": "A"}

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        store = InMemoryDocumentStore()
        await store.set_document("u", {"transactions": []})
        document = await store.get_document("u")
        document["transactions"].append("mutated")
        assert (await store.get_document("u"))["transactions"] == []


class TestGoogleSheetsDocumentStore:
    """Tests for GoogleSheetsDocumentStore."""

    @pytest.mark.asyncio
    async def test_write_then_read(self):
        client = FakeSheetsClient()
        store = GoogleSheetsDocumentStore(client=client)

        await store.set_document("uid-1", {"transactions": [], "user_names": {"user_a": "Sam"}})

        assert client.sheet.rows[1][0] == "uid-1"
        assert await store.get_document("uid-1") == {
            "transactions": [],
            "user_names": {"user_a": "Sam"},
        }

    @pytest.mark.asyncio
    async def test_missing_key(self):
        store = GoogleSheetsDocumentStore(client=FakeSheetsClient())
        assert await store.get_document("uid-404") is None

    @pytest.mark.asyncio
    async def test_update_rewrites_same_row_with_merge(self):
        client = FakeSheetsClient()
        store = GoogleSheetsDocumentStore(client=client)
        await store.set_document("uid-1", {"transactions": [1], "categories": {"income": []}})
        await store.set_document("uid-1", {"transactions": [1, 2]})

        assert len(client.sheet.rows) == 2
        document = await store.get_document("uid-1")
        assert document == {"transactions": [1, 2], "categories": {"income": []}}

    @pytest.mark.asyncio
    async def test_write_without_merge_replaces(self):
        client = FakeSheetsClient()
        store = GoogleSheetsDocumentStore(client=client)
        await store.set_document("uid-1", {"transactions": [1], "categories": {}})
        await store.set_document("uid-1", {"transactions": []}, merge=False)
        assert await store.get_document("uid-1") == {"transactions": []}

    @pytest.mark.asyncio
    async def test_large_document_spans_columns(self):
        client = FakeSheetsClient(sheet=FakeWorksheet(col_count=3))
        store = GoogleSheetsDocumentStore(client=client)
        big = {"transactions": ["x" * 1000] * 100}

        await store.set_document("uid-1", big)

        row = client.sheet.rows[1]
        assert len(row) > 3
        assert client.sheet.col_count >= len(row)
        assert await store.get_document("uid-1") == big

    @pytest.mark.asyncio
    async def test_shrinking_document_blanks_old_chunks(self):
        client = FakeSheetsClient()
        store = GoogleSheetsDocumentStore(client=client)
        await store.set_document("uid-1", {"transactions": ["x" * 1000] * 100})
        await store.set_document("uid-1", {"transactions": []}, merge=False)

        row = client.sheet.rows[1]
        assert row[3:] == [""] * (len(row) - 3)
        assert await store.get_document("uid-1") == {"transactions": []}

    @pytest.mark.asyncio
    async def test_corrupt_payload(self):
        sheet = FakeWorksheet()
        sheet.rows.append(["uid-1", "2024-01-01", "{not json"])
        store = GoogleSheetsDocumentStore(client=FakeSheetsClient(sheet=sheet))
        with pytest.raises(StorageError):
            await store.get_document("uid-1")

    @pytest.mark.asyncio
    async def test_non_object_payload(self):
        sheet = FakeWorksheet()
        sheet.rows.append(["uid-1", "2024-01-01", json.dumps([1, 2])])
        store = GoogleSheetsDocumentStore(client=FakeSheetsClient(sheet=sheet))
        with pytest.raises(StorageError):
            await store.get_document("uid-1")

    @pytest.mark.asyncio
    async def test_read_failure_is_connection_error(self):
        store = GoogleSheetsDocumentStore(client=FakeSheetsClient(error=RuntimeError("quota")))
        with pytest.raises(ConnectionError):
            await store.get_document("uid-1")

    @pytest.mark.asyncio
    async def test_write_failure_is_storage_error(self):
        store = GoogleSheetsDocumentStore(client=FakeSheetsClient(error=RuntimeError("quota")))
        with pytest.raises(StorageError):
            await store.set_document("uid-1", {"transactions": []})

    @pytest.mark.asyncio
    async def test_sheet_calls_run_off_the_event_loop(self):
        """Blocking gspread calls happen in a worker thread, not on the loop's thread."""
        sheet = FakeWorksheet()
        store = GoogleSheetsDocumentStore(FakeSheetsClient(sheet))

        await store.set_document("u", {"transactions": []})
        await store.get_document("u")

        loop_thread = threading.get_ident()
        assert len(sheet.calling_threads) == 2
        assert loop_thread not in sheet.calling_threads
