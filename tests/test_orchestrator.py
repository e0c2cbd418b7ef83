"""
Integration tests for the session, receipt and statement flows.

The identity provider, document store and Gemini model are the fakes from
conftest; everything in between is the real code.
"""

import json
from decimal import Decimal

import pytest

from conftest import FakeGeminiModel, FlakyDocumentStore
from household_ledger.models.audit import AuditEventType
from household_ledger.models.ledger import (
    MISSING_CATEGORY_LABEL,
    HouseholdUser,
    LedgerSnapshot,
    ManualEntryDraft,
    StagingState,
    Transaction,
    TransactionType,
    UploadedDocument,
    default_categories,
)
from household_ledger.notices import NoticeBoard, NoticeKind
from household_ledger.orchestrator import (
    NotSignedInError,
    ReceiptScanFlow,
    SessionFlow,
    StatementImportFlow,
    acting_user_for,
)
from household_ledger.services.extraction import GeminiExtractionService


@pytest.fixture
def flow(identity, store, app_settings, sync_settings) -> SessionFlow:
    return SessionFlow(
        identity=identity,
        document_store=store,
        notices=NoticeBoard(),
        app_settings=app_settings,
        sync_settings=sync_settings,
    )


@pytest.fixture
def statement_pdf() -> UploadedDocument:
    return UploadedDocument(filename="march.pdf", mime_type="application/pdf", data=b"%PDF-1.4")


def draft(amount="12.50", owner=None, description="Lunch", category_id="e1") -> ManualEntryDraft:
    return ManualEntryDraft(
        type=TransactionType.EXPENSE,
        owner=owner,
        amount=amount,
        description=description,
        category_id=category_id,
        date="2024-02-01",
    )


def statement_reply(*items) -> str:
    return json.dumps([
        {"amount": amount, "description": description, "date": "2024-04-02", "category": category}
        for amount, description, category in items
    ])


class TestActingUser:
    """Tests for mapping accounts to household members."""

    def test_prefix_match_is_user_a(self):
        assert acting_user_for("Alex.Smith@example.com", "alex") == HouseholdUser.USER_A

    def test_other_email_is_user_b(self):
        assert acting_user_for("blair@example.com", "alex") == HouseholdUser.USER_B

    def test_no_prefix_means_user_a(self):
        assert acting_user_for("blair@example.com", None) == HouseholdUser.USER_A


class TestSessionFlow:
    """Tests for sign-in, sign-out and direct ledger edits."""

    @pytest.mark.asyncio
    async def test_sign_in_opens_ledger(self, flow):
        current, ok, message = await flow.sign_in("alex@example.com", "secret")

        assert ok
        assert message == "Signed in as alex@example.com"
        assert current.acting_user == HouseholdUser.USER_A
        assert current.coordinator.load_complete
        assert flow.audit_logger.events_of_type(AuditEventType.USER_SIGNED_IN)

    @pytest.mark.asyncio
    async def test_second_member_acts_as_user_b(self, flow):
        current, _, _ = await flow.sign_in("blair@example.com", "secret")
        assert current.acting_user == HouseholdUser.USER_B

    @pytest.mark.asyncio
    async def test_wrong_password(self, flow):
        current, ok, message = await flow.sign_in("alex@example.com", "nope")

        assert current is None
        assert not ok
        assert message == "Invalid email or password."
        assert flow.notices.active()[0].kind == NoticeKind.ERROR
        assert flow.audit_logger.events_of_type(AuditEventType.AUTH_FAILED)
        assert not flow.is_signed_in

    @pytest.mark.asyncio
    async def test_sign_in_loads_stored_ledger(self, identity, app_settings, sync_settings):
        rent = Transaction(
            owner=HouseholdUser.USER_B,
            type=TransactionType.EXPENSE,
            category_id="e2",
            description="Rent",
            amount=Decimal("900"),
        )
        document = LedgerSnapshot(transactions=[rent], categories=default_categories()).to_document()
        store = FlakyDocumentStore({"uid-alex": document})
        flow = SessionFlow(identity, store, app_settings=app_settings, sync_settings=sync_settings)

        await flow.sign_in("alex@example.com", "secret")

        assert [t.id for t in flow.visible_transactions()] == [rent.id]
        assert flow.display_name(HouseholdUser.USER_B) == "Blair"

    @pytest.mark.asyncio
    async def test_operations_need_a_session(self, flow):
        with pytest.raises(NotSignedInError):
            flow.add_manual_transaction(draft())

    @pytest.mark.asyncio
    async def test_manual_entry_is_saved_to_the_cloud(self, flow, store):
        await flow.sign_in("alex@example.com", "secret")

        stored, result = flow.add_manual_transaction(draft())
        await flow.flush()

        assert result.is_valid
        assert stored.owner == HouseholdUser.USER_A
        assert len(store.writes) == 1
        key, document = store.writes[0]
        assert key == "uid-alex"
        assert document["transactions"][0]["id"] == stored.id

    @pytest.mark.asyncio
    async def test_invalid_manual_entry_is_blocked(self, flow, store):
        await flow.sign_in("alex@example.com", "secret")

        stored, result = flow.add_manual_transaction(draft(amount="0"))
        await flow.flush()

        assert stored is None
        assert not result.is_valid
        assert flow.visible_transactions() == []
        assert store.writes == []
        assert flow.audit_logger.events_of_type(AuditEventType.MANUAL_ENTRY_REJECTED)

    @pytest.mark.asyncio
    async def test_filter_by_member_keeps_order(self, flow):
        await flow.sign_in("alex@example.com", "secret")
        flow.add_manual_transaction(draft(owner=HouseholdUser.USER_A, description="a1"))
        b1, _ = flow.add_manual_transaction(draft(owner=HouseholdUser.USER_B, description="b1"))
        flow.add_manual_transaction(draft(owner=HouseholdUser.USER_A, description="a2"))
        b2, _ = flow.add_manual_transaction(draft(owner=HouseholdUser.USER_B, description="b2"))

        visible = flow.visible_transactions(HouseholdUser.USER_B)

        assert [t.id for t in visible] == [b2.id, b1.id]
        assert len(flow.visible_transactions("all")) == 4
        assert flow.summary(HouseholdUser.USER_B).expenses == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_remove_needs_confirmation_and_is_idempotent(self, flow):
        await flow.sign_in("alex@example.com", "secret")
        stored, _ = flow.add_manual_transaction(draft())

        assert flow.remove_transaction(stored.id) == (False, "Confirm to delete this transaction.")
        assert flow.remove_transaction(stored.id, confirm=True) == (True, "Transaction deleted.")
        assert flow.remove_transaction(stored.id, confirm=True) == (False, "Transaction not found.")
        assert flow.visible_transactions() == []

    @pytest.mark.asyncio
    async def test_deleted_category_leaves_placeholder(self, flow):
        await flow.sign_in("alex@example.com", "secret")
        stored, _ = flow.add_manual_transaction(draft(category_id="e4"))

        ok, message = flow.delete_category("e4", TransactionType.EXPENSE)
        assert not ok
        assert "1 transactions use it" in message

        ok, _ = flow.delete_category("e4", TransactionType.EXPENSE, confirm=True)
        assert ok
        assert flow.visible_transactions()[0].category_id == "e4"
        assert flow.category_label(stored.category_id) == MISSING_CATEGORY_LABEL
        assert flow.category_report()[0].label == MISSING_CATEGORY_LABEL

    @pytest.mark.asyncio
    async def test_category_add_and_rename(self, flow):
        await flow.sign_in("alex@example.com", "secret")

        category, _ = flow.add_category("Pets", TransactionType.EXPENSE)
        duplicate, message = flow.add_category("pets", TransactionType.EXPENSE)
        renamed, _ = flow.rename_category(category.id, "Animals", TransactionType.EXPENSE)

        assert duplicate is None
        assert "already exists" in message
        assert renamed.id == category.id
        assert flow.category_label(category.id) == "Animals"

    @pytest.mark.asyncio
    async def test_overlong_category_name_is_refused(self, flow):
        await flow.sign_in("alex@example.com", "secret")

        added, message = flow.add_category("c" * 101, TransactionType.EXPENSE)
        renamed, rename_message = flow.rename_category("e1", "c" * 101, TransactionType.EXPENSE)

        assert added is None
        assert "at most 100" in message
        assert renamed is None
        assert rename_message == message
        assert flow.category_label("e1") == "Food"

    @pytest.mark.asyncio
    async def test_update_transaction_keeps_identity(self, flow):
        await flow.sign_in("alex@example.com", "secret")
        stored, _ = flow.add_manual_transaction(draft(owner=HouseholdUser.USER_B))

        updated, result = flow.update_transaction(
            stored.id, draft(amount="20", description="Dinner", category_id="e2"),
        )

        assert result.is_valid
        assert updated.id == stored.id
        assert updated.created_at == stored.created_at
        assert updated.owner == HouseholdUser.USER_B
        assert flow.visible_transactions() == [updated]
        assert flow.visible_transactions()[0].amount == Decimal("20")
        assert flow.audit_logger.events_of_type(AuditEventType.TRANSACTION_UPDATED)

    @pytest.mark.asyncio
    async def test_update_transaction_is_validated(self, flow):
        """An income category on an expense is refused and the entry is unchanged."""
        await flow.sign_in("alex@example.com", "secret")
        stored, _ = flow.add_manual_transaction(draft())

        updated, result = flow.update_transaction(stored.id, draft(category_id="i1"))
        blank, blank_result = flow.update_transaction(stored.id, draft(description=""))

        assert updated is None
        assert not result.is_valid
        assert result.errors[0].field == "category_id"
        assert blank is None
        assert not blank_result.is_valid
        assert flow.visible_transactions() == [stored]

    @pytest.mark.asyncio
    async def test_update_unknown_transaction(self, flow):
        await flow.sign_in("alex@example.com", "secret")

        updated, result = flow.update_transaction("missing", draft())

        assert updated is None
        assert result.errors[0].message == "Transaction not found"
    @pytest.mark.asyncio
    async def test_update_user_names(self, flow):
        await flow.sign_in("alex@example.com", "secret")

        assert flow.update_user_names("Sam", "Kim") == (True, "Names updated.")
        assert flow.update_user_names("", "Kim")[0] is False
        assert flow.display_name(HouseholdUser.USER_A) == "Sam"

    @pytest.mark.asyncio
    async def test_sign_out_flushes_pending_write(self, identity, store, app_settings, sync_settings):
        slow = sync_settings.model_copy(update={"debounce_seconds": 60.0})
        flow = SessionFlow(identity, store, app_settings=app_settings, sync_settings=slow)
        await flow.sign_in("alex@example.com", "secret")
        flow.add_manual_transaction(draft())

        await flow.sign_out()

        assert len(store.writes) == 1
        assert not flow.is_signed_in
        assert flow.audit_logger.events_of_type(AuditEventType.USER_SIGNED_OUT)

    @pytest.mark.asyncio
    async def test_no_state_leaks_between_accounts(self, flow):
        await flow.sign_in("alex@example.com", "secret")
        flow.add_manual_transaction(draft())
        await flow.sign_out()

        current, ok, _ = await flow.sign_in("blair@example.com", "secret")

        assert ok
        assert current.user_id == "uid-blair"
        assert flow.visible_transactions() == []

    @pytest.mark.asyncio
    async def test_failed_initial_load_does_not_overwrite_remote(
        self, identity, app_settings, sync_settings,
    ):
        store = FlakyDocumentStore(fail_reads=3)
        flow = SessionFlow(identity, store, app_settings=app_settings, sync_settings=sync_settings)
        current, ok, _ = await flow.sign_in("alex@example.com", "secret")

        flow.add_manual_transaction(draft())
        await flow.flush()

        assert ok
        assert not current.coordinator.load_complete
        assert store.writes == []
        assert await flow.retry_initial_load() is True


class TestReceiptScanFlow:
    """Tests for scanning a receipt into an expense."""

    @pytest.mark.asyncio
    async def test_scan_and_add_with_new_category(self, flow, receipt_image):
        reply = json.dumps({
            "amount": 42.5,
            "category": "Pets",
            "description": "Vet",
            "date": "2024-03-09",
            "tags": ["dog"],
        })
        receipts = ReceiptScanFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        await flow.sign_in("blair@example.com", "secret")

        fields, message = await receipts.scan_receipt(receipt_image)
        stored, _ = receipts.add_scanned_receipt(fields)

        assert "Review" in message
        assert stored.owner == HouseholdUser.USER_B
        assert stored.amount == Decimal("42.5")
        assert flow.category_label(stored.category_id) == "Pets"
        assert stored.date.isoformat().startswith("2024-03-09T00:00:00")

    @pytest.mark.asyncio
    async def test_unreadable_receipt(self, flow, receipt_image):
        receipts = ReceiptScanFlow(
            flow, GeminiExtractionService(model=FakeGeminiModel('{"amount": "abc"}')),
        )
        await flow.sign_in("alex@example.com", "secret")

        fields, message = await receipts.scan_receipt(receipt_image)

        assert fields is None
        assert flow.notices.active()[-1].message == message
        assert flow.audit_logger.events_of_type(AuditEventType.EXTRACTION_FAILED)

    @pytest.mark.asyncio
    async def test_empty_upload_is_rejected_before_extraction(self, flow):
        model = FakeGeminiModel()
        receipts = ReceiptScanFlow(flow, GeminiExtractionService(model=model))
        await flow.sign_in("alex@example.com", "secret")

        empty = UploadedDocument(filename="r.jpg", mime_type="image/jpeg", data=b"")
        fields, message = await receipts.scan_receipt(empty)

        assert fields is None
        assert message == "File is empty."
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_long_receipt_text_is_clipped(self, flow, receipt_image):
        reply = json.dumps({
            "amount": 9,
            "category": "c" * 150,
            "description": "d" * 400,
            "date": "2024-03-09",
            "tags": [],
        })
        receipts = ReceiptScanFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        await flow.sign_in("alex@example.com", "secret")

        fields, _ = await receipts.scan_receipt(receipt_image)
        edited = fields.model_copy(update={"description": "e" * 500})
        stored, message = receipts.add_scanned_receipt(edited)

        assert message == "Expense added from receipt."
        assert stored.description == "e" * 300
        assert flow.category_label(stored.category_id) == "c" * 100

    @pytest.mark.asyncio
    async def test_negative_reviewed_amount_is_refused(self, flow, receipt_image):
        reply = json.dumps({
            "amount": 9,
            "category": "Pets",
            "description": "Vet",
            "date": "2024-03-09",
            "tags": [],
        })
        receipts = ReceiptScanFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        current, _, _ = await flow.sign_in("alex@example.com", "secret")

        fields, _ = await receipts.scan_receipt(receipt_image)
        stored, message = receipts.add_scanned_receipt(fields.model_copy(update={"amount": -5}))

        assert stored is None
        assert flow.notices.active()[-1].message == message
        assert flow.visible_transactions() == []
        assert current.ledger.categories.find_by_name("Pets", TransactionType.EXPENSE) is None


class TestStatementImportFlow:
    """Tests for the statement staging workflow."""

    @pytest.mark.asyncio
    async def test_stage_review_commit(self, flow, store, statement_pdf):
        reply = statement_reply((50, "Market", "Food"), (20, "Bakery", "Food"))
        statements = StatementImportFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        current, _, _ = await flow.sign_in("alex@example.com", "secret")

        staged, message = await statements.analyze_statement(statement_pdf)

        assert message == "2 transactions found. Review them before importing."
        assert current.staging.running_total == Decimal("70")
        assert flow.visible_transactions() == []

        transactions, committed, message = statements.commit_import()
        await flow.flush()

        assert committed
        assert message == "2 transactions imported."
        assert [t.description for t in flow.visible_transactions()] == ["Market", "Bakery"]
        assert len(store.writes) == 1
        assert current.staging.state == StagingState.EMPTY

    @pytest.mark.asyncio
    async def test_malformed_amount_stages_nothing(self, flow, statement_pdf):
        reply = statement_reply(("abc", "Market", "Food"))
        statements = StatementImportFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        current, _, _ = await flow.sign_in("alex@example.com", "secret")

        staged, message = await statements.analyze_statement(statement_pdf)

        assert staged == []
        assert "Could not process" in message
        assert current.staging.state == StagingState.EMPTY

    @pytest.mark.asyncio
    async def test_empty_statement(self, flow, statement_pdf):
        statements = StatementImportFlow(flow, GeminiExtractionService(model=FakeGeminiModel("[]")))
        current, _, _ = await flow.sign_in("alex@example.com", "secret")

        staged, message = await statements.analyze_statement(statement_pdf)

        assert staged == []
        assert message == "No transactions found on this statement."
        assert flow.notices.active()[-1].kind == NoticeKind.INFO
        assert current.staging.state == StagingState.EMPTY

    @pytest.mark.asyncio
    async def test_unknown_category_must_be_created(self, flow, statement_pdf):
        reply = statement_reply((15, "Vet", "Pets"))
        statements = StatementImportFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        await flow.sign_in("alex@example.com", "secret")
        staged, _ = await statements.analyze_statement(statement_pdf)

        _, committed, message = statements.commit_import()
        assert not committed
        assert "Pets" in message

        ok, _ = statements.create_staged_category(staged[0].temp_id, "Pets")
        transactions, committed, _ = statements.commit_import()

        assert ok
        assert committed
        assert flow.category_label(transactions[0].category_id) == "Pets"

    @pytest.mark.asyncio
    async def test_edit_to_unknown_category_offers_creation(self, flow, statement_pdf):
        reply = statement_reply((15, "Vet", "Food"))
        statements = StatementImportFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        await flow.sign_in("alex@example.com", "secret")
        staged, _ = await statements.analyze_statement(statement_pdf)

        ok, message = statements.update_staged(staged[0].temp_id, "category", "Gifts")

        assert not ok
        assert message == "Category 'Gifts' does not exist. Create it?"

    @pytest.mark.asyncio
    async def test_cancel_leaves_ledger_untouched(self, flow, store, statement_pdf):
        reply = statement_reply((50, "Market", "Food"), (20, "Bakery", "Food"))
        statements = StatementImportFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        await flow.sign_in("alex@example.com", "secret")
        await statements.analyze_statement(statement_pdf)

        assert statements.cancel_import() == 2
        await flow.flush()

        assert flow.visible_transactions() == []
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_overlong_staged_category_name_is_reported(self, flow, statement_pdf):
        reply = statement_reply((15, "Vet", "Pets"))
        statements = StatementImportFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        current, _, _ = await flow.sign_in("alex@example.com", "secret")
        staged, _ = await statements.analyze_statement(statement_pdf)

        ok, message = statements.create_staged_category(staged[0].temp_id, "c" * 101)

        assert not ok
        assert "at most 100" in message
        assert current.staging.unresolved_categories == ["Pets"]

    @pytest.mark.asyncio
    async def test_long_statement_description_imports(self, flow, statement_pdf):
        reply = statement_reply((15, "x" * 400, "Brand New"))
        statements = StatementImportFlow(flow, GeminiExtractionService(model=FakeGeminiModel(reply)))
        await flow.sign_in("alex@example.com", "secret")
        await statements.analyze_statement(statement_pdf)

        transactions, committed, _ = statements.commit_import(create_missing_categories=True)

        assert committed
        assert len(transactions[0].description) == 300
        assert flow.category_label(transactions[0].category_id) == "Brand New"
