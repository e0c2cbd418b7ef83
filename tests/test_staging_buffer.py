"""Tests for the import staging buffer."""

import datetime as dt
from decimal import Decimal

import pytest

from household_ledger.models.ledger import (
    DEFAULT_STATEMENT_DESCRIPTION,
    ExpenseFields,
    HouseholdUser,
    StagingState,
    Transaction,
    TransactionType,
)
from household_ledger.staging import buffer as buffer_module
from household_ledger.staging.buffer import (
    ImportStagingBuffer,
    StagingError,
    UnknownCategoryError,
    coerce_amount,
)


def fields(amount: str, description: str, category: str = "Food", date: str = "2024-04-02"):
    return ExpenseFields(
        amount=Decimal(amount),
        description=description,
        date=date,
        category=category,
    )


def rent() -> Transaction:
    return Transaction(
        owner=HouseholdUser.USER_A,
        type=TransactionType.EXPENSE,
        category_id="e2",
        description="Rent",
        amount=Decimal("900"),
    )


@pytest.fixture
def buffer(ledger) -> ImportStagingBuffer:
    return ImportStagingBuffer(ledger, clock=lambda: 1_700_000_000.0)


class TestCoerceAmount:
    """Tests for parsing typed amounts."""

    def test_plain_number(self):
        assert coerce_amount("12.50") == Decimal("12.50")

    def test_decimal_comma(self):
        assert coerce_amount("12,5") == Decimal("12.5")

    def test_non_numeric_becomes_zero(self):
        assert coerce_amount("abc") == Decimal("0")
        assert coerce_amount("") == Decimal("0")
        assert coerce_amount("nan") == Decimal("0")

    def test_negative_is_rejected(self):
        with pytest.raises(StagingError):
            coerce_amount("-4")


class TestStaging:
    """Tests for stage() and the edit operations."""

    def test_stage_sets_state_and_owner(self, buffer, ledger):
        staged = buffer.stage([fields("50", "Market"), fields("20", "Bakery")], HouseholdUser.USER_B)
        assert buffer.state == StagingState.STAGED
        assert [s.owner for s in staged] == [HouseholdUser.USER_B] * 2
        assert all(s.type == TransactionType.EXPENSE for s in staged)
        assert staged[0].category_id == "e1"
        assert len(ledger.transactions) == 0

    def test_temp_ids_are_unique(self, buffer):
        staged = buffer.stage([fields("1", "a"), fields("2", "b")], HouseholdUser.USER_A)
        assert staged[0].temp_id != staged[1].temp_id
        assert staged[0].temp_id.startswith("1700000000000-")

    def test_running_total(self, buffer):
        buffer.stage([fields("50", "Market"), fields("20", "Bakery")], HouseholdUser.USER_A)
        assert buffer.running_total == Decimal("70")

    def test_empty_extraction_changes_nothing(self, buffer):
        assert buffer.stage([], HouseholdUser.USER_A) == []
        assert buffer.state == StagingState.EMPTY

    def test_category_resolution_is_case_insensitive(self, buffer):
        staged = buffer.stage([fields("5", "x", category="transport")], HouseholdUser.USER_A)
        assert staged[0].category_id == "e3"

    def test_unknown_category_is_unresolved(self, buffer):
        buffer.stage(
            [fields("5", "x", category="Pets"), fields("6", "y", category="pets")],
            HouseholdUser.USER_A,
        )
        assert buffer.unresolved_categories == ["Pets", "pets"]

    def test_update_amount_with_garbage_becomes_zero(self, buffer):
        item = buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)[0]
        buffer.update_field(item.temp_id, "amount", "abc")
        assert buffer.get(item.temp_id).amount == Decimal("0")
        assert buffer.running_total == Decimal("0")

    def test_update_negative_amount_rejected(self, buffer):
        item = buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)[0]
        with pytest.raises(StagingError):
            buffer.update_field(item.temp_id, "amount", "-10")
        assert buffer.get(item.temp_id).amount == Decimal("50")

    def test_update_category_to_unknown_name(self, buffer):
        item = buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)[0]
        with pytest.raises(UnknownCategoryError) as exc_info:
            buffer.update_field(item.temp_id, "category", "Gifts")
        assert exc_info.value.name == "Gifts"
        assert exc_info.value.temp_id == item.temp_id

    def test_update_category_to_existing_name(self, buffer):
        item = buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)[0]
        updated = buffer.update_field(item.temp_id, "category", "health")
        assert updated.category == "Health"
        assert updated.category_id == "e5"

    def test_update_owner_and_date(self, buffer):
        item = buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)[0]
        buffer.update_field(item.temp_id, "owner", "user_b")
        buffer.update_field(item.temp_id, "date", "2024-05-06")
        updated = buffer.get(item.temp_id)
        assert updated.owner == HouseholdUser.USER_B
        assert updated.date == dt.date(2024, 5, 6)

    def test_update_bad_date(self, buffer):
        item = buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)[0]
        with pytest.raises(StagingError):
            buffer.update_field(item.temp_id, "date", "soon")

    def test_update_unknown_field(self, buffer):
        item = buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)[0]
        with pytest.raises(StagingError):
            buffer.update_field(item.temp_id, "type", "income")

    def test_update_unknown_temp_id(self, buffer):
        buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)
        with pytest.raises(StagingError):
            buffer.update_field("missing", "amount", "1")

    def test_create_category_resolves_matching_items(self, buffer, ledger):
        staged = buffer.stage(
            [fields("5", "x", category="Pets"), fields("6", "y", category="pets")],
            HouseholdUser.USER_A,
        )
        buffer.create_category(staged[0].temp_id, "Pets")
        assert buffer.unresolved_categories == []
        assert ledger.categories.find_by_name("Pets", TransactionType.EXPENSE) is not None

    def test_remove_last_item_keeps_staged_state(self, buffer):
        item = buffer.stage([fields("50", "Market")], HouseholdUser.USER_A)[0]
        assert buffer.remove(item.temp_id) is True
        assert buffer.remove(item.temp_id) is False
        assert buffer.state == StagingState.STAGED
        assert len(buffer) == 0


class TestCommitAndCancel:
    """Tests for leaving the STAGED state."""

    def test_commit_moves_items_in_order(self, buffer, ledger):
        """Both items land on top of the list, in staged order."""
        existing = ledger.transactions.add(rent())
        buffer.stage([fields("50", "Market"), fields("20", "Bakery")], HouseholdUser.USER_A)

        stored, committed, message = buffer.commit()

        assert committed is True
        assert message == "2 transactions imported."
        assert [t.description for t in ledger.transactions.all()] == ["Market", "Bakery", existing.description]
        assert [t.amount for t in stored] == [Decimal("50"), Decimal("20")]
        assert buffer.state == StagingState.EMPTY
        assert len(buffer) == 0

    def test_commit_uses_midnight_utc(self, buffer):
        buffer.stage([fields("5", "Market", date="2024-04-02")], HouseholdUser.USER_A)
        stored, _, _ = buffer.commit()
        assert stored[0].date == dt.datetime(2024, 4, 2, tzinfo=dt.timezone.utc)

    def test_commit_fills_blank_description(self, buffer):
        item = buffer.stage([fields("5", "Market")], HouseholdUser.USER_A)[0]
        buffer.update_field(item.temp_id, "description", "  ")
        stored, _, _ = buffer.commit()
        assert stored[0].description == DEFAULT_STATEMENT_DESCRIPTION

    def test_commit_with_nothing_staged(self, buffer, ledger):
        item = buffer.stage([fields("5", "Market")], HouseholdUser.USER_A)[0]
        buffer.remove(item.temp_id)
        stored, committed, message = buffer.commit()
        assert (stored, committed) == ([], False)
        assert message == "There are no transactions to import."
        assert len(ledger.transactions) == 0

    def test_commit_refuses_unresolved_categories(self, buffer, ledger):
        buffer.stage([fields("5", "x", category="Pets")], HouseholdUser.USER_A)
        stored, committed, message = buffer.commit()
        assert committed is False
        assert "Pets" in message
        assert len(ledger.transactions) == 0
        assert buffer.state == StagingState.STAGED

    def test_commit_can_create_missing_categories(self, buffer, ledger):
        buffer.stage(
            [fields("5", "x", category="Pets"), fields("6", "y", category="pets")],
            HouseholdUser.USER_A,
        )
        stored, committed, _ = buffer.commit(create_missing_categories=True)
        pets = ledger.categories.find_by_name("Pets", TransactionType.EXPENSE)
        assert committed is True
        assert {t.category_id for t in stored} == {pets.id}

    def test_committed_transactions_have_fresh_ids(self, buffer):
        staged = buffer.stage([fields("5", "Market")], HouseholdUser.USER_A)
        stored, _, _ = buffer.commit()
        assert stored[0].id != staged[0].temp_id

    def test_cancel_leaves_ledger_untouched(self, buffer, ledger):
        buffer.stage([fields("50", "Market"), fields("20", "Bakery")], HouseholdUser.USER_A)
        assert buffer.cancel() == 2
        assert len(ledger.transactions) == 0
        assert buffer.state == StagingState.EMPTY
        assert buffer.cancel() == 0


class TestLengthLimits:
    """Staged text has to fit the ledger's description and category limits."""

    def test_long_extracted_description_is_clipped(self, buffer, ledger):
        item = buffer.stage([fields("5", "x" * 301, category="Brand New")], HouseholdUser.USER_A)[0]
        assert len(item.description) == 300

        stored, committed, _ = buffer.commit(create_missing_categories=True)

        assert committed is True
        assert len(stored[0].description) == 300
        assert ledger.categories.find_by_name("Brand New", TransactionType.EXPENSE) is not None

    def test_long_description_edit_rejected(self, buffer):
        item = buffer.stage([fields("5", "Market")], HouseholdUser.USER_A)[0]
        with pytest.raises(StagingError):
            buffer.update_field(item.temp_id, "description", "d" * 301)
        assert buffer.get(item.temp_id).description == "Market"

    def test_long_category_name_rejected_on_create(self, buffer, ledger):
        item = buffer.stage([fields("5", "x", category="Pets")], HouseholdUser.USER_A)[0]
        before = len(ledger.categories.by_type(TransactionType.EXPENSE))

        with pytest.raises(StagingError):
            buffer.create_category(item.temp_id, "c" * 101)

        assert len(ledger.categories.by_type(TransactionType.EXPENSE)) == before
        assert buffer.unresolved_categories == ["Pets"]

    def test_long_category_name_rejected_on_edit(self, buffer):
        item = buffer.stage([fields("5", "x")], HouseholdUser.USER_A)[0]
        with pytest.raises(StagingError) as exc_info:
            buffer.update_field(item.temp_id, "category", "c" * 101)
        assert not isinstance(exc_info.value, UnknownCategoryError)

    def test_refused_commit_creates_no_categories(self, buffer, ledger, monkeypatch):
        """An invalid entry stops the commit before any category is added."""
        real_transaction = buffer_module.Transaction

        def strict_transaction(**kwargs):
            if kwargs["description"] == "Broken":
                kwargs["amount"] = Decimal("-1")
            return real_transaction(**kwargs)

        monkeypatch.setattr(buffer_module, "Transaction", strict_transaction)
        buffer.stage(
            [fields("5", "Fine", category="Brand New"), fields("6", "Broken")],
            HouseholdUser.USER_A,
        )

        stored, committed, message = buffer.commit(create_missing_categories=True)

        assert (stored, committed) == ([], False)
        assert "invalid" in message
        assert ledger.categories.find_by_name("Brand New", TransactionType.EXPENSE) is None
        assert len(ledger.transactions) == 0
        assert buffer.state == StagingState.STAGED
        assert len(buffer) == 2
