"""Tests for the owner-scoped expense, saving and ledger repositories."""

from datetime import timedelta

import pytest
from bson import ObjectId

from database import utcnow
from errors import NotFoundError, ValidationError
from repositories import ExpenseRepository, LedgerRepository, SavingRepository, parse_datetime, to_number

ALICE = "alice-id"
BOB = "bob-id"


@pytest.fixture
def expenses(db):
    return ExpenseRepository(db)


@pytest.fixture
def savings(db):
    return SavingRepository(db)


@pytest.fixture
def ledger(db):
    return LedgerRepository(db)


class TestNumbers:
    @pytest.mark.parametrize("value,expected", [(150, 150.0), (12.5, 12.5), ("150", 150.0), (" 99.90 ", 99.9)])
    def test_accepts_plain_numbers(self, value, expected):
        assert to_number(value, "amount") == expected

    @pytest.mark.parametrize("value", ["Rs 150", "$12", "1,000", "", True, None, float("nan"), "inf"])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError):
            to_number(value, "amount")


class TestParseDatetime:
    def test_date_only_end_of_day(self):
        end = parse_datetime("2024-05-31", "endDate", end_of_day=True)
        assert (end.year, end.month, end.day, end.hour, end.minute) == (2024, 5, 31, 23, 59)

    def test_zulu_suffix_converted_to_naive_utc(self):
        parsed = parse_datetime("2024-05-01T10:00:00Z", "startDate")
        assert parsed.tzinfo is None
        assert parsed.hour == 10

    def test_offset_converted(self):
        assert parse_datetime("2024-05-01T10:00:00+02:00", "startDate").hour == 8

    def test_garbage(self):
        with pytest.raises(ValidationError):
            parse_datetime("yesterday-ish", "startDate")


class TestOwnership:
    """Every read and write is scoped to the caller."""

    def test_list_only_returns_own_documents(self, expenses):
        expenses.create(ALICE, {"title": "Coffee", "amount": 150, "reason": "Cash"})
        expenses.create(BOB, {"title": "Tea", "amount": 90})
        docs = expenses.list(ALICE)
        assert [doc["title"] for doc in docs] == ["Coffee"]
        assert all(doc["user_id"] == ALICE for doc in docs)

    def test_owner_comes_from_caller_not_fields(self, expenses):
        with pytest.raises(ValidationError, match="Unknown field"):
            expenses.create(ALICE, {"title": "Coffee", "amount": 1, "user_id": BOB})

    def test_update_other_users_document_is_not_found(self, expenses):
        doc = expenses.create(BOB, {"title": "Tea", "amount": 90})
        with pytest.raises(NotFoundError):
            expenses.update(ALICE, str(doc["_id"]), {"amount": 1})
        assert expenses.get(BOB, str(doc["_id"]))["amount"] == 90

    def test_delete_other_users_document_is_not_found(self, savings):
        doc = savings.create(BOB, {"title": "Pot", "amount": 500})
        with pytest.raises(NotFoundError):
            savings.delete(ALICE, str(doc["_id"]))
        assert len(savings.list(BOB)) == 1

    @pytest.mark.parametrize("bad_id", ["not-an-object-id", str(ObjectId())])
    def test_missing_ids(self, expenses, bad_id):
        with pytest.raises(NotFoundError):
            expenses.update(ALICE, bad_id, {"amount": 1})
        with pytest.raises(NotFoundError):
            expenses.delete(ALICE, bad_id)


class TestExpenses:
    def test_create_assigns_server_fields(self, expenses):
        doc = expenses.create(ALICE, {"title": " Coffee ", "amount": "150", "reason": "Cash"})
        assert doc["title"] == "Coffee"
        assert doc["amount"] == 150.0
        assert doc["user_id"] == ALICE
        assert isinstance(doc["_id"], ObjectId)
        assert doc["created_at"] is not None

    def test_required_fields(self, expenses):
        with pytest.raises(ValidationError, match="amount"):
            expenses.create(ALICE, {"title": "Coffee"})
        with pytest.raises(ValidationError, match="title"):
            expenses.create(ALICE, {"amount": 5})

    def test_negative_amount_rejected(self, expenses):
        with pytest.raises(ValidationError):
            expenses.create(ALICE, {"title": "Refund", "amount": -5})

    def test_list_newest_first(self, expenses):
        for title in ("first", "second", "third"):
            expenses.create(ALICE, {"title": title, "amount": 1})
        assert [doc["title"] for doc in expenses.list(ALICE)] == ["third", "second", "first"]

    def test_date_window(self, expenses):
        """An expense created now is inside [now-1d, now+1d] and outside [now+2d, now+3d]."""
        expenses.create(ALICE, {"title": "Coffee", "amount": 150, "reason": "Cash"})
        now = utcnow()
        inside = expenses.list(ALICE, start=now - timedelta(days=1), end=now + timedelta(days=1))
        outside = expenses.list(ALICE, start=now + timedelta(days=2), end=now + timedelta(days=3))
        assert [doc["title"] for doc in inside] == ["Coffee"]
        assert outside == []

    def test_partial_update(self, expenses):
        doc = expenses.create(ALICE, {"title": "Coffee", "amount": 150, "reason": "Cash"})
        updated = expenses.update(ALICE, str(doc["_id"]), {"amount": 175})
        assert updated["amount"] == 175.0
        assert updated["title"] == "Coffee"
        assert updated["reason"] == "Cash"

    def test_update_rejects_unknown_and_immutable_fields(self, expenses):
        doc = expenses.create(ALICE, {"title": "Coffee", "amount": 150})
        for field in ("user_id", "_id", "created_at", "colour"):
            with pytest.raises(ValidationError):
                expenses.update(ALICE, str(doc["_id"]), {field: "x"})

    def test_delete(self, expenses):
        doc = expenses.create(ALICE, {"title": "Coffee", "amount": 150})
        expenses.delete(ALICE, str(doc["_id"]))
        assert expenses.list(ALICE) == []
        with pytest.raises(NotFoundError):
            expenses.delete(ALICE, str(doc["_id"]))


class TestSavings:
    def test_negative_saving_allowed(self, savings):
        """Withdrawals are recorded as negative deposits."""
        doc = savings.create(ALICE, {"title": "Withdrawal", "amount": -200})
        assert doc["amount"] == -200.0


class TestLedger:
    def test_create_with_defaults(self, ledger):
        entry = ledger.create(ALICE, {"type": "loan_given", "title": "Lent to Sam", "amount": 1000})
        assert entry["status"] == "active"
        assert entry["paid_amount"] == 0.0
        assert entry["interest_rate"] == 0.0
        assert entry["start_date"] is not None

    def test_type_must_be_an_owned_category(self, ledger):
        with pytest.raises(ValidationError, match="Unknown ledger category"):
            ledger.create(ALICE, {"type": "gold_bars", "title": "x", "amount": 1})

    def test_paid_amount_cannot_exceed_amount(self, ledger):
        with pytest.raises(ValidationError):
            ledger.create(ALICE, {"type": "loan_given", "title": "x", "amount": 100, "paid_amount": 150})
        entry = ledger.create(ALICE, {"type": "loan_given", "title": "x", "amount": 100, "paid_amount": 40})
        with pytest.raises(ValidationError):
            ledger.update(ALICE, str(entry["_id"]), {"amount": 30})

    def test_status_checked(self, ledger):
        with pytest.raises(ValidationError):
            ledger.create(ALICE, {"type": "loan_given", "title": "x", "amount": 100, "status": "lost"})

    def test_list_filters_by_type(self, ledger):
        ledger.create(ALICE, {"type": "loan_given", "title": "given", "amount": 100})
        ledger.create(ALICE, {"type": "loan_taken", "title": "taken", "amount": 100})
        assert [doc["title"] for doc in ledger.list(ALICE, type="loan_taken")] == ["taken"]
        assert len(ledger.list(ALICE)) == 2

    def test_partial_repayment(self, ledger):
        entry = ledger.create(ALICE, {"type": "loan_taken", "title": "Car", "amount": 500})
        updated = ledger.update(ALICE, str(entry["_id"]), {"paid_amount": 200, "status": "partial"})
        assert updated["paid_amount"] == 200.0
        assert updated["status"] == "partial"

    def test_due_date_parsed(self, ledger):
        entry = ledger.create(
            ALICE,
            {"type": "fixed_deposit", "title": "FD", "amount": 5000, "due_date": "2030-01-01T00:00:00Z"},
        )
        assert entry["due_date"].year == 2030
        assert entry["due_date"].tzinfo is None
