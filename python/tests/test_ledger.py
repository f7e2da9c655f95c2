"""
Unit tests for the credit ledger.

Covers validation of appends, balance arithmetic, the snapshot staying in
step with the history, history filtering and query settlement.
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from database.models import CreditAction, QueryStatus, QueryType
from database.repositories import CreditTransactionRepository
from ledger import (
    Deduction,
    HistoryFilter,
    InsufficientBalanceError,
    InvalidActionError,
    InvalidAmountError,
    PersistenceError,
    QueryNotSettleableError,
    Renewal,
    TopUp,
    UnknownOfficerError,
    UnknownQueryError,
)


def assert_consistent(ledger, directory, officer_id):
    """Balance, snapshot and history sum must all agree."""
    balance = ledger.balance_of(officer_id)
    history = ledger.history(officer_id).to_list()
    assert directory.credits_remaining(officer_id) == balance
    assert sum(t.credits for t in history) == balance
    assert [t.sequence for t in history] == list(range(1, len(history) + 1))


class TestAppendScenario:
    """The basic top-up, spend, reject, refund walk-through."""

    def test_full_scenario(self, ledger, directory, officer):
        """Top-up 50, Deduction 12, rejected Deduction 45, Refund 10."""
        assert ledger.balance_of(officer.id) == 0

        first = ledger.append_transaction(officer.id, "Top-up", 50, payment_mode="Department Budget")
        assert first.new_balance == 50
        assert ledger.balance_of(officer.id) == 50

        spent = ledger.append_transaction(officer.id, "Deduction", 12, remarks="OSINT query cost")
        assert spent.credits == -12
        assert spent.previous_balance == 50
        assert spent.new_balance == 38

        with pytest.raises(InsufficientBalanceError) as exc_info:
            ledger.append_transaction(officer.id, "Deduction", 45)
        assert exc_info.value.balance == 38
        assert exc_info.value.requested == 45
        assert ledger.balance_of(officer.id) == 38

        refund = ledger.append_transaction(officer.id, "Refund", 10)
        assert refund.new_balance == 48
        assert ledger.balance_of(officer.id) == 48

        assert_consistent(ledger, directory, officer.id)
        assert len(ledger.history(officer.id).to_list()) == 3

    def test_transaction_record_fields(self, ledger, officer):
        """The committed record carries sequence, name and metadata."""
        record = ledger.append_transaction(
            officer.id, "Renewal", 100,
            payment_mode="UPI", payment_reference="TXN123", processed_by="admin"
        )
        assert record.sequence == 1
        assert record.action == CreditAction.RENEWAL
        assert record.officer_name == "Inspector Ramesh Kumar"
        assert record.payment_mode == "UPI"
        assert record.payment_reference == "TXN123"
        assert record.processed_by == "admin"
        assert record.created_at.tzinfo is not None

    def test_default_remarks(self, ledger, officer):
        """Remarks default to '<Action> - <amount> credits'."""
        record = ledger.append_transaction(officer.id, "Top-up", 25)
        assert record.remarks == "Top-up - 25 credits"

    def test_default_payment_mode_for_issuing_actions(self, ledger, officer):
        """Renewal and Top-up without a payment mode use the configured default."""
        record = ledger.append_transaction(officer.id, "Top-up", 25)
        assert record.payment_mode == "Department Budget"

    def test_deduction_drops_payment_metadata(self, funded_officer, ledger):
        """Payment fields are not stored on a Deduction."""
        record = ledger.append_transaction(
            funded_officer.id, "Deduction", 5, payment_mode="UPI", payment_reference="X"
        )
        assert record.payment_mode is None
        assert record.payment_reference is None

    def test_append_prebuilt_request(self, funded_officer, ledger):
        """append() accepts request variants directly."""
        record = ledger.append(funded_officer.id, TopUp(amount=5, payment_mode="Cash"))
        assert record.new_balance == 55
        record = ledger.append(funded_officer.id, Deduction(amount=55))
        assert record.new_balance == 0

    def test_deduction_to_exactly_zero(self, funded_officer, ledger, directory):
        """Spending the whole balance is allowed."""
        record = ledger.append_transaction(funded_officer.id, "Deduction", 50)
        assert record.new_balance == 0
        assert_consistent(ledger, directory, funded_officer.id)


class TestAppendValidation:
    """Rejected appends leave everything unchanged."""

    def test_unknown_officer(self, ledger):
        with pytest.raises(UnknownOfficerError):
            ledger.append_transaction(uuid.uuid4(), "Top-up", 10)

    @pytest.mark.parametrize("amount", [0, -5, 2.5, "10", True, None])
    def test_invalid_amount(self, funded_officer, ledger, amount):
        """Amounts must be positive integers; bools and strings are rejected."""
        with pytest.raises(InvalidAmountError):
            ledger.append_transaction(funded_officer.id, "Top-up", amount)
        assert ledger.balance_of(funded_officer.id) == 50

    def test_unknown_action(self, funded_officer, ledger):
        with pytest.raises(InvalidActionError):
            ledger.append_transaction(funded_officer.id, "Bonus", 10)

    def test_first_transaction_must_issue_credits(self, officer, ledger):
        """A Refund or Adjustment cannot open an officer's history."""
        with pytest.raises(InvalidActionError):
            ledger.append_transaction(officer.id, "Refund", 10)
        with pytest.raises(InvalidActionError):
            ledger.append_transaction(officer.id, "Adjustment", 10)
        assert ledger.history(officer.id).to_list() == []

    def test_zero_adjustment_rejected(self, funded_officer, ledger):
        with pytest.raises(InvalidAmountError):
            ledger.append_transaction(funded_officer.id, "Adjustment", 0)

    def test_rejection_is_audited(self, funded_officer, ledger, audit_logger):
        """Rejected appends are written to the audit log with their error code."""
        with pytest.raises(InsufficientBalanceError):
            ledger.append_transaction(funded_officer.id, "Deduction", 100)
        content = audit_logger.log_path.read_text(encoding="utf-8")
        assert "TRANSACTION_REJECTED" in content
        assert "INSUFFICIENT_BALANCE" in content


class TestAdjustments:
    """Adjustments carry a caller-supplied sign."""

    def test_positive_adjustment(self, funded_officer, ledger, directory):
        record = ledger.append_transaction(funded_officer.id, "Adjustment", 7)
        assert record.credits == 7
        assert record.new_balance == 57
        assert_consistent(ledger, directory, funded_officer.id)

    def test_negative_adjustment(self, funded_officer, ledger, directory):
        record = ledger.append_transaction(funded_officer.id, "Adjustment", -20)
        assert record.credits == -20
        assert record.new_balance == 30
        assert_consistent(ledger, directory, funded_officer.id)

    def test_negative_adjustment_below_zero(self, funded_officer, ledger):
        with pytest.raises(InsufficientBalanceError):
            ledger.append_transaction(funded_officer.id, "Adjustment", -51)
        assert ledger.balance_of(funded_officer.id) == 50


class TestSnapshot:
    """The officer snapshot tracks the ledger."""

    def test_total_credits_counts_issued_only(self, funded_officer, ledger, directory):
        """Renewal and Top-up grow total_credits; Refund and Adjustment do not."""
        ledger.append_transaction(funded_officer.id, "Renewal", 30)
        ledger.append_transaction(funded_officer.id, "Deduction", 10)
        ledger.append_transaction(funded_officer.id, "Refund", 5)
        ledger.append_transaction(funded_officer.id, "Adjustment", 3)

        snapshot = directory.get(funded_officer.id)
        assert snapshot.total_credits == 80
        assert snapshot.credits_remaining == 78

    def test_balance_can_exceed_allotment(self, funded_officer, ledger, directory):
        """total_credits is not a cap."""
        ledger.append_transaction(funded_officer.id, "Adjustment", 100)
        snapshot = directory.get(funded_officer.id)
        assert snapshot.credits_remaining == 150
        assert snapshot.total_credits == 50

    def test_version_bumps_on_each_append(self, officer, ledger, directory):
        before = directory.get(officer.id).version
        ledger.append_transaction(officer.id, "Top-up", 10)
        ledger.append_transaction(officer.id, "Top-up", 10)
        assert directory.get(officer.id).version == before + 2

    def test_failed_commit_leaves_state_unchanged(self, funded_officer, ledger, directory):
        """A storage failure raises PersistenceError and applies nothing."""
        error = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(CreditTransactionRepository, "append", side_effect=error):
            with pytest.raises(PersistenceError) as exc_info:
                ledger.append_transaction(funded_officer.id, "Top-up", 10)

        assert exc_info.value.retryable is True
        assert ledger.balance_of(funded_officer.id) == 50
        assert_consistent(ledger, directory, funded_officer.id)


class TestHistory:
    """History reads."""

    def test_unknown_officer(self, ledger):
        with pytest.raises(UnknownOfficerError):
            ledger.history(uuid.uuid4())

    def test_balance_of_unknown_officer(self, ledger):
        with pytest.raises(UnknownOfficerError):
            ledger.balance_of(uuid.uuid4())

    def test_history_is_restartable(self, funded_officer, ledger):
        ledger.append_transaction(funded_officer.id, "Deduction", 5)
        history = ledger.history(funded_officer.id)
        assert [t.sequence for t in history] == [1, 2]
        assert [t.sequence for t in history] == [1, 2]

    def test_history_pages_in_insertion_order(self, db_provider, locks, officer):
        """Small batches still yield every transaction once, in order."""
        from ledger import Ledger

        ledger = Ledger(db_provider, locks=locks, history_batch_size=2)
        ledger.append_transaction(officer.id, "Top-up", 10)
        for _ in range(4):
            ledger.append_transaction(officer.id, "Deduction", 1)

        history = ledger.history(officer.id).to_list()
        assert [t.sequence for t in history] == [1, 2, 3, 4, 5]
        assert history[-1].new_balance == 6

    def test_filter_by_action(self, funded_officer, ledger):
        ledger.append_transaction(funded_officer.id, "Deduction", 5)
        ledger.append_transaction(funded_officer.id, "Refund", 2)
        ledger.append_transaction(funded_officer.id, "Deduction", 3)

        deductions = ledger.history(funded_officer.id, HistoryFilter.of("Deduction")).to_list()
        assert [t.credits for t in deductions] == [-5, -3]

    def test_filter_by_time_range(self, funded_officer, ledger):
        now = datetime.now(timezone.utc)
        future = HistoryFilter(since=now + timedelta(hours=1))
        past = HistoryFilter(since=now - timedelta(hours=1))
        assert ledger.history(funded_officer.id, future).to_list() == []
        assert len(ledger.history(funded_officer.id, past).to_list()) == 1

    def test_filter_with_offset_time_range(self, funded_officer, ledger):
        """Bounds in a non-UTC zone select the same instants."""
        ist = timezone(timedelta(hours=5, minutes=30))
        now = datetime.now(ist)
        recent = HistoryFilter(since=now - timedelta(minutes=5))
        upcoming = HistoryFilter(since=now + timedelta(minutes=5))
        assert len(ledger.history(funded_officer.id, recent).to_list()) == 1
        assert len(ledger.transactions(recent)) == 1
        assert ledger.history(funded_officer.id, upcoming).to_list() == []

    def test_history_sees_later_appends(self, funded_officer, ledger):
        """Each iteration reads what is committed at that time."""
        history = ledger.history(funded_officer.id)
        assert len(history.to_list()) == 1
        ledger.append_transaction(funded_officer.id, "Deduction", 1)
        assert len(history.to_list()) == 2

    def test_transactions_across_officers(self, funded_officer, directory, ledger):
        other = directory.register("ASI Priya Sharma", "+91 9876543210")
        ledger.append_transaction(other.id, "Renewal", 45)

        records = ledger.transactions()
        assert {r.officer_name for r in records} == {"Inspector Ramesh Kumar", "ASI Priya Sharma"}

        found = ledger.transactions(search="priya")
        assert len(found) == 1
        assert found[0].credits == 45

        renewals = ledger.transactions(HistoryFilter.of(CreditAction.RENEWAL))
        assert [r.officer_name for r in renewals] == ["ASI Priya Sharma"]


class TestOpenAccount:
    """Registration with opening credits."""

    def test_opening_renewal(self, ledger, directory):
        snapshot = ledger.open_account(
            "SI Anita Desai", "+91 9988776655", Renewal(38, processed_by="admin"), rank="SI"
        )
        assert snapshot.credits_remaining == 38
        assert snapshot.total_credits == 38
        assert snapshot.rank == "SI"

        history = ledger.history(snapshot.id).to_list()
        assert [(t.action, t.sequence) for t in history] == [(CreditAction.RENEWAL, 1)]
        assert_consistent(ledger, directory, snapshot.id)

    def test_without_opening(self, ledger):
        snapshot = ledger.open_account("SI Anita Desai", "+91 9988776655")
        assert snapshot.credits_remaining == 0
        assert ledger.history(snapshot.id).to_list() == []

    def test_opening_must_issue_credits(self, ledger, directory):
        with pytest.raises(InvalidActionError):
            ledger.open_account("SI Anita Desai", "+91 9988776655", Deduction(5))
        assert directory.status_counts()['total'] == 0

    def test_failed_opening_leaves_no_officer(self, ledger, directory):
        """Officer row and opening transaction commit together or not at all."""
        error = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(CreditTransactionRepository, "append", side_effect=error):
            with pytest.raises(PersistenceError) as exc_info:
                ledger.open_account("SI Anita Desai", "+91 9988776655", Renewal(38))

        assert exc_info.value.retryable is True
        assert directory.status_counts()['total'] == 0
        assert directory.list_officers(search="Anita")['officers'] == []


class TestQuerySettlement:
    """Charging successful queries to officers."""

    def _record(self, query_log, officer_id, **kwargs):
        defaults = dict(
            query_type=QueryType.PRO,
            input="+91 9000000001",
            source="Telegram Bot",
            status=QueryStatus.SUCCESS,
            credits_used=2,
        )
        defaults.update(kwargs)
        return query_log.record(officer_id, **defaults)

    def test_settle_appends_deduction(self, funded_officer, ledger, directory, query_log):
        query = self._record(query_log, funded_officer.id)
        record = ledger.settle_query(query.id, processed_by="admin")

        assert record.action == CreditAction.DEDUCTION
        assert record.credits == -2
        assert record.query_id == query.id
        assert record.remarks == "PRO query: +91 9000000001"

        snapshot = directory.get(funded_officer.id)
        assert snapshot.credits_remaining == 48
        assert snapshot.total_queries == 1
        assert snapshot.last_active is not None
        assert_consistent(ledger, directory, funded_officer.id)

    def test_settle_is_idempotent(self, funded_officer, ledger, directory, query_log):
        query = self._record(query_log, funded_officer.id)
        first = ledger.settle_query(query.id)
        second = ledger.settle_query(query.id)

        assert second.id == first.id
        assert ledger.balance_of(funded_officer.id) == 48
        assert directory.get(funded_officer.id).total_queries == 1

    def test_failed_query_not_charged(self, funded_officer, ledger, query_log):
        query = self._record(query_log, funded_officer.id, status=QueryStatus.FAILED)
        with pytest.raises(QueryNotSettleableError):
            ledger.settle_query(query.id)
        assert ledger.balance_of(funded_officer.id) == 50

    def test_free_query(self, funded_officer, ledger, directory, query_log):
        query = self._record(query_log, funded_officer.id, credits_used=0)
        assert ledger.settle_query(query.id) is None
        assert ledger.balance_of(funded_officer.id) == 50
        assert directory.get(funded_officer.id).total_queries == 0

    def test_unknown_query(self, ledger):
        with pytest.raises(UnknownQueryError):
            ledger.settle_query(uuid.uuid4())

    def test_insufficient_balance(self, officer, ledger, query_log):
        ledger.append_transaction(officer.id, "Top-up", 1)
        query = self._record(query_log, officer.id, credits_used=2)
        with pytest.raises(InsufficientBalanceError):
            ledger.settle_query(query.id)
        assert ledger.balance_of(officer.id) == 1
