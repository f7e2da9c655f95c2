"""
Tests for the dashboard aggregation helpers.
"""

from dataclasses import dataclass
from typing import Optional

import pytest

from database.models import CreditAction, QueryStatus, QueryType
from ledger.aggregation import (
    officer_query_stats,
    query_type_counts,
    revenue,
    success_rate,
    summarize_credits,
    summarize_queries,
    total_issued,
    total_used,
    utilization_rate,
)


@dataclass
class Txn:
    action: CreditAction
    credits: int


@dataclass
class Query:
    type: QueryType
    status: QueryStatus
    credits_used: int
    officer_name: Optional[str] = "Inspector Ramesh Kumar"
    officer_id: str = "officer-1"


class TestCreditAggregation:

    def test_issued_used_and_utilization(self):
        """Renewal 50 and Top-up 10 issue 60; a Deduction of 12 gives 0.2."""
        txns = [
            Txn(CreditAction.RENEWAL, 50),
            Txn(CreditAction.TOP_UP, 10),
            Txn(CreditAction.DEDUCTION, -12),
            Txn(CreditAction.REFUND, 10),
        ]
        assert total_issued(txns) == 60
        assert total_used(txns) == 12
        assert utilization_rate(60, 12) == pytest.approx(0.2)

    def test_refunds_and_adjustments_are_not_issued(self):
        txns = [
            Txn(CreditAction.TOP_UP, 50),
            Txn(CreditAction.DEDUCTION, -12),
            Txn(CreditAction.REFUND, 10),
            Txn(CreditAction.ADJUSTMENT, -3),
        ]
        assert total_issued(txns) == 50
        assert total_used(txns) == 12

    def test_utilization_undefined_without_issued(self):
        assert utilization_rate(0, 0) is None
        assert utilization_rate(0, 5) is None

    def test_revenue(self):
        txns = [Txn(CreditAction.DEDUCTION, -12), Txn(CreditAction.DEDUCTION, -3)]
        assert revenue(txns) == 30
        assert revenue(txns, price_per_credit=1.5) == pytest.approx(22.5)

    def test_summary(self):
        txns = [
            Txn(CreditAction.RENEWAL, 50),
            Txn(CreditAction.TOP_UP, 10),
            Txn(CreditAction.DEDUCTION, -12),
        ]
        summary = summarize_credits(txns)
        assert summary.to_dict() == {
            'total_issued': 60,
            'total_used': 12,
            'revenue': 24,
            'transaction_count': 3,
            'utilization_rate': pytest.approx(0.2),
        }

    def test_summary_revenue_uses_price(self):
        txns = iter([Txn(CreditAction.TOP_UP, 20), Txn(CreditAction.DEDUCTION, -4)])
        summary = summarize_credits(txns, price_per_credit=2.5)
        assert summary.revenue == pytest.approx(10.0)
        assert summary.total_used == 4

    def test_summary_omits_undefined_utilization(self):
        data = summarize_credits([]).to_dict()
        assert 'utilization_rate' not in data
        assert data['total_issued'] == 0
        assert data['transaction_count'] == 0

    def test_summary_from_ledger_records(self, ledger, directory, funded_officer):
        """Works directly on TransactionRecords returned by the ledger."""
        ledger.append_transaction(funded_officer.id, "Deduction", 12)
        ledger.append_transaction(funded_officer.id, "Refund", 10)

        summary = summarize_credits(ledger.transactions())
        assert summary.total_issued == 50
        assert summary.total_used == 12
        assert summary.revenue == 24
        assert summary.utilization_rate == pytest.approx(0.24)


class TestQueryAggregation:

    def test_success_rate(self):
        queries = [
            Query(QueryType.OSINT, QueryStatus.SUCCESS, 1),
            Query(QueryType.PRO, QueryStatus.SUCCESS, 2),
            Query(QueryType.PRO, QueryStatus.FAILED, 0),
            Query(QueryType.OSINT, QueryStatus.PENDING, 0),
        ]
        assert success_rate(queries) == pytest.approx(0.5)

    def test_success_rate_empty(self):
        assert success_rate([]) is None

    def test_type_counts_include_every_type(self):
        counts = query_type_counts([Query(QueryType.PRO, QueryStatus.SUCCESS, 2)])
        assert counts == {"OSINT": 0, "PRO": 1}

    def test_officer_stats(self):
        queries = [
            Query(QueryType.OSINT, QueryStatus.SUCCESS, 1),
            Query(QueryType.PRO, QueryStatus.FAILED, 0),
            Query(QueryType.PRO, QueryStatus.SUCCESS, 2, officer_name="ASI Priya Sharma"),
            Query(QueryType.OSINT, QueryStatus.SUCCESS, 1, officer_name=None, officer_id="x"),
        ]
        stats = officer_query_stats(queries)
        assert stats["Inspector Ramesh Kumar"] == {'total': 2, 'success': 1, 'credits': 1}
        assert stats["ASI Priya Sharma"] == {'total': 1, 'success': 1, 'credits': 2}
        assert stats["x"] == {'total': 1, 'success': 1, 'credits': 1}

    def test_summary(self):
        summary = summarize_queries([
            Query(QueryType.OSINT, QueryStatus.SUCCESS, 1),
            Query(QueryType.PRO, QueryStatus.FAILED, 0),
        ])
        data = summary.to_dict()
        assert data['total_queries'] == 2
        assert data['total_credits_used'] == 1
        assert data['by_type'] == {"OSINT": 1, "PRO": 1}
        assert data['success_rate'] == pytest.approx(0.5)

    def test_summary_without_queries(self):
        data = summarize_queries([]).to_dict()
        assert 'success_rate' not in data
        assert data['total_queries'] == 0
