"""
Aggregation helpers for the credit and query dashboards.

Pure functions over already-loaded records. Anything with ``action`` and
``credits`` attributes counts as a transaction; anything with ``type``,
``status``, ``credits_used`` and ``officer_name`` counts as a query.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from database.models import CreditAction, ISSUING_ACTIONS, QueryStatus, QueryType

DEFAULT_PRICE_PER_CREDIT = 2


def total_issued(transactions: Iterable) -> int:
    """Credits added by Renewal and Top-up transactions."""
    return sum(t.credits for t in transactions if t.action in ISSUING_ACTIONS)


def total_used(transactions: Iterable) -> int:
    """Credits consumed by Deduction transactions."""
    return sum(abs(t.credits) for t in transactions if t.action == CreditAction.DEDUCTION)


def utilization_rate(issued: int, used: int) -> Optional[float]:
    """used / issued, or None when nothing has been issued."""
    if issued == 0:
        return None
    return used / issued


def revenue(transactions: Iterable, price_per_credit: float = DEFAULT_PRICE_PER_CREDIT) -> float:
    """Used credits priced at price_per_credit."""
    return total_used(transactions) * price_per_credit


def success_rate(queries: Iterable) -> Optional[float]:
    """Share of queries with status Success, or None for no queries."""
    queries = list(queries)
    if not queries:
        return None
    successful = sum(1 for q in queries if q.status == QueryStatus.SUCCESS)
    return successful / len(queries)


def query_type_counts(queries: Iterable) -> Dict[str, int]:
    counts = {query_type.value: 0 for query_type in QueryType}
    for q in queries:
        counts[q.type.value] += 1
    return counts


def officer_query_stats(queries: Iterable) -> Dict[str, Dict[str, int]]:
    """Per officer name: total queries, successful queries and credits used."""
    stats: Dict[str, Dict[str, int]] = {}
    for q in queries:
        entry = stats.setdefault(q.officer_name or str(q.officer_id), {'total': 0, 'success': 0, 'credits': 0})
        entry['total'] += 1
        if q.status == QueryStatus.SUCCESS:
            entry['success'] += 1
        entry['credits'] += q.credits_used
    return stats


# ============================================
# SUMMARIES
# ============================================

@dataclass(frozen=True)
class CreditSummary:
    total_issued: int
    total_used: int
    revenue: float
    transaction_count: int
    utilization_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'total_issued': self.total_issued,
            'total_used': self.total_used,
            'revenue': self.revenue,
            'transaction_count': self.transaction_count,
        }
        # Undefined utilization is omitted rather than reported as 0
        if self.utilization_rate is not None:
            data['utilization_rate'] = self.utilization_rate
        return data


@dataclass(frozen=True)
class QuerySummary:
    total_queries: int
    total_credits_used: int
    by_type: Dict[str, int] = field(default_factory=dict)
    by_officer: Dict[str, Dict[str, int]] = field(default_factory=dict)
    success_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'total_queries': self.total_queries,
            'total_credits_used': self.total_credits_used,
            'by_type': dict(self.by_type),
            'by_officer': {name: dict(stats) for name, stats in self.by_officer.items()},
        }
        if self.success_rate is not None:
            data['success_rate'] = self.success_rate
        return data


def summarize_credits(
    transactions: Iterable,
    price_per_credit: float = DEFAULT_PRICE_PER_CREDIT
) -> CreditSummary:
    transactions = list(transactions)
    issued = total_issued(transactions)
    used = total_used(transactions)
    return CreditSummary(
        total_issued=issued,
        total_used=used,
        revenue=revenue(transactions, price_per_credit),
        transaction_count=len(transactions),
        utilization_rate=utilization_rate(issued, used)
    )


def summarize_queries(queries: Iterable) -> QuerySummary:
    queries = list(queries)
    return QuerySummary(
        total_queries=len(queries),
        total_credits_used=sum(q.credits_used for q in queries),
        by_type=query_type_counts(queries),
        by_officer=officer_query_stats(queries),
        success_rate=success_rate(queries)
    )
