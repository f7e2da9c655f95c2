"""
Read-only records returned by the ledger and directory.

Callers never receive ORM instances: sessions are closed when an operation
returns, so everything is copied into frozen dataclasses first.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from database.models import (
    CreditAction,
    CreditTransaction,
    Officer,
    OfficerStatus,
    QueryPlatform,
    QueryRequest,
    QueryStatus,
    QueryType,
    ensure_utc,
)


@dataclass(frozen=True)
class TransactionRecord:
    id: UUID
    officer_id: UUID
    sequence: int
    action: CreditAction
    credits: int
    previous_balance: int
    new_balance: int
    created_at: datetime
    payment_mode: Optional[str] = None
    payment_reference: Optional[str] = None
    remarks: Optional[str] = None
    processed_by: Optional[str] = None
    query_id: Optional[UUID] = None
    officer_name: Optional[str] = None

    @classmethod
    def from_model(cls, txn: CreditTransaction, officer_name: Optional[str] = None) -> "TransactionRecord":
        return cls(
            id=txn.id,
            officer_id=txn.officer_id,
            sequence=txn.sequence,
            action=txn.action,
            credits=txn.credits,
            previous_balance=txn.previous_balance,
            new_balance=txn.new_balance,
            created_at=ensure_utc(txn.created_at),
            payment_mode=txn.payment_mode,
            payment_reference=txn.payment_reference,
            remarks=txn.remarks,
            processed_by=txn.processed_by,
            query_id=txn.query_id,
            officer_name=officer_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['action'] = self.action.value
        return data


@dataclass(frozen=True)
class OfficerSnapshot:
    """Directory view of one officer."""
    id: UUID
    name: str
    mobile: str
    status: OfficerStatus
    credits_remaining: int
    total_credits: int
    total_queries: int
    version: int
    registered_on: datetime
    last_active: Optional[datetime] = None
    telegram_id: Optional[str] = None
    whatsapp_id: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    rank: Optional[str] = None
    badge_number: Optional[str] = None
    pro_access_enabled: bool = True
    rate_limit_per_hour: int = 100

    @classmethod
    def from_model(cls, officer: Officer) -> "OfficerSnapshot":
        return cls(
            id=officer.id,
            name=officer.name,
            mobile=officer.mobile,
            status=officer.status,
            credits_remaining=officer.credits_remaining,
            total_credits=officer.total_credits,
            total_queries=officer.total_queries,
            version=officer.version,
            registered_on=ensure_utc(officer.registered_on),
            last_active=ensure_utc(officer.last_active),
            telegram_id=officer.telegram_id,
            whatsapp_id=officer.whatsapp_id,
            email=officer.email,
            department=officer.department,
            rank=officer.rank,
            badge_number=officer.badge_number,
            pro_access_enabled=officer.pro_access_enabled,
            rate_limit_per_hour=officer.rate_limit_per_hour,
        )


@dataclass(frozen=True)
class QueryRecord:
    id: UUID
    officer_id: UUID
    type: QueryType
    input: str
    source: str
    status: QueryStatus
    credits_used: int
    created_at: datetime
    result_summary: Optional[str] = None
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    session_id: Optional[str] = None
    platform: Optional[QueryPlatform] = None
    completed_at: Optional[datetime] = None
    officer_name: Optional[str] = None

    @classmethod
    def from_model(cls, query: QueryRequest, officer_name: Optional[str] = None) -> "QueryRecord":
        return cls(
            id=query.id,
            officer_id=query.officer_id,
            type=query.type,
            input=query.input,
            source=query.source,
            status=query.status,
            credits_used=query.credits_used,
            created_at=ensure_utc(query.created_at),
            result_summary=query.result_summary,
            response_time_ms=query.response_time_ms,
            error_message=query.error_message,
            session_id=query.session_id,
            platform=query.platform,
            completed_at=ensure_utc(query.completed_at),
            officer_name=officer_name,
        )
