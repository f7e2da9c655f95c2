"""
SQLAlchemy ORM Models for the Officer Credit Ledger

This module defines the database schema behind the admin console:
- Officers with a denormalized balance snapshot (the Directory)
- Append-only credit transactions (the Ledger)
- Query requests produced by the OSINT/PRO querying subsystem
- UUID primary keys and timestamps on every record
- Check constraints that keep stored balances reconcilable

Tables:
1. officers - Registered officers and their current credit snapshot
2. credit_transactions - Immutable signed credit mutations, ordered per officer
3. query_requests - OSINT/PRO lookups; successful ones settle as Deductions
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Text, Uuid,
    ForeignKey, Index, CheckConstraint, UniqueConstraint, Enum,
    event
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Timezone-aware current time used for Python-side defaults."""
    return datetime.now(timezone.utc)


def _enum_values(enum_cls) -> List[str]:
    # Store the human readable values ("Top-up") rather than member names
    return [member.value for member in enum_cls]


# ============================================
# ENUMS
# ============================================

class OfficerStatus(str, PyEnum):
    """Lifecycle status of an officer account"""
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    INACTIVE = "Inactive"


class CreditAction(str, PyEnum):
    """Kind of credit mutation recorded in the ledger"""
    RENEWAL = "Renewal"
    TOP_UP = "Top-up"
    DEDUCTION = "Deduction"
    REFUND = "Refund"
    ADJUSTMENT = "Adjustment"


class QueryType(str, PyEnum):
    """Type of lookup performed by an officer"""
    OSINT = "OSINT"
    PRO = "PRO"


class QueryStatus(str, PyEnum):
    """Processing status of a query request"""
    PENDING = "Pending"
    PROCESSING = "Processing"
    SUCCESS = "Success"
    FAILED = "Failed"


class QueryPlatform(str, PyEnum):
    """Channel a query arrived through"""
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    API = "api"


# Actions that grow an officer's allotment (total_credits)
ISSUING_ACTIONS = frozenset({CreditAction.RENEWAL, CreditAction.TOP_UP})


class ImmutableRecordError(Exception):
    """Raised when code attempts to update or delete an append-only row."""
    pass


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )


# ============================================
# DIRECTORY
# ============================================

class Officer(Base, TimestampMixin):
    """
    A registered user of the query platform.

    credits_remaining and total_credits are a projection of the officer's
    credit_transactions and are only written by ledger reconciliation.
    """
    __tablename__ = "officers"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identity and contact handles
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    mobile: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    telegram_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    whatsapp_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Profile
    department: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    rank: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    badge_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    status: Mapped[OfficerStatus] = mapped_column(
        Enum(OfficerStatus, name="officer_status", values_callable=_enum_values),
        nullable=False,
        default=OfficerStatus.ACTIVE,
        index=True
    )

    # Credit snapshot
    credits_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_queries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Platform access
    pro_access_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    rate_limit_per_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    registered_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    last_active: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Bumped on every snapshot write
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    transactions: Mapped[List["CreditTransaction"]] = relationship(
        "CreditTransaction",
        back_populates="officer",
        order_by="CreditTransaction.sequence",
        lazy="dynamic"
    )
    queries: Mapped[List["QueryRequest"]] = relationship(
        "QueryRequest",
        back_populates="officer",
        lazy="dynamic"
    )

    __table_args__ = (
        CheckConstraint('credits_remaining >= 0', name='ck_officer_credits_non_negative'),
        CheckConstraint('total_credits >= 0', name='ck_officer_total_non_negative'),
        CheckConstraint('total_queries >= 0', name='ck_officer_queries_non_negative'),
        Index('ix_officer_status_created', 'status', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<Officer(id={self.id}, name='{self.name}', status={self.status})>"


# ============================================
# LEDGER
# ============================================

class CreditTransaction(Base):
    """
    One immutable, signed credit mutation.

    previous_balance and new_balance are captured at append time. Rows are
    ordered per officer by sequence; (officer_id, sequence) is unique so two
    appends computed from the same predecessor cannot both commit.
    """
    __tablename__ = "credit_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    officer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("officers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[CreditAction] = mapped_column(
        Enum(CreditAction, name="credit_action", values_callable=_enum_values),
        nullable=False,
        index=True
    )
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_balance: Mapped[int] = mapped_column(Integer, nullable=False)
    new_balance: Mapped[int] = mapped_column(Integer, nullable=False)

    # Payment metadata (Renewal / Top-up / Refund)
    payment_mode: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Query settled by this Deduction
    query_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("query_requests.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True
    )

    # No updated_at - transactions are immutable
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    officer: Mapped["Officer"] = relationship("Officer", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint('officer_id', 'sequence', name='uq_transaction_officer_sequence'),
        CheckConstraint('sequence >= 1', name='ck_transaction_sequence_positive'),
        CheckConstraint('credits <> 0', name='ck_transaction_credits_non_zero'),
        CheckConstraint('new_balance >= 0', name='ck_transaction_balance_non_negative'),
        CheckConstraint(
            'new_balance = previous_balance + credits',
            name='ck_transaction_balance_arithmetic'
        ),
        Index('ix_transaction_officer_created', 'officer_id', 'created_at'),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(officer_id={self.officer_id}, seq={self.sequence}, "
            f"action={self.action}, credits={self.credits})>"
        )


@event.listens_for(CreditTransaction, "before_update")
def _refuse_transaction_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"Credit transaction {target.id} is append-only and cannot be modified"
    )


@event.listens_for(CreditTransaction, "before_delete")
def _refuse_transaction_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"Credit transaction {target.id} is append-only and cannot be deleted"
    )


# ============================================
# QUERIES
# ============================================

class QueryRequest(Base):
    """
    One OSINT/PRO lookup made by an officer.

    Created by the querying subsystem; the ledger only reads it and settles
    successful queries into Deduction transactions.
    """
    __tablename__ = "query_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    officer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("officers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    type: Mapped[QueryType] = mapped_column(
        Enum(QueryType, name="query_type", values_callable=_enum_values),
        nullable=False,
        index=True
    )
    input: Mapped[str] = mapped_column(String(500), nullable=False)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    result_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[QueryStatus] = mapped_column(
        Enum(QueryStatus, name="query_status", values_callable=_enum_values),
        nullable=False,
        default=QueryStatus.PENDING,
        index=True
    )
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    platform: Mapped[Optional[QueryPlatform]] = mapped_column(
        Enum(QueryPlatform, name="query_platform", values_callable=_enum_values),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    officer: Mapped["Officer"] = relationship("Officer", back_populates="queries")

    __table_args__ = (
        CheckConstraint('credits_used >= 0', name='ck_query_credits_non_negative'),
        Index('ix_query_officer_status', 'officer_id', 'status'),
    )

    def __repr__(self) -> str:
        return f"<QueryRequest(id={self.id}, type={self.type}, status={self.status})>"


# ============================================
# HELPER FUNCTIONS
# ============================================

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes read back from backends without timezone
    support (SQLite), leaving aware values untouched.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
