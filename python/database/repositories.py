"""
Repository Pattern for Credit Ledger Database Operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns.

Repositories never commit; the caller's UnitOfWork owns the transaction
boundary so a ledger append and its snapshot update land together.
"""

import logging
from typing import List, Optional, Dict, Any, Iterable, Tuple
from uuid import UUID
from datetime import datetime

from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    Officer,
    CreditTransaction,
    QueryRequest,
    OfficerStatus,
    CreditAction,
    QueryStatus,
    QueryType,
    ISSUING_ACTIONS,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


# ============================================
# OFFICER REPOSITORY
# ============================================

class OfficerRepository:
    """Repository for officer (directory) operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, officer_data: Dict[str, Any]) -> Officer:
        """
        Create a new officer with an empty credit snapshot.

        Args:
            officer_data: Dictionary containing officer profile fields

        Returns:
            Created Officer instance
        """
        # Snapshot fields are owned by the ledger
        for field_name in ('credits_remaining', 'total_credits', 'total_queries'):
            officer_data.pop(field_name, None)

        officer = Officer(**officer_data)
        self.session.add(officer)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntityError(f"Officer already exists: {e}") from e

        logger.debug(f"Created officer: {officer.id} ({officer.name})")
        return officer

    def get_by_id(self, officer_id: UUID) -> Optional[Officer]:
        """
        Get officer by ID.

        Args:
            officer_id: UUID of the officer

        Returns:
            Officer or None
        """
        return self.session.get(Officer, officer_id)

    def get_for_update(self, officer_id: UUID) -> Optional[Officer]:
        """
        Get officer by ID holding a row lock until the transaction ends.

        Backends without row locks (SQLite) ignore FOR UPDATE; the
        in-process officer lock and the sequence constraint still apply.
        """
        query = select(Officer).where(Officer.id == officer_id).with_for_update()
        result = self.session.execute(query)
        return result.scalar_one_or_none()

    def exists(self, officer_id: UUID) -> bool:
        query = select(func.count()).select_from(Officer).where(Officer.id == officer_id)
        return self.session.execute(query).scalar_one() > 0

    def list(
        self,
        status: Optional[OfficerStatus] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 100
    ) -> Tuple[List[Officer], int]:
        """
        List officers, newest first, with pagination.

        Args:
            status: Optional status filter
            search: Case-insensitive match on name or mobile
            offset: Pagination offset
            limit: Maximum results

        Returns:
            Tuple of (officers list, total count)
        """
        conditions = []
        if status:
            conditions.append(Officer.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(or_(
                func.lower(Officer.name).like(pattern),
                func.lower(Officer.mobile).like(pattern)
            ))

        count_query = select(func.count()).select_from(Officer).where(*conditions)
        total = self.session.execute(count_query).scalar_one()

        query = select(Officer).where(*conditions).order_by(
            Officer.created_at.desc(), Officer.name
        ).offset(offset).limit(limit)

        officers = list(self.session.execute(query).scalars().all())
        return officers, total

    def count_by_status(self) -> Dict[str, int]:
        """
        Get officer counts by status.

        Returns:
            Dictionary keyed by status value
        """
        query = select(Officer.status, func.count(Officer.id)).group_by(Officer.status)
        result = self.session.execute(query)
        return {row[0].value: row[1] for row in result}

    def write_snapshot(
        self,
        officer: Officer,
        credits_remaining: int,
        total_credits: int
    ) -> bool:
        """
        Write the credit snapshot; returns True when anything changed.

        Raises:
            ValueError: If the snapshot would be negative
        """
        if credits_remaining < 0 or total_credits < 0:
            raise ValueError("Officer snapshot values cannot be negative")

        if officer.credits_remaining == credits_remaining and officer.total_credits == total_credits:
            return False

        officer.credits_remaining = credits_remaining
        officer.total_credits = total_credits
        officer.version = officer.version + 1
        self.session.flush()
        return True

    def set_status(self, officer: Officer, status: OfficerStatus) -> bool:
        """Set the lifecycle status; returns False when already in that state."""
        if officer.status == status:
            return False
        officer.status = status
        officer.version = officer.version + 1
        self.session.flush()
        return True

    def record_query_settled(self, officer: Officer, when: datetime) -> None:
        """Increment the query counter and touch last_active."""
        officer.total_queries = officer.total_queries + 1
        officer.last_active = when
        officer.version = officer.version + 1
        self.session.flush()


# ============================================
# CREDIT TRANSACTION REPOSITORY
# ============================================

class CreditTransactionRepository:
    """Repository for the append-only credit transaction log."""

    def __init__(self, session: Session):
        self.session = session

    def latest(self, officer_id: UUID) -> Optional[CreditTransaction]:
        """
        Get the officer's most recent transaction by insertion order.

        Args:
            officer_id: UUID of the officer

        Returns:
            CreditTransaction or None when the officer has no history
        """
        query = select(CreditTransaction).where(
            CreditTransaction.officer_id == officer_id
        ).order_by(CreditTransaction.sequence.desc()).limit(1)
        return self.session.execute(query).scalar_one_or_none()

    def append(
        self,
        officer_id: UUID,
        sequence: int,
        action: CreditAction,
        credits: int,
        previous_balance: int,
        new_balance: int,
        payment_mode: Optional[str] = None,
        payment_reference: Optional[str] = None,
        remarks: Optional[str] = None,
        processed_by: Optional[str] = None,
        query_id: Optional[UUID] = None
    ) -> CreditTransaction:
        """
        Append a transaction row and flush it.

        Raises:
            DuplicateEntityError: If another append already claimed this
                sequence number or query (lost race with another writer)
        """
        transaction = CreditTransaction(
            officer_id=officer_id,
            sequence=sequence,
            action=action,
            credits=credits,
            previous_balance=previous_balance,
            new_balance=new_balance,
            payment_mode=payment_mode,
            payment_reference=payment_reference,
            remarks=remarks,
            processed_by=processed_by,
            query_id=query_id
        )
        self.session.add(transaction)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntityError(
                f"Transaction #{sequence} for officer {officer_id} conflicts with an existing row: {e}"
            ) from e
        return transaction

    def iter_for_officer(
        self,
        officer_id: UUID,
        after_sequence: int = 0,
        limit: int = 100,
        actions: Optional[Iterable[CreditAction]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None
    ) -> List[CreditTransaction]:
        """
        Fetch one page of an officer's history in insertion order.

        Uses keyset pagination on sequence so pages stay stable while new
        transactions are appended.
        """
        conditions = [
            CreditTransaction.officer_id == officer_id,
            CreditTransaction.sequence > after_sequence
        ]
        conditions.extend(self._filter_conditions(actions, since, until))

        query = select(CreditTransaction).where(
            and_(*conditions)
        ).order_by(CreditTransaction.sequence).limit(limit)
        return list(self.session.execute(query).scalars().all())

    def list_all(
        self,
        actions: Optional[Iterable[CreditAction]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Tuple[CreditTransaction, str]]:
        """
        List transactions across all officers, newest first, with officer names.

        Args:
            actions: Restrict to these action kinds
            since: Inclusive lower bound on created_at
            until: Exclusive upper bound on created_at
            search: Case-insensitive match on officer name or remarks
            limit: Maximum rows

        Returns:
            List of (transaction, officer name) tuples
        """
        conditions = self._filter_conditions(actions, since, until)
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(or_(
                func.lower(Officer.name).like(pattern),
                func.lower(func.coalesce(CreditTransaction.remarks, '')).like(pattern)
            ))

        query = select(CreditTransaction, Officer.name).join(
            Officer, Officer.id == CreditTransaction.officer_id
        ).where(*conditions).order_by(CreditTransaction.created_at.desc(), CreditTransaction.sequence.desc())
        if limit:
            query = query.limit(limit)

        return [(row[0], row[1]) for row in self.session.execute(query)]

    def sum_credits(self, officer_id: UUID) -> int:
        """Sum of signed credits for an officer (reconstruction check)."""
        query = select(func.coalesce(func.sum(CreditTransaction.credits), 0)).where(
            CreditTransaction.officer_id == officer_id
        )
        return int(self.session.execute(query).scalar_one())

    def sum_issued(self, officer_id: UUID) -> int:
        """Sum of Renewal and Top-up credits for an officer."""
        query = select(func.coalesce(func.sum(CreditTransaction.credits), 0)).where(
            and_(
                CreditTransaction.officer_id == officer_id,
                CreditTransaction.action.in_(list(ISSUING_ACTIONS))
            )
        )
        return int(self.session.execute(query).scalar_one())

    def get_by_query(self, query_id: UUID) -> Optional[CreditTransaction]:
        query = select(CreditTransaction).where(CreditTransaction.query_id == query_id)
        return self.session.execute(query).scalar_one_or_none()

    @staticmethod
    def _filter_conditions(
        actions: Optional[Iterable[CreditAction]],
        since: Optional[datetime],
        until: Optional[datetime]
    ) -> list:
        conditions = []
        if actions:
            conditions.append(CreditTransaction.action.in_(list(actions)))
        if since is not None:
            conditions.append(CreditTransaction.created_at >= since)
        if until is not None:
            conditions.append(CreditTransaction.created_at < until)
        return conditions


# ============================================
# QUERY REPOSITORY
# ============================================

class QueryRepository:
    """Repository for query request operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, query_data: Dict[str, Any]) -> QueryRequest:
        """
        Record a query request.

        Args:
            query_data: Dictionary containing query fields

        Returns:
            Created QueryRequest
        """
        query_request = QueryRequest(**query_data)
        self.session.add(query_request)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise RepositoryError(f"Could not record query: {e}") from e
        return query_request

    def get_by_id(self, query_id: UUID) -> Optional[QueryRequest]:
        return self.session.get(QueryRequest, query_id)

    def list(
        self,
        officer_id: Optional[UUID] = None,
        query_type: Optional[QueryType] = None,
        status: Optional[QueryStatus] = None,
        search: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Tuple[QueryRequest, str]]:
        """
        List queries, newest first, with officer names.

        Args:
            officer_id: Restrict to one officer
            query_type: OSINT or PRO
            status: Query status filter
            search: Case-insensitive match on officer name, input or source
            since: Inclusive lower bound on created_at
            until: Exclusive upper bound on created_at
            limit: Maximum rows

        Returns:
            List of (query, officer name) tuples
        """
        conditions = []
        if officer_id:
            conditions.append(QueryRequest.officer_id == officer_id)
        if query_type:
            conditions.append(QueryRequest.type == query_type)
        if status:
            conditions.append(QueryRequest.status == status)
        if since is not None:
            conditions.append(QueryRequest.created_at >= since)
        if until is not None:
            conditions.append(QueryRequest.created_at < until)
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(or_(
                func.lower(Officer.name).like(pattern),
                func.lower(QueryRequest.input).like(pattern),
                func.lower(QueryRequest.source).like(pattern)
            ))

        query = select(QueryRequest, Officer.name).join(
            Officer, Officer.id == QueryRequest.officer_id
        ).where(*conditions).order_by(QueryRequest.created_at.desc())
        if limit:
            query = query.limit(limit)

        return [(row[0], row[1]) for row in self.session.execute(query)]
