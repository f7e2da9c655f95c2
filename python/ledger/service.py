"""
Credit Ledger Service

This module provides:
- Ledger: the single write path for officer credits
- TransactionHistory: lazy, restartable iteration over an officer's history

Every append runs read-balance, compute, append and snapshot reconciliation
inside one UnitOfWork while holding the officer's lock, so concurrent
requests for the same officer are applied one after another and the
officer snapshot always matches the latest transaction.
"""

import logging
from typing import Iterator, List, Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from audit_logger import AuditLogger, get_audit_logger
from database.connection import DatabaseSessionProvider
from database.models import (
    CreditAction,
    CreditTransaction,
    ISSUING_ACTIONS,
    Officer,
    QueryStatus,
)
from database.monitoring import query_timer, record_transaction
from database.repositories import (
    CreditTransactionRepository,
    DuplicateEntityError,
    OfficerRepository,
    QueryRepository,
)
from ledger.errors import (
    InsufficientBalanceError,
    InvalidActionError,
    LedgerError,
    PersistenceError,
    QueryNotSettleableError,
    UnknownOfficerError,
    UnknownQueryError,
)
from ledger.directory import officer_data
from ledger.locks import OfficerLockRegistry
from ledger.records import OfficerSnapshot, TransactionRecord
from ledger.requests import (
    Deduction,
    HistoryFilter,
    TransactionRequest,
    build_request,
)

logger = logging.getLogger(__name__)


class TransactionHistory:
    """
    Finite, restartable view of one officer's transactions in insertion order.

    Each iteration pages through storage with a fresh read session, so a
    history object can be iterated any number of times and reflects what was
    committed when each page was read.
    """

    def __init__(
        self,
        provider: DatabaseSessionProvider,
        officer_id: UUID,
        history_filter: Optional[HistoryFilter] = None,
        batch_size: int = 100
    ):
        self._provider = provider
        self.officer_id = officer_id
        self.filter = history_filter or HistoryFilter()
        self.batch_size = batch_size

    def __iter__(self) -> Iterator[TransactionRecord]:
        after_sequence = 0
        while True:
            with self._provider.read_scope() as session:
                page = CreditTransactionRepository(session).iter_for_officer(
                    self.officer_id,
                    after_sequence=after_sequence,
                    limit=self.batch_size,
                    actions=self.filter.actions,
                    since=self.filter.since,
                    until=self.filter.until
                )
                records = [TransactionRecord.from_model(txn) for txn in page]

            yield from records
            if len(records) < self.batch_size:
                return
            after_sequence = records[-1].sequence

    def to_list(self) -> List[TransactionRecord]:
        return list(self)


class Ledger:
    """
    Authoritative, append-only credit history per officer.

    Usage:
        ledger = Ledger(provider)
        ledger.append_transaction(officer_id, "Top-up", 50, payment_mode="UPI")
        ledger.balance_of(officer_id)  # 50
    """

    def __init__(
        self,
        provider: DatabaseSessionProvider,
        locks: Optional[OfficerLockRegistry] = None,
        lock_timeout: float = 10.0,
        history_batch_size: int = 100,
        default_payment_mode: Optional[str] = "Department Budget",
        audit: Optional[AuditLogger] = None
    ):
        """
        Args:
            provider: Initialized database session provider
            locks: Per-officer lock registry, shared with OfficerDirectory
            lock_timeout: Seconds to wait for an officer's lock
            history_batch_size: Rows fetched per history page
            default_payment_mode: Applied to Renewal/Top-up without one
            audit: Audit logger (global audit logger if omitted)
        """
        self.provider = provider
        self.locks = locks if locks is not None else OfficerLockRegistry()
        self.lock_timeout = lock_timeout
        self.history_batch_size = history_batch_size
        self.default_payment_mode = default_payment_mode
        self._audit = audit

    @classmethod
    def from_config(cls, provider: DatabaseSessionProvider, config, locks=None, audit=None) -> 'Ledger':
        """Build a ledger from a config_manager.LedgerConfig."""
        return cls(
            provider,
            locks=locks,
            lock_timeout=config.lock_timeout_seconds,
            history_batch_size=config.history_batch_size,
            default_payment_mode=config.default_payment_mode,
            audit=audit
        )

    @property
    def audit(self) -> AuditLogger:
        return self._audit or get_audit_logger()

    # ============================================
    # WRITES
    # ============================================

    def append_transaction(
        self,
        officer_id: UUID,
        action: Union[str, CreditAction],
        amount: int,
        **metadata
    ) -> TransactionRecord:
        """
        Validate and append one transaction, reconciling the officer snapshot.

        Args:
            officer_id: Officer to credit or debit
            action: Renewal, Top-up, Deduction, Refund or Adjustment
            amount: Positive credits (signed, non-zero for Adjustment)
            **metadata: payment_mode, payment_reference, remarks,
                processed_by, query_id (only those relevant to the action
                are kept)

        Returns:
            The committed TransactionRecord

        Raises:
            UnknownOfficerError, InvalidAmountError, InvalidActionError,
            InsufficientBalanceError, OfficerBusyError, PersistenceError
        """
        try:
            request = build_request(action, amount, **metadata)
        except LedgerError as e:
            label = action.value if isinstance(action, CreditAction) else str(action)
            self._reject(officer_id, label, e, amount)
            raise
        return self.append(officer_id, request)

    def append(self, officer_id: UUID, request: TransactionRequest) -> TransactionRecord:
        """Append a pre-built request. See append_transaction()."""
        action = request.action.value
        try:
            with query_timer("ledger.append"), self.locks.hold(officer_id, self.lock_timeout):
                with self.provider.get_unit_of_work() as uow:
                    officer = OfficerRepository(uow.session).get_for_update(officer_id)
                    if officer is None:
                        raise UnknownOfficerError(officer_id)

                    txn = self._apply(uow.session, officer, request)
                    record = TransactionRecord.from_model(txn, officer.name)
                    uow.commit()
        except LedgerError as e:
            self._reject(officer_id, action, e, request.amount)
            raise
        except (SQLAlchemyError, DuplicateEntityError) as e:
            logger.error(f"Append of {action} for officer {officer_id} failed before commit: {e}")
            error = PersistenceError(
                f"Could not persist {action} for officer {officer_id}; nothing was applied",
                suggestion="Retry the request"
            )
            self._reject(officer_id, action, error, request.amount)
            raise error from e

        self._committed(record)
        return record

    def open_account(
        self,
        name: str,
        mobile: str,
        opening: Optional[TransactionRequest] = None,
        **profile
    ) -> OfficerSnapshot:
        """
        Register an officer and issue opening credits in one unit of work.

        A failed opening transaction leaves no officer behind.

        Args:
            name: Display name
            mobile: Mobile number
            opening: Renewal or Top-up to issue, or None for an empty account
            **profile: Optional profile fields and status

        Returns:
            OfficerSnapshot after the opening transaction

        Raises:
            InvalidActionError: opening is not a Renewal or Top-up
            PersistenceError: Nothing was stored
        """
        data = officer_data(name, mobile, profile)
        if opening is not None and opening.action not in ISSUING_ACTIONS:
            raise InvalidActionError(
                f"Opening credits must be a Renewal or Top-up, got {opening.action.value}"
            )

        record = None
        try:
            with query_timer("ledger.open_account"), self.provider.get_unit_of_work() as uow:
                officer = OfficerRepository(uow.session).create(data)
                if opening is not None:
                    txn = self._apply(uow.session, officer, opening)
                    record = TransactionRecord.from_model(txn, officer.name)
                snapshot = OfficerSnapshot.from_model(officer)
                uow.commit()
        except (SQLAlchemyError, DuplicateEntityError) as e:
            logger.error(f"Opening account for {name!r} failed: {e}")
            raise PersistenceError(
                f"Could not register officer {name}; nothing was applied",
                suggestion="Retry the request"
            ) from e

        self.audit.log_officer_registered(snapshot.id, snapshot.name)
        logger.info(f"Registered officer {snapshot.id} ({snapshot.name})")
        if record is not None:
            self._committed(record)
        return snapshot

    def _committed(self, record: TransactionRecord) -> None:
        action = record.action.value
        record_transaction(action, "committed", record.credits)
        self.audit.log_transaction_appended(
            officer_id=record.officer_id,
            action=action,
            credits=record.credits,
            previous_balance=record.previous_balance,
            new_balance=record.new_balance,
            sequence=record.sequence,
            transaction_id=record.id,
            processed_by=record.processed_by,
            remarks=record.remarks
        )
        logger.info(
            f"{action} of {record.credits:+d} for officer {record.officer_id}: "
            f"{record.previous_balance} -> {record.new_balance} (#{record.sequence})"
        )

    def _apply(self, session, officer: Officer, request: TransactionRequest) -> CreditTransaction:
        """Compute and stage the transaction plus snapshot. Caller commits."""
        transactions = CreditTransactionRepository(session)
        latest = transactions.latest(officer.id)

        if latest is None and request.action not in ISSUING_ACTIONS:
            raise InvalidActionError(
                f"First transaction for officer {officer.id} must be a Renewal or Top-up, "
                f"got {request.action.value}",
                suggestion="Issue credits with a Renewal or Top-up first"
            )

        previous_balance = latest.new_balance if latest else 0
        credits = request.signed_credits
        new_balance = previous_balance + credits
        if new_balance < 0:
            raise InsufficientBalanceError(officer.id, previous_balance, abs(credits))

        payment_mode = getattr(request, "payment_mode", None)
        if payment_mode is None and request.action in ISSUING_ACTIONS:
            payment_mode = self.default_payment_mode

        txn = transactions.append(
            officer_id=officer.id,
            sequence=(latest.sequence + 1) if latest else 1,
            action=request.action,
            credits=credits,
            previous_balance=previous_balance,
            new_balance=new_balance,
            payment_mode=payment_mode,
            payment_reference=getattr(request, "payment_reference", None),
            remarks=request.remarks or f"{request.action.value} - {request.amount} credits",
            processed_by=request.processed_by,
            query_id=getattr(request, "query_id", None)
        )

        OfficerRepository(session).write_snapshot(
            officer,
            credits_remaining=new_balance,
            total_credits=transactions.sum_issued(officer.id)
        )
        return txn

    def _reject(self, officer_id, action: str, error: LedgerError, amount=None) -> None:
        record_transaction(action, error.code)
        self.audit.log_transaction_rejected(
            officer_id=officer_id,
            action=action,
            error_code=error.code,
            reason=str(error),
            amount=amount
        )
        logger.warning(f"Rejected {action} for officer {officer_id}: {error.code} {error}")

    # ============================================
    # QUERY SETTLEMENT
    # ============================================

    def settle_query(self, query_id: UUID, processed_by: Optional[str] = None) -> Optional[TransactionRecord]:
        """
        Charge a successful query to its officer.

        Appends a Deduction of the query's credits_used and bumps the
        officer's query counter in the same unit of work. Settling the same
        query again returns the original transaction. Free queries
        (credits_used == 0) are not charged and return None.

        Raises:
            UnknownQueryError: The query id does not resolve
            QueryNotSettleableError: The query did not succeed
            InsufficientBalanceError: The officer cannot cover the query
        """
        with self.provider.read_scope() as session:
            query = QueryRepository(session).get_by_id(query_id)
            if query is None:
                raise UnknownQueryError(query_id)
            officer_id = query.officer_id
            status = query.status
            credits_used = query.credits_used
            label = f"{query.type.value} query: {query.input}"
            existing = CreditTransactionRepository(session).get_by_query(query_id)
            if existing is not None:
                return TransactionRecord.from_model(existing)

        if status != QueryStatus.SUCCESS:
            raise QueryNotSettleableError(
                f"Query {query_id} has status {status.value}; only successful queries are charged"
            )
        if credits_used == 0:
            logger.debug(f"Query {query_id} used no credits; nothing to settle")
            return None

        request = Deduction(
            amount=credits_used,
            remarks=label,
            processed_by=processed_by,
            query_id=query_id
        )
        try:
            with query_timer("ledger.settle_query"), self.locks.hold(officer_id, self.lock_timeout):
                with self.provider.get_unit_of_work() as uow:
                    existing = CreditTransactionRepository(uow.session).get_by_query(query_id)
                    if existing is not None:
                        return TransactionRecord.from_model(existing)

                    officers = OfficerRepository(uow.session)
                    officer = officers.get_for_update(officer_id)
                    if officer is None:
                        raise UnknownOfficerError(officer_id)

                    txn = self._apply(uow.session, officer, request)
                    officers.record_query_settled(officer, txn.created_at)
                    record = TransactionRecord.from_model(txn, officer.name)
                    uow.commit()
        except LedgerError as e:
            self._reject(officer_id, request.action.value, e, credits_used)
            raise
        except (SQLAlchemyError, DuplicateEntityError) as e:
            logger.error(f"Settlement of query {query_id} failed before commit: {e}")
            error = PersistenceError(f"Could not settle query {query_id}; nothing was applied")
            self._reject(officer_id, request.action.value, error, credits_used)
            raise error from e

        record_transaction(request.action.value, "committed", record.credits)
        self.audit.log_query_settled(officer_id, query_id, record.credits, record.id)
        return record

    # ============================================
    # READS
    # ============================================

    def balance_of(self, officer_id: UUID) -> int:
        """
        Current balance: new_balance of the latest transaction, or 0.

        Raises:
            UnknownOfficerError: If the officer does not exist
        """
        with query_timer("ledger.balance_of"), self.provider.read_scope() as session:
            if not OfficerRepository(session).exists(officer_id):
                raise UnknownOfficerError(officer_id)
            latest = CreditTransactionRepository(session).latest(officer_id)
            return latest.new_balance if latest else 0

    def history(
        self,
        officer_id: UUID,
        history_filter: Optional[HistoryFilter] = None
    ) -> TransactionHistory:
        """
        The officer's transactions in insertion order.

        Raises:
            UnknownOfficerError: If the officer does not exist (checked
                eagerly, before iteration)
        """
        with self.provider.read_scope() as session:
            if not OfficerRepository(session).exists(officer_id):
                raise UnknownOfficerError(officer_id)
        return TransactionHistory(
            self.provider, officer_id, history_filter, self.history_batch_size
        )

    def transactions(
        self,
        history_filter: Optional[HistoryFilter] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[TransactionRecord]:
        """
        Transactions across all officers, newest first, with officer names.

        Args:
            history_filter: Action kinds and time window
            search: Case-insensitive match on officer name or remarks
            limit: Maximum rows
        """
        history_filter = history_filter or HistoryFilter()
        with query_timer("ledger.transactions"), self.provider.read_scope() as session:
            rows = CreditTransactionRepository(session).list_all(
                actions=history_filter.actions,
                since=history_filter.since,
                until=history_filter.until,
                search=search,
                limit=limit
            )
            return [TransactionRecord.from_model(txn, name) for txn, name in rows]
