"""
Ledger error taxonomy.

Every error carries a stable ``code`` for programmatic handling and a
``retryable`` flag telling callers whether repeating the same call can
succeed without changing the input.
"""

from typing import Optional
from uuid import UUID


class LedgerError(Exception):
    """Base exception for ledger and directory operations."""

    code = "LEDGER_ERROR"
    retryable = False

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.suggestion = suggestion


class UnknownOfficerError(LedgerError):
    """The officer reference does not resolve."""

    code = "UNKNOWN_OFFICER"

    def __init__(self, officer_id):
        super().__init__(
            f"Officer not found: {officer_id}",
            suggestion="Check the officer identifier and try again",
        )
        self.officer_id = officer_id


class InvalidAmountError(LedgerError):
    """The credit amount is not a usable integer."""

    code = "INVALID_AMOUNT"

    def __init__(self, message: str, amount=None):
        super().__init__(
            message,
            suggestion="Provide a whole number of credits greater than zero",
        )
        self.amount = amount


class InvalidActionError(LedgerError):
    """The action kind is unknown or not allowed in the current state."""

    code = "INVALID_ACTION"


class InsufficientBalanceError(LedgerError):
    """A debit would drive the officer's balance below zero."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, officer_id: UUID, balance: int, requested: int):
        super().__init__(
            f"Insufficient balance for officer {officer_id}: "
            f"balance {balance}, requested {requested}",
            suggestion="Use a smaller amount or top up the officer first",
        )
        self.officer_id = officer_id
        self.balance = balance
        self.requested = requested


class PersistenceError(LedgerError):
    """
    The durable store did not commit. Nothing was applied, so the whole
    operation may be retried.
    """

    code = "PERSISTENCE_FAILURE"
    retryable = True


class OfficerBusyError(LedgerError):
    """Another operation held the officer's lock for too long."""

    code = "OFFICER_BUSY"
    retryable = True

    def __init__(self, officer_id, timeout: float):
        super().__init__(
            f"Officer {officer_id} is busy; lock not acquired within {timeout:.1f}s",
            suggestion="Retry the request shortly",
        )
        self.officer_id = officer_id


class UnknownQueryError(LedgerError):
    """The query reference does not resolve."""

    code = "UNKNOWN_QUERY"

    def __init__(self, query_id):
        super().__init__(f"Query not found: {query_id}")
        self.query_id = query_id


class QueryNotSettleableError(LedgerError):
    """Only successful queries are charged to an officer's balance."""

    code = "QUERY_NOT_SETTLEABLE"
