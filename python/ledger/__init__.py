"""
Officer Credit Ledger

This package provides:
- Ledger: validated, serialized appends and balance/history reads
- OfficerDirectory: officer snapshots, status changes, reconciliation
- QueryLog: read access to OSINT/PRO query requests
- Request variants (Renewal, TopUp, Deduction, Refund, Adjustment)
- Aggregation helpers for dashboards
- The LedgerError hierarchy
"""

from ledger.errors import (
    LedgerError,
    UnknownOfficerError,
    InvalidAmountError,
    InvalidActionError,
    InsufficientBalanceError,
    PersistenceError,
    OfficerBusyError,
    UnknownQueryError,
    QueryNotSettleableError,
)
from ledger.requests import (
    Renewal,
    TopUp,
    Deduction,
    Refund,
    Adjustment,
    TransactionRequest,
    HistoryFilter,
    build_request,
    parse_action,
)
from ledger.records import TransactionRecord, OfficerSnapshot, QueryRecord
from ledger.locks import OfficerLockRegistry
from ledger.service import Ledger, TransactionHistory
from ledger.directory import OfficerDirectory
from ledger.queries import QueryLog

__all__ = [
    # Errors
    'LedgerError',
    'UnknownOfficerError',
    'InvalidAmountError',
    'InvalidActionError',
    'InsufficientBalanceError',
    'PersistenceError',
    'OfficerBusyError',
    'UnknownQueryError',
    'QueryNotSettleableError',
    # Requests
    'Renewal',
    'TopUp',
    'Deduction',
    'Refund',
    'Adjustment',
    'TransactionRequest',
    'HistoryFilter',
    'build_request',
    'parse_action',
    # Records
    'TransactionRecord',
    'OfficerSnapshot',
    'QueryRecord',
    # Services
    'OfficerLockRegistry',
    'Ledger',
    'TransactionHistory',
    'OfficerDirectory',
    'QueryLog',
]
