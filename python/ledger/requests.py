"""
Transaction Requests and History Filters

This module provides:
- One frozen request type per credit action (Renewal, TopUp, Deduction,
  Refund, Adjustment), validated at construction
- build_request() to turn an (action, amount, metadata) triple into a request
- HistoryFilter for narrowing history by action kind and time range
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union
from uuid import UUID

from database.models import CreditAction, ensure_utc
from ledger.errors import InvalidActionError, InvalidAmountError


def _require_int(amount) -> None:
    # bool is an int subclass; True must not count as one credit
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(
            f"Credit amount must be an integer, got {type(amount).__name__}",
            amount=amount,
        )


def _require_positive(amount) -> None:
    _require_int(amount)
    if amount <= 0:
        raise InvalidAmountError(
            f"Credit amount must be greater than zero, got {amount}",
            amount=amount,
        )


# ============================================
# REQUEST VARIANTS
# ============================================

@dataclass(frozen=True)
class _PaymentRequest:
    amount: int
    payment_mode: Optional[str] = None
    payment_reference: Optional[str] = None
    remarks: Optional[str] = None
    processed_by: Optional[str] = None

    def __post_init__(self):
        _require_positive(self.amount)

    @property
    def signed_credits(self) -> int:
        return self.amount


@dataclass(frozen=True)
class Renewal(_PaymentRequest):
    """Plan renewal; adds credits and grows the officer's allotment."""
    action = CreditAction.RENEWAL


@dataclass(frozen=True)
class TopUp(_PaymentRequest):
    """Extra credits bought on top of the plan."""
    action = CreditAction.TOP_UP


@dataclass(frozen=True)
class Refund(_PaymentRequest):
    """Credits given back to the officer. Does not grow the allotment."""
    action = CreditAction.REFUND


@dataclass(frozen=True)
class Deduction:
    """Credits consumed, usually by a settled query."""
    amount: int
    remarks: Optional[str] = None
    processed_by: Optional[str] = None
    query_id: Optional[UUID] = None

    action = CreditAction.DEDUCTION

    def __post_init__(self):
        _require_positive(self.amount)

    @property
    def signed_credits(self) -> int:
        return -self.amount


@dataclass(frozen=True)
class Adjustment:
    """
    Manual correction. The caller supplies the sign: positive adds credits,
    negative removes them. Zero is rejected.
    """
    amount: int
    remarks: Optional[str] = None
    processed_by: Optional[str] = None

    action = CreditAction.ADJUSTMENT

    def __post_init__(self):
        _require_int(self.amount)
        if self.amount == 0:
            raise InvalidAmountError("Adjustment amount cannot be zero", amount=0)

    @property
    def signed_credits(self) -> int:
        return self.amount


TransactionRequest = Union[Renewal, TopUp, Deduction, Refund, Adjustment]

_REQUEST_TYPES = {
    CreditAction.RENEWAL: Renewal,
    CreditAction.TOP_UP: TopUp,
    CreditAction.DEDUCTION: Deduction,
    CreditAction.REFUND: Refund,
    CreditAction.ADJUSTMENT: Adjustment,
}

_ALLOWED_METADATA = {
    Renewal: {"payment_mode", "payment_reference", "remarks", "processed_by"},
    TopUp: {"payment_mode", "payment_reference", "remarks", "processed_by"},
    Refund: {"payment_mode", "payment_reference", "remarks", "processed_by"},
    Deduction: {"remarks", "processed_by", "query_id"},
    Adjustment: {"remarks", "processed_by"},
}


def parse_action(action: Union[str, CreditAction]) -> CreditAction:
    """
    Resolve an action given as enum, value ("Top-up") or member name ("TOP_UP").

    Raises:
        InvalidActionError: If the action is not one of the five kinds
    """
    if isinstance(action, CreditAction):
        return action
    if isinstance(action, str):
        try:
            return CreditAction(action)
        except ValueError:
            pass
        try:
            return CreditAction[action.upper().replace("-", "_")]
        except KeyError:
            pass
    raise InvalidActionError(
        f"Unknown credit action: {action!r}",
        suggestion="Use one of: " + ", ".join(a.value for a in CreditAction),
    )


def build_request(
    action: Union[str, CreditAction],
    amount: Any,
    **metadata
) -> TransactionRequest:
    """
    Build the request variant for an action.

    Metadata keys that the variant does not carry (for example a
    payment_mode on a Deduction) are dropped. None values are ignored.

    Raises:
        InvalidActionError: Unknown action
        InvalidAmountError: Amount is not a valid integer for the action
    """
    request_type = _REQUEST_TYPES[parse_action(action)]
    allowed = _ALLOWED_METADATA[request_type]
    kwargs: Dict[str, Any] = {
        key: value for key, value in metadata.items()
        if key in allowed and value is not None
    }
    return request_type(amount=amount, **kwargs)


# ============================================
# HISTORY FILTER
# ============================================

RANGE_PRESETS = ("all", "today", "week", "month")


@dataclass(frozen=True)
class HistoryFilter:
    """
    Restrict history to a set of action kinds and a [since, until) window.

    An empty filter matches everything.
    """
    actions: FrozenSet[CreditAction] = field(default_factory=frozenset)
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(
            self, "actions", frozenset(parse_action(a) for a in self.actions)
        )
        # Stored timestamps are UTC; naive bounds are read as UTC
        for name in ("since", "until"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, ensure_utc(value).astimezone(timezone.utc))
        if self.since and self.until and self.since >= self.until:
            raise ValueError("HistoryFilter.since must be earlier than until")

    @classmethod
    def of(cls, *actions: Union[str, CreditAction], since=None, until=None) -> "HistoryFilter":
        return cls(actions=frozenset(actions), since=since, until=until)

    @classmethod
    def for_range(
        cls,
        date_range: str = "all",
        actions: Iterable[Union[str, CreditAction]] = (),
        now: Optional[datetime] = None
    ) -> "HistoryFilter":
        """
        Build a filter from a dashboard date preset.

        Args:
            date_range: One of "all", "today", "week" (last 7 days) or
                "month" (last 30 days)
            actions: Optional action kinds to keep
            now: Reference time, defaults to the current UTC time

        Returns:
            HistoryFilter
        """
        if date_range not in RANGE_PRESETS:
            raise ValueError(
                f"Unknown date range {date_range!r}; expected one of {', '.join(RANGE_PRESETS)}"
            )
        now = now or datetime.now(timezone.utc)
        since = None
        if date_range == "today":
            since = now.replace(hour=0, minute=0, second=0, microsecond=0)
        elif date_range == "week":
            since = now - timedelta(days=7)
        elif date_range == "month":
            since = now - timedelta(days=30)
        return cls(actions=frozenset(actions), since=since)

    @property
    def is_empty(self) -> bool:
        return not self.actions and self.since is None and self.until is None

    def matches(self, action: CreditAction, created_at: datetime) -> bool:
        """In-memory check, used when filtering already-loaded records."""
        if self.actions and action not in self.actions:
            return False
        if self.since is not None and created_at < self.since:
            return False
        if self.until is not None and created_at >= self.until:
            return False
        return True
