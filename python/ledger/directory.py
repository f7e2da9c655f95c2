"""
Officer Directory

Owns the per-officer snapshot (credits_remaining, total_credits, status).
The credit fields are a projection of the ledger: they are written inside
every append's unit of work and can be recomputed at any time with
reconcile(). Nothing else writes them.
"""

import logging
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from audit_logger import AuditLogger, get_audit_logger
from database.connection import DatabaseSessionProvider
from database.models import OfficerStatus
from database.monitoring import query_timer, timed_query
from database.repositories import (
    CreditTransactionRepository,
    DuplicateEntityError,
    OfficerRepository,
)
from ledger.errors import (
    InvalidActionError,
    PersistenceError,
    UnknownOfficerError,
)
from ledger.locks import OfficerLockRegistry
from ledger.records import OfficerSnapshot

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    'telegram_id', 'whatsapp_id', 'email', 'department', 'rank',
    'badge_number', 'pro_access_enabled', 'rate_limit_per_hour',
)


def parse_status(status: Union[str, OfficerStatus]) -> OfficerStatus:
    """Accept an OfficerStatus, its value ("Active") or member name ("ACTIVE")."""
    if isinstance(status, OfficerStatus):
        return status
    if isinstance(status, str):
        for candidate in OfficerStatus:
            if status in (candidate.value, candidate.name) or status.capitalize() == candidate.value:
                return candidate
    raise InvalidActionError(
        f"Unknown officer status: {status!r}",
        suggestion="Use one of: " + ", ".join(s.value for s in OfficerStatus)
    )


def officer_data(name: str, mobile: str, profile: Dict[str, Any]) -> Dict[str, Any]:
    """Validate registration input and keep only known profile fields."""
    if not name or not name.strip():
        raise ValueError("Officer name is required")
    if not mobile or not mobile.strip():
        raise ValueError("Officer mobile number is required")

    data: Dict[str, Any] = {'name': name.strip(), 'mobile': mobile.strip()}
    for key in PROFILE_FIELDS:
        if profile.get(key) is not None:
            data[key] = profile[key]
    if profile.get('status') is not None:
        data['status'] = parse_status(profile['status'])
    return data


class OfficerDirectory:
    """Read and maintain officer snapshots."""

    def __init__(
        self,
        provider: DatabaseSessionProvider,
        locks: Optional[OfficerLockRegistry] = None,
        lock_timeout: float = 10.0,
        audit: Optional[AuditLogger] = None
    ):
        self.provider = provider
        self.locks = locks if locks is not None else OfficerLockRegistry()
        self.lock_timeout = lock_timeout
        self._audit = audit

    @property
    def audit(self) -> AuditLogger:
        return self._audit or get_audit_logger()

    # ============================================
    # READS
    # ============================================

    def officer_exists(self, officer_id: UUID) -> bool:
        with self.provider.read_scope() as session:
            return OfficerRepository(session).exists(officer_id)

    @timed_query("directory.get")
    def get(self, officer_id: UUID) -> OfficerSnapshot:
        """
        Committed snapshot of one officer.

        Raises:
            UnknownOfficerError: If the officer does not exist
        """
        with self.provider.read_scope() as session:
            officer = OfficerRepository(session).get_by_id(officer_id)
            if officer is None:
                raise UnknownOfficerError(officer_id)
            return OfficerSnapshot.from_model(officer)

    def credits_remaining(self, officer_id: UUID) -> int:
        return self.get(officer_id).credits_remaining

    def list_officers(
        self,
        status: Optional[Union[str, OfficerStatus]] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 100
    ) -> Dict[str, Any]:
        """
        List officers newest first.

        Returns:
            {"officers": [OfficerSnapshot, ...], "total": int}
        """
        status = parse_status(status) if status else None
        with query_timer("directory.list"), self.provider.read_scope() as session:
            officers, total = OfficerRepository(session).list(
                status=status, search=search, offset=offset, limit=limit
            )
            return {
                'officers': [OfficerSnapshot.from_model(o) for o in officers],
                'total': total
            }

    def status_counts(self) -> Dict[str, int]:
        """Officer counts: total, active, suspended and inactive."""
        with self.provider.read_scope() as session:
            counts = OfficerRepository(session).count_by_status()
        result = {'total': sum(counts.values())}
        for status in OfficerStatus:
            result[status.value.lower()] = counts.get(status.value, 0)
        return result

    # ============================================
    # WRITES
    # ============================================

    def register(self, name: str, mobile: str, **profile) -> OfficerSnapshot:
        """
        Register an officer with an empty credit snapshot.

        Credits are issued afterwards through the ledger.

        Args:
            name: Display name
            mobile: Mobile number
            **profile: Optional fields from PROFILE_FIELDS and status

        Returns:
            OfficerSnapshot of the new officer
        """
        data = officer_data(name, mobile, profile)
        try:
            with self.provider.get_unit_of_work() as uow:
                officer = OfficerRepository(uow.session).create(data)
                snapshot = OfficerSnapshot.from_model(officer)
                uow.commit()
        except (SQLAlchemyError, DuplicateEntityError) as e:
            logger.error(f"Registering officer {name!r} failed: {e}")
            raise PersistenceError(f"Could not register officer {name}") from e

        self.audit.log_officer_registered(snapshot.id, snapshot.name)
        logger.info(f"Registered officer {snapshot.id} ({snapshot.name})")
        return snapshot

    def set_status(self, officer_id: UUID, status: Union[str, OfficerStatus]) -> OfficerSnapshot:
        """
        Move an officer to Active, Suspended or Inactive.

        Any transition is allowed. Setting the current status is a no-op:
        nothing is written and no audit event is emitted.

        Raises:
            UnknownOfficerError: If the officer does not exist
        """
        status = parse_status(status)
        try:
            with self.locks.hold(officer_id, self.lock_timeout):
                with self.provider.get_unit_of_work() as uow:
                    officers = OfficerRepository(uow.session)
                    officer = officers.get_for_update(officer_id)
                    if officer is None:
                        raise UnknownOfficerError(officer_id)

                    old_status = officer.status
                    changed = officers.set_status(officer, status)
                    snapshot = OfficerSnapshot.from_model(officer)
                    if changed:
                        uow.commit()
        except SQLAlchemyError as e:
            logger.error(f"Status change for officer {officer_id} failed: {e}")
            raise PersistenceError(f"Could not change status of officer {officer_id}") from e

        if changed:
            self.audit.log_status_changed(officer_id, old_status.value, status.value)
            logger.info(f"Officer {officer_id} status {old_status.value} -> {status.value}")
        return snapshot

    def reconcile(self, officer_id: UUID) -> OfficerSnapshot:
        """
        Recompute the officer's credit snapshot from the ledger.

        credits_remaining becomes the latest transaction's new_balance (0
        without history) and total_credits the sum of issued credits.

        Raises:
            UnknownOfficerError: If the officer does not exist
        """
        try:
            with query_timer("directory.reconcile"), self.locks.hold(officer_id, self.lock_timeout):
                with self.provider.get_unit_of_work() as uow:
                    officers = OfficerRepository(uow.session)
                    officer = officers.get_for_update(officer_id)
                    if officer is None:
                        raise UnknownOfficerError(officer_id)

                    transactions = CreditTransactionRepository(uow.session)
                    latest = transactions.latest(officer_id)
                    balance = latest.new_balance if latest else 0
                    changed = officers.write_snapshot(
                        officer,
                        credits_remaining=balance,
                        total_credits=transactions.sum_issued(officer_id)
                    )
                    snapshot = OfficerSnapshot.from_model(officer)
                    uow.commit()
        except SQLAlchemyError as e:
            logger.error(f"Reconciliation for officer {officer_id} failed: {e}")
            raise PersistenceError(f"Could not reconcile officer {officer_id}") from e

        if changed:
            logger.warning(f"Snapshot for officer {officer_id} was out of date and has been corrected")
        self.audit.log_reconciled(
            officer_id, snapshot.credits_remaining, snapshot.total_credits, changed
        )
        return snapshot
