"""
Shared fixtures for the credit ledger test suite.

Every test gets its own SQLite database file, a fresh audit logger writing
into the test's tmp_path and cleared operation metrics.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from audit_logger import get_audit_logger, reset_audit_logger
from database.connection import DatabaseSessionProvider, DatabaseSettings
from database.monitoring import reset_metrics
from ledger import Ledger, OfficerDirectory, OfficerLockRegistry, QueryLog


@pytest.fixture(autouse=True)
def audit_logger(tmp_path):
    """Route audit events into the test's temporary directory."""
    reset_audit_logger()
    reset_metrics()
    logger = get_audit_logger(log_dir=str(tmp_path / "audit"))
    yield logger
    reset_audit_logger()


@pytest.fixture
def db_settings(tmp_path):
    return DatabaseSettings(url=f"sqlite:///{tmp_path / 'ledger.db'}")


@pytest.fixture
def db_provider(db_settings):
    """Initialized provider with the full schema."""
    provider = DatabaseSessionProvider(settings=db_settings)
    provider.init()
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def locks():
    return OfficerLockRegistry()


@pytest.fixture
def ledger(db_provider, locks):
    return Ledger(db_provider, locks=locks, lock_timeout=5.0)


@pytest.fixture
def directory(db_provider, locks):
    return OfficerDirectory(db_provider, locks=locks, lock_timeout=5.0)


@pytest.fixture
def query_log(db_provider):
    return QueryLog(db_provider)


@pytest.fixture
def officer(directory):
    """A freshly registered officer with no credit history."""
    return directory.register("Inspector Ramesh Kumar", "+91 9791103607", telegram_id="@rameshcop")


@pytest.fixture
def funded_officer(officer, ledger):
    """An officer opened with a Top-up of 50 credits."""
    ledger.append_transaction(officer.id, "Top-up", 50, payment_mode="Department Budget")
    return officer
