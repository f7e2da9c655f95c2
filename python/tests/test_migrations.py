"""
Tests for the Alembic baseline migration.

Runs upgrade/downgrade against a SQLite file and checks the resulting schema
works with the ORM models.
"""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from database.connection import DatabaseSettings, create_test_provider
from ledger import Ledger, OfficerDirectory

MIGRATION_PATH = Path(__file__).parent.parent / "alembic" / "versions" / "001_initial.py"


def load_migration():
    spec = importlib.util.spec_from_file_location("migration_001_initial", MIGRATION_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def run(engine, step):
    with engine.begin() as connection:
        context = MigrationContext.configure(connection)
        with Operations.context(context):
            step()


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
    yield engine
    engine.dispose()


class TestBaselineMigration:

    def test_revision_metadata(self):
        migration = load_migration()
        assert migration.revision == "001_initial"
        assert migration.down_revision is None

    def test_upgrade_creates_schema(self, engine):
        run(engine, load_migration().upgrade)

        inspector = inspect(engine)
        assert {"officers", "credit_transactions", "query_requests"} <= set(inspector.get_table_names())

        unique_names = {c["name"] for c in inspector.get_unique_constraints("credit_transactions")}
        assert "uq_transaction_officer_sequence" in unique_names

        officer_columns = {c["name"] for c in inspector.get_columns("officers")}
        assert {"credits_remaining", "total_credits", "total_queries", "version"} <= officer_columns

    def test_migrated_schema_works_with_ledger(self, engine):
        run(engine, load_migration().upgrade)

        provider = create_test_provider(engine=engine, settings=DatabaseSettings(url=str(engine.url)))
        provider.init()
        directory = OfficerDirectory(provider)
        ledger = Ledger(provider)

        officer = directory.register("ASI Priya Sharma", "+91 9876543210")
        ledger.append_transaction(officer.id, "Renewal", 45)
        ledger.append_transaction(officer.id, "Deduction", 5)

        assert ledger.balance_of(officer.id) == 40
        assert directory.get(officer.id).total_credits == 45

    def test_downgrade_drops_tables(self, engine):
        migration = load_migration()
        run(engine, migration.upgrade)
        run(engine, migration.downgrade)

        remaining = set(inspect(engine).get_table_names())
        assert not remaining & {"officers", "credit_transactions", "query_requests"}
