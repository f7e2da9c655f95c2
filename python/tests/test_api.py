"""
API endpoint tests for the FastAPI Credit Ledger API

Uses FastAPI's TestClient with the server globals patched to services backed
by a temporary SQLite database. Tests cover validation, error mapping,
success cases, summaries, health and API key security.
"""

import logging
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from config_manager import ConfigManager
from database.models import QueryStatus, QueryType
from database.repositories import CreditTransactionRepository


@pytest.fixture
def config(tmp_path):
    """Default configuration (no config file)."""
    return ConfigManager(str(tmp_path / "missing.yaml"))


@pytest.fixture
def client(ledger, directory, query_log, config):
    """Create test client with the ledger services patched in."""
    # Import here to allow patching
    from api import server

    with patch.object(server, '_ledger', ledger), \
            patch.object(server, '_directory', directory), \
            patch.object(server, '_query_log', query_log), \
            patch.object(server, '_config', config), \
            patch.object(server, 'API_KEY', ''), \
            patch.object(server, '_startup_time', datetime.now(timezone.utc)):
        yield TestClient(server.app)


@pytest.fixture
def officer_id(client):
    response = client.post(
        "/api/v1/officers",
        json={"name": "Inspector Ramesh Kumar", "mobile": "+91 9791103607", "initial_credits": 50},
        headers={"X-Admin-User": "admin@police.gov.in"},
    )
    assert response.status_code == 201
    return response.json()["id"]


# ============================================
# OFFICERS
# ============================================

class TestOfficers:

    def test_register_with_opening_credits(self, client, ledger):
        response = client.post(
            "/api/v1/officers",
            json={
                "name": "ASI Priya Sharma",
                "mobile": "+91 9876543210",
                "rank": "ASI",
                "initial_credits": 45,
                "payment_mode": "UPI",
            },
            headers={"X-Admin-User": "admin"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["credits_remaining"] == 45
        assert data["total_credits"] == 45
        assert data["status"] == "Active"
        assert data["rank"] == "ASI"

        history = ledger.history(uuid.UUID(data["id"])).to_list()
        assert history[0].remarks == "Registration - 45 credits"
        assert history[0].processed_by == "admin"
        assert history[0].payment_mode == "UPI"

    def test_register_without_credits(self, client):
        response = client.post(
            "/api/v1/officers", json={"name": "SI Rajesh Patel", "mobile": "+91 9123456789"}
        )
        assert response.status_code == 201
        assert response.json()["credits_remaining"] == 0

    def test_register_failure_leaves_no_officer(self, client):
        """A failed opening Renewal returns 503 and registers nobody."""
        error = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(CreditTransactionRepository, "append", side_effect=error):
            response = client.post(
                "/api/v1/officers",
                json={"name": "SI Rajesh Patel", "mobile": "+91 9123456789", "initial_credits": 12},
            )

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "PERSISTENCE_FAILURE"
        assert client.get("/api/v1/officers/stats").json()["total"] == 0

    @pytest.mark.parametrize("payload", [
        {"name": "A", "mobile": "+91 9123456789"},
        {"name": "SI Rajesh Patel", "mobile": "call me"},
        {"name": "SI Rajesh Patel"},
        {"name": "SI Rajesh Patel", "mobile": "+91 9123456789", "initial_credits": -5},
    ])
    def test_register_validation(self, client, payload):
        response = client.post("/api/v1/officers", json=payload)
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_get_and_list(self, client, officer_id):
        response = client.get(f"/api/v1/officers/{officer_id}")
        assert response.status_code == 200
        assert response.json()["name"] == "Inspector Ramesh Kumar"

        listing = client.get("/api/v1/officers", params={"search": "ramesh"}).json()
        assert listing["total"] == 1
        assert listing["officers"][0]["id"] == officer_id

    def test_unknown_officer(self, client):
        response = client.get(f"/api/v1/officers/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "UNKNOWN_OFFICER"

    def test_status_change_and_stats(self, client, officer_id):
        response = client.put(f"/api/v1/officers/{officer_id}/status", json={"status": "Suspended"})
        assert response.status_code == 200
        assert response.json()["status"] == "Suspended"

        stats = client.get("/api/v1/officers/stats").json()
        assert stats == {"total": 1, "active": 0, "suspended": 1, "inactive": 0}

        suspended = client.get("/api/v1/officers", params={"status": "Suspended"}).json()
        assert suspended["total"] == 1

    def test_invalid_status(self, client, officer_id):
        response = client.put(f"/api/v1/officers/{officer_id}/status", json={"status": "Retired"})
        assert response.status_code == 422

    def test_reconcile(self, client, officer_id):
        response = client.post(f"/api/v1/officers/{officer_id}/reconcile")
        assert response.status_code == 200
        assert response.json()["credits_remaining"] == 50


# ============================================
# TRANSACTIONS
# ============================================

class TestTransactions:

    def test_scenario(self, client, officer_id):
        """Deduction 12, rejected Deduction 45, Refund 10 over the API."""
        url = f"/api/v1/officers/{officer_id}/transactions"

        response = client.post(url, json={"action": "Deduction", "amount": 12})
        assert response.status_code == 201
        assert response.json()["new_balance"] == 38

        response = client.post(url, json={"action": "Deduction", "amount": 45})
        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_BALANCE"
        assert error["retryable"] is False

        response = client.post(url, json={"action": "Refund", "amount": 10})
        assert response.json()["new_balance"] == 48

        balance = client.get(f"/api/v1/officers/{officer_id}/balance").json()
        assert balance["balance"] == 48

    def test_processed_by_from_header(self, client, officer_id):
        response = client.post(
            f"/api/v1/officers/{officer_id}/transactions",
            json={"action": "Top-up", "amount": 5},
            headers={"X-Admin-User": "duty-officer"},
        )
        assert response.json()["processed_by"] == "duty-officer"

    @pytest.mark.parametrize("amount", [0, -3])
    def test_invalid_amount(self, client, officer_id, amount):
        response = client.post(
            f"/api/v1/officers/{officer_id}/transactions",
            json={"action": "Top-up", "amount": amount},
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "INVALID_AMOUNT"
        assert error["field"] == "amount"

    @pytest.mark.parametrize("amount", ["10", 2.5, True])
    def test_amount_must_be_json_integer(self, client, officer_id, amount):
        response = client.post(
            f"/api/v1/officers/{officer_id}/transactions",
            json={"action": "Top-up", "amount": amount},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_invalid_action(self, client, officer_id):
        response = client.post(
            f"/api/v1/officers/{officer_id}/transactions",
            json={"action": "Bonus", "amount": 10},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_ACTION"

    def test_unknown_officer(self, client):
        response = client.post(
            f"/api/v1/officers/{uuid.uuid4()}/transactions",
            json={"action": "Top-up", "amount": 10},
        )
        assert response.status_code == 404

    def test_storage_failure_is_retryable(self, client, officer_id, ledger):
        from ledger import PersistenceError

        with patch.object(ledger, "append", side_effect=PersistenceError("store down")):
            response = client.post(
                f"/api/v1/officers/{officer_id}/transactions",
                json={"action": "Top-up", "amount": 10},
            )
        assert response.status_code == 503
        assert response.json()["error"]["retryable"] is True
        assert response.headers["Retry-After"] == "1"

    def test_history(self, client, officer_id):
        url = f"/api/v1/officers/{officer_id}/transactions"
        client.post(url, json={"action": "Deduction", "amount": 2})
        client.post(url, json={"action": "Adjustment", "amount": -1})

        data = client.get(url).json()
        assert data["count"] == 3
        assert [t["sequence"] for t in data["transactions"]] == [1, 2, 3]
        assert [t["action"] for t in data["transactions"]] == ["Renewal", "Deduction", "Adjustment"]

        deductions = client.get(url, params={"action": "Deduction", "range": "today"}).json()
        assert deductions["count"] == 1

    def test_history_bad_range(self, client, officer_id):
        response = client.get(
            f"/api/v1/officers/{officer_id}/transactions", params={"range": "year"}
        )
        assert response.status_code == 422

    def test_all_transactions(self, client, officer_id):
        client.post("/api/v1/officers", json={
            "name": "ASI Priya Sharma", "mobile": "+91 9876543210", "initial_credits": 45
        })
        data = client.get("/api/v1/transactions").json()
        assert data["count"] == 2
        assert {t["officer_name"] for t in data["transactions"]} == {
            "Inspector Ramesh Kumar", "ASI Priya Sharma"
        }

        found = client.get("/api/v1/transactions", params={"search": "priya"}).json()
        assert found["count"] == 1


# ============================================
# SUMMARIES AND QUERIES
# ============================================

class TestSummaries:

    def test_credit_summary(self, client, officer_id):
        client.post(
            f"/api/v1/officers/{officer_id}/transactions",
            json={"action": "Top-up", "amount": 10},
        )
        client.post(
            f"/api/v1/officers/{officer_id}/transactions",
            json={"action": "Deduction", "amount": 12},
        )
        data = client.get("/api/v1/credits/summary").json()
        assert data["total_issued"] == 60
        assert data["total_used"] == 12
        assert data["revenue"] == 24
        assert data["utilization_rate"] == pytest.approx(0.2)

    def test_credit_summary_without_transactions(self, client):
        data = client.get("/api/v1/credits/summary").json()
        assert data["total_issued"] == 0
        assert "utilization_rate" not in data

    def test_query_stats_and_settlement(self, client, officer_id, query_log):
        officer = uuid.UUID(officer_id)
        ok = query_log.record(officer, QueryType.PRO, "+91 9000000001", "Telegram Bot", credits_used=2)
        query_log.record(officer, QueryType.OSINT, "+91 9000000002", "Telegram Bot",
                         status=QueryStatus.FAILED)

        response = client.post(f"/api/v1/queries/{ok.id}/settle")
        assert response.status_code == 200
        data = response.json()
        assert data["charged"] is True
        assert data["transaction"]["credits"] == -2

        again = client.post(f"/api/v1/queries/{ok.id}/settle").json()
        assert again["transaction"]["id"] == data["transaction"]["id"]

        stats = client.get("/api/v1/queries/stats").json()
        assert stats["total_queries"] == 2
        assert stats["total_credits_used"] == 2
        assert stats["success_rate"] == pytest.approx(0.5)
        assert stats["by_type"] == {"OSINT": 1, "PRO": 1}
        assert stats["by_officer"]["Inspector Ramesh Kumar"]["success"] == 1

        pro_only = client.get("/api/v1/queries/stats", params={"type": "PRO"}).json()
        assert pro_only["total_queries"] == 1

    def test_settle_failed_query(self, client, officer_id, query_log):
        failed = query_log.record(
            uuid.UUID(officer_id), QueryType.OSINT, "x", "Telegram Bot", status=QueryStatus.FAILED
        )
        response = client.post(f"/api/v1/queries/{failed.id}/settle")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "QUERY_NOT_SETTLEABLE"

    def test_settle_unknown_query(self, client):
        response = client.post(f"/api/v1/queries/{uuid.uuid4()}/settle")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "UNKNOWN_QUERY"


# ============================================
# HEALTH & SECURITY
# ============================================

class TestHealth:

    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"]["healthy"] is True
        assert data["uptime_seconds"] is not None

    def test_not_initialized(self):
        from api import server

        with patch.object(server, '_ledger', None), patch.object(server, '_directory', None):
            response = TestClient(server.app).get(f"/api/v1/officers/{uuid.uuid4()}/balance")
        assert response.status_code == 503

    def test_request_id_echoed(self, client):
        response = client.get("/api/v1/officers/stats", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert "X-Processing-Time-MS" in response.headers


class TestSecurity:

    def test_missing_api_key(self, client):
        from api import server

        with patch.object(server, 'API_KEY', 'secret'):
            response = client.get("/api/v1/officers")
        assert response.status_code == 401

    def test_wrong_api_key(self, client):
        from api import server

        with patch.object(server, 'API_KEY', 'secret'):
            response = client.get("/api/v1/officers", headers={"X-API-Key": "wrong"})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "HTTP_403"

    def test_valid_api_key(self, client):
        from api import server

        with patch.object(server, 'API_KEY', 'secret'):
            response = client.get("/api/v1/officers", headers={"X-API-Key": "secret"})
        assert response.status_code == 200

    def test_request_actor_in_audit_log(self, client, officer_id, audit_logger):
        client.post(
            f"/api/v1/officers/{officer_id}/transactions",
            json={"action": "Top-up", "amount": 1},
            headers={"X-Admin-User": "duty-officer", "X-Request-ID": "req-audit-1"},
        )
        content = audit_logger.log_path.read_text(encoding="utf-8")
        assert "req-audit-1" in content
        assert "duty-officer" in content


# ============================================
# LIFESPAN
# ============================================

class TestLifespan:

    def test_startup_wires_shared_services(self, tmp_path, monkeypatch):
        """Running the app builds the services from config and tears them down."""
        from api import server
        from database.connection import close_db

        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "logging:\n  level: INFO\n  file: null\n  console: true\n"
            "audit:\n  enabled: false\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
        monkeypatch.setattr(server, "CONFIG_PATH", str(config_file))
        monkeypatch.setattr(server, "API_KEY", "")
        monkeypatch.setattr(server, "_config", None)
        monkeypatch.setattr(server, "_startup_time", None)
        ConfigManager.reset_instance()
        close_db()
        root_level = logging.getLogger().level

        try:
            with TestClient(server.app) as client:
                assert server._ledger.locks is server._directory.locks
                response = client.post(
                    "/api/v1/officers",
                    json={"name": "SI Anita Desai", "mobile": "+91 9988776655", "initial_credits": 38},
                )
                assert response.status_code == 201
                assert response.json()["credits_remaining"] == 38

            assert server._ledger is None
            assert server._provider is None
        finally:
            ConfigManager.reset_instance()
            for handler in list(logging.getLogger().handlers):
                logging.getLogger().removeHandler(handler)
                handler.close()
            logging.getLogger().setLevel(root_level)
