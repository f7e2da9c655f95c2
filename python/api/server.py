"""
FastAPI Credit Ledger API Server

Provides REST API endpoints for the officer credit ledger behind the OSINT
admin console: officer registration and status, credit transactions,
balances and history, query settlement and dashboard summaries.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Depends, Security, Header, Query
from fastapi.security import APIKeyHeader

from api.models import (
    OfficerCreateRequest,
    OfficerStatusRequest,
    OfficerResponse,
    OfficerListResponse,
    OfficerStatsResponse,
    BalanceResponse,
    TransactionRequest,
    TransactionResponse,
    TransactionListResponse,
    SettlementResponse,
    CreditSummaryResponse,
    QuerySummaryResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from audit_logger import get_audit_logger
from config_manager import get_config, configure_logging, ConfigManager, ConfigurationError
from database.connection import DatabaseSessionProvider, DatabaseSettings, close_db, init_db
from database.models import OfficerStatus
from database.monitoring import check_health, get_db_metrics
from ledger import (
    HistoryFilter,
    Ledger,
    OfficerDirectory,
    OfficerLockRegistry,
    QueryLog,
    Renewal,
)
from ledger.aggregation import summarize_credits, summarize_queries

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yaml")
API_KEY = os.getenv("API_KEY", "")  # Falls back to api.api_key in config.yaml

DATE_RANGE_PATTERN = "^(all|today|week|month)$"

# Global state
_provider: Optional[DatabaseSessionProvider] = None
_ledger: Optional[Ledger] = None
_directory: Optional[OfficerDirectory] = None
_query_log: Optional[QueryLog] = None
_config: Optional[ConfigManager] = None
_startup_time: Optional[datetime] = None

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _configured_api_key() -> str:
    if API_KEY:
        return API_KEY
    if _config is not None and _config.api.api_key:
        return _config.api.api_key
    return ""


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If no API key is configured, authentication is disabled.
    """
    expected = _configured_api_key()
    if not expected:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != expected:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_ledger() -> Ledger:
    """Dependency to get the ledger instance."""
    if _ledger is None:
        raise HTTPException(
            status_code=503, detail="Ledger not initialized. Service is starting up."
        )
    return _ledger


def get_directory() -> OfficerDirectory:
    """Dependency to get the officer directory."""
    if _directory is None:
        raise HTTPException(
            status_code=503, detail="Directory not initialized. Service is starting up."
        )
    return _directory


def get_query_log() -> QueryLog:
    """Dependency to get the query log."""
    if _query_log is None:
        raise HTTPException(
            status_code=503, detail="Query log not initialized. Service is starting up."
        )
    return _query_log


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load configuration, wire the ledger services and close them on shutdown."""
    global _provider, _ledger, _directory, _query_log, _config, _startup_time

    logger.info("Starting Officer Credit Ledger API...")

    try:
        _config = get_config(CONFIG_PATH)
        configure_logging(_config.logging)
        logger.info(f"Configuration loaded from {CONFIG_PATH}")

        if _config.audit.enabled:
            get_audit_logger(log_dir=_config.audit.log_dir, enable_console=_config.audit.console)

        settings = DatabaseSettings.from_env() if os.getenv("DATABASE_URL") \
            else DatabaseSettings.from_config(_config.database)
        _provider = init_db(echo=_config.database.echo, settings=settings)
        _provider.create_tables()

        locks = OfficerLockRegistry()
        _ledger = Ledger.from_config(_provider, _config.ledger, locks=locks)
        _directory = OfficerDirectory(
            _provider, locks=locks, lock_timeout=_config.ledger.lock_timeout_seconds
        )
        _query_log = QueryLog(_provider)

        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready")

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise

    yield

    logger.info("Shutting down Officer Credit Ledger API...")
    close_db()
    _provider = _ledger = _directory = _query_log = None


# Create FastAPI application
app = FastAPI(
    lifespan=lifespan,
    title="Officer Credit Ledger API",
    description="Credit ledger and officer directory for the OSINT admin console",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing API key"},
    403: {"model": ErrorResponse, "description": "Invalid API key"},
    404: {"model": ErrorResponse, "description": "Officer or query not found"},
    422: {"model": ErrorResponse, "description": "Validation error"},
    503: {"model": ErrorResponse, "description": "Storage unavailable or officer busy; retry"},
}


# ============================================
# HEALTH
# ============================================

@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check database health and operation metrics",
)
def health_check(directory: OfficerDirectory = Depends(get_directory)):
    """Return health status. Always returns HTTP 200."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    try:
        provider = directory.provider
        health = check_health(provider.engine, provider.session_factory)
        officers = directory.status_counts()['total'] if health.healthy else 0
        return HealthResponse(
            status="healthy" if health.healthy else "degraded",
            database=health.to_dict(),
            officers=officers,
            uptime_seconds=uptime_seconds,
            metrics=get_db_metrics(),
            error_message=health.error,
        )
    except Exception as e:
        # Always return HTTP 200, but report error in JSON
        logger.error(f"Health check failed: {e}")
        return HealthResponse(
            status="error",
            uptime_seconds=uptime_seconds,
            error_message=str(e),
        )


# ============================================
# OFFICERS
# ============================================

@app.post(
    "/api/v1/officers",
    response_model=OfficerResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Register an officer",
    description="Register an officer, optionally issuing opening credits with a Renewal",
)
def register_officer(
    request: OfficerCreateRequest,
    ledger: Ledger = Depends(get_ledger),
    x_admin_user: Optional[str] = Header(default=None),
    api_key: str = Depends(verify_api_key),
):
    profile = request.model_dump(
        exclude={"name", "mobile", "initial_credits", "payment_mode", "processed_by"},
        exclude_none=True,
    )
    opening = None
    if request.initial_credits > 0:
        opening = Renewal(
            request.initial_credits,
            payment_mode=request.payment_mode,
            processed_by=request.processed_by or x_admin_user,
            remarks=f"Registration - {request.initial_credits} credits",
        )
    snapshot = ledger.open_account(request.name, request.mobile, opening, **profile)

    return OfficerResponse.model_validate(snapshot)


@app.get(
    "/api/v1/officers",
    response_model=OfficerListResponse,
    responses=ERROR_RESPONSES,
    summary="List officers",
)
def list_officers(
    status: Optional[OfficerStatus] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=100),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    directory: OfficerDirectory = Depends(get_directory),
    api_key: str = Depends(verify_api_key),
):
    result = directory.list_officers(status=status, search=search, offset=offset, limit=limit)
    return OfficerListResponse(
        officers=[OfficerResponse.model_validate(o) for o in result['officers']],
        total=result['total'],
    )


@app.get(
    "/api/v1/officers/stats",
    response_model=OfficerStatsResponse,
    responses=ERROR_RESPONSES,
    summary="Officer counts by status",
)
def officer_stats(
    directory: OfficerDirectory = Depends(get_directory),
    api_key: str = Depends(verify_api_key),
):
    return OfficerStatsResponse(**directory.status_counts())


@app.get(
    "/api/v1/officers/{officer_id}",
    response_model=OfficerResponse,
    responses=ERROR_RESPONSES,
    summary="Officer snapshot",
)
def get_officer(
    officer_id: UUID,
    directory: OfficerDirectory = Depends(get_directory),
    api_key: str = Depends(verify_api_key),
):
    return OfficerResponse.model_validate(directory.get(officer_id))


@app.put(
    "/api/v1/officers/{officer_id}/status",
    response_model=OfficerResponse,
    responses=ERROR_RESPONSES,
    summary="Change officer status",
    description="Move an officer to Active, Suspended or Inactive. Setting the current status is a no-op.",
)
def set_officer_status(
    officer_id: UUID,
    request: OfficerStatusRequest,
    directory: OfficerDirectory = Depends(get_directory),
    api_key: str = Depends(verify_api_key),
):
    return OfficerResponse.model_validate(directory.set_status(officer_id, request.status))


@app.post(
    "/api/v1/officers/{officer_id}/reconcile",
    response_model=OfficerResponse,
    responses=ERROR_RESPONSES,
    summary="Recompute the officer snapshot from the ledger",
)
def reconcile_officer(
    officer_id: UUID,
    directory: OfficerDirectory = Depends(get_directory),
    api_key: str = Depends(verify_api_key),
):
    return OfficerResponse.model_validate(directory.reconcile(officer_id))


# ============================================
# LEDGER
# ============================================

@app.get(
    "/api/v1/officers/{officer_id}/balance",
    response_model=BalanceResponse,
    responses=ERROR_RESPONSES,
    summary="Current balance from the ledger",
)
def get_balance(
    officer_id: UUID,
    ledger: Ledger = Depends(get_ledger),
    api_key: str = Depends(verify_api_key),
):
    return BalanceResponse(officer_id=officer_id, balance=ledger.balance_of(officer_id))


@app.post(
    "/api/v1/officers/{officer_id}/transactions",
    response_model=TransactionResponse,
    status_code=201,
    responses={
        **ERROR_RESPONSES,
        409: {"model": ErrorResponse, "description": "Insufficient balance"},
    },
    summary="Append a credit transaction",
)
def append_transaction(
    officer_id: UUID,
    request: TransactionRequest,
    ledger: Ledger = Depends(get_ledger),
    x_admin_user: Optional[str] = Header(default=None),
    api_key: str = Depends(verify_api_key),
):
    """Append a Renewal, Top-up, Deduction, Refund or Adjustment.

    Not idempotent: a client retrying after a 503 PERSISTENCE_FAILURE is safe
    because nothing was applied, but retrying after a lost 201 appends twice.
    """
    record = ledger.append_transaction(
        officer_id,
        request.action,
        request.amount,
        payment_mode=request.payment_mode,
        payment_reference=request.payment_reference,
        remarks=request.remarks,
        processed_by=request.processed_by or x_admin_user,
    )
    return TransactionResponse.model_validate(record)


@app.get(
    "/api/v1/officers/{officer_id}/transactions",
    response_model=TransactionListResponse,
    responses=ERROR_RESPONSES,
    summary="Officer transaction history in insertion order",
)
def officer_history(
    officer_id: UUID,
    action: Optional[str] = Query(default=None, max_length=20),
    date_range: str = Query(default="all", alias="range", pattern=DATE_RANGE_PATTERN),
    ledger: Ledger = Depends(get_ledger),
    api_key: str = Depends(verify_api_key),
):
    history_filter = HistoryFilter.for_range(date_range, actions=[action] if action else ())
    records = ledger.history(officer_id, history_filter).to_list()
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(r) for r in records],
        count=len(records),
    )


@app.get(
    "/api/v1/transactions",
    response_model=TransactionListResponse,
    responses=ERROR_RESPONSES,
    summary="Transactions across all officers, newest first",
)
def all_transactions(
    action: Optional[str] = Query(default=None, max_length=20),
    date_range: str = Query(default="all", alias="range", pattern=DATE_RANGE_PATTERN),
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=200, ge=1, le=1000),
    ledger: Ledger = Depends(get_ledger),
    api_key: str = Depends(verify_api_key),
):
    history_filter = HistoryFilter.for_range(date_range, actions=[action] if action else ())
    records = ledger.transactions(history_filter, search=search, limit=limit)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(r) for r in records],
        count=len(records),
    )


@app.get(
    "/api/v1/credits/summary",
    response_model=CreditSummaryResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
    summary="Credits issued, used and revenue",
)
def credit_summary(
    date_range: str = Query(default="all", alias="range", pattern=DATE_RANGE_PATTERN),
    ledger: Ledger = Depends(get_ledger),
    config: ConfigManager = Depends(get_config_instance),
    api_key: str = Depends(verify_api_key),
):
    transactions = ledger.transactions(HistoryFilter.for_range(date_range))
    summary = summarize_credits(transactions, price_per_credit=config.ledger.price_per_credit)
    return CreditSummaryResponse(**summary.to_dict())


# ============================================
# QUERIES
# ============================================

@app.get(
    "/api/v1/queries/stats",
    response_model=QuerySummaryResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
    summary="Query totals, success rate and per-officer statistics",
)
def query_stats(
    officer_id: Optional[UUID] = Query(default=None),
    query_type: Optional[str] = Query(default=None, alias="type", pattern="^(OSINT|PRO)$"),
    status: Optional[str] = Query(default=None, pattern="^(Pending|Processing|Success|Failed)$"),
    search: Optional[str] = Query(default=None, max_length=100),
    date_range: str = Query(default="all", alias="range", pattern=DATE_RANGE_PATTERN),
    query_log: QueryLog = Depends(get_query_log),
    api_key: str = Depends(verify_api_key),
):
    window = HistoryFilter.for_range(date_range)
    queries = query_log.list(
        officer_id=officer_id,
        query_type=query_type,
        status=status,
        search=search,
        since=window.since,
    )
    return QuerySummaryResponse(**summarize_queries(queries).to_dict())


@app.post(
    "/api/v1/queries/{query_id}/settle",
    response_model=SettlementResponse,
    responses={
        **ERROR_RESPONSES,
        409: {"model": ErrorResponse, "description": "Query not successful or balance too low"},
    },
    summary="Charge a successful query to its officer",
    description="Idempotent: settling an already settled query returns the original transaction.",
)
def settle_query(
    query_id: UUID,
    ledger: Ledger = Depends(get_ledger),
    x_admin_user: Optional[str] = Header(default=None),
    api_key: str = Depends(verify_api_key),
):
    record = ledger.settle_query(query_id, processed_by=x_admin_user)
    return SettlementResponse(
        query_id=query_id,
        charged=record is not None,
        transaction=TransactionResponse.model_validate(record) if record else None,
    )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
