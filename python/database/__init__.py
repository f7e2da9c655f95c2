"""
Database Package for the Officer Credit Ledger

This package provides:
- SQLAlchemy ORM models for officers, credit transactions and queries
- FastAPI Dependency Injection for database sessions
- Unit of Work pattern for transaction management
- Repository pattern for data access
- Alembic integration for migrations
- Performance monitoring and operation timing
"""

from database.models import (
    Base,
    Officer,
    CreditTransaction,
    QueryRequest,
    OfficerStatus,
    CreditAction,
    QueryType,
    QueryStatus,
    QueryPlatform,
    ISSUING_ACTIONS,
    ImmutableRecordError,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    get_slow_query_report,
    reset_metrics,
    configure_monitoring,
    check_health,
    HealthStatus,
)

__all__ = [
    # Base
    'Base',
    # Models
    'Officer',
    'CreditTransaction',
    'QueryRequest',
    # Enums
    'OfficerStatus',
    'CreditAction',
    'QueryType',
    'QueryStatus',
    'QueryPlatform',
    'ISSUING_ACTIONS',
    'ImmutableRecordError',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'get_slow_query_report',
    'reset_metrics',
    'configure_monitoring',
    'check_health',
    'HealthStatus',
]
