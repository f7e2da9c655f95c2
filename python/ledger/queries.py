"""
Query log access.

Queries are produced by the OSINT/PRO querying subsystem. The ledger only
reads them, apart from settlement; record() exists so that subsystem (and
the demo loader) can store a finished query through the same session
handling as everything else.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from database.connection import DatabaseSessionProvider
from database.models import QueryPlatform, QueryStatus, QueryType
from database.monitoring import query_timer, timed_query
from database.repositories import OfficerRepository, QueryRepository, RepositoryError
from ledger.errors import PersistenceError, UnknownOfficerError, UnknownQueryError
from ledger.records import QueryRecord

logger = logging.getLogger(__name__)


class QueryLog:
    """Read access to query requests, plus recording for producers."""

    def __init__(self, provider: DatabaseSessionProvider):
        self.provider = provider

    @timed_query("queries.get")
    def get(self, query_id: UUID) -> QueryRecord:
        with self.provider.read_scope() as session:
            query = QueryRepository(session).get_by_id(query_id)
            if query is None:
                raise UnknownQueryError(query_id)
            return QueryRecord.from_model(query)

    def list(
        self,
        officer_id: Optional[UUID] = None,
        query_type: Optional[Union[str, QueryType]] = None,
        status: Optional[Union[str, QueryStatus]] = None,
        search: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[QueryRecord]:
        """Queries newest first, with officer names."""
        query_type = QueryType(query_type) if query_type else None
        status = QueryStatus(status) if status else None
        with query_timer("queries.list"), self.provider.read_scope() as session:
            rows = QueryRepository(session).list(
                officer_id=officer_id,
                query_type=query_type,
                status=status,
                search=search,
                since=since,
                until=until,
                limit=limit
            )
            return [QueryRecord.from_model(query, name) for query, name in rows]

    def record(
        self,
        officer_id: UUID,
        query_type: Union[str, QueryType],
        input: str,
        source: str,
        status: Union[str, QueryStatus] = QueryStatus.SUCCESS,
        credits_used: int = 0,
        **extra: Any
    ) -> QueryRecord:
        """
        Store a query produced by the querying subsystem.

        Args:
            officer_id: Officer who ran the query
            query_type: OSINT or PRO
            input: Search input (phone number, name, ...)
            source: Data source consulted
            status: Query outcome
            credits_used: Credits the query costs
            **extra: result_summary, response_time_ms, error_message,
                session_id, platform, created_at, completed_at

        Returns:
            QueryRecord
        """
        if isinstance(credits_used, bool) or not isinstance(credits_used, int) or credits_used < 0:
            raise ValueError(f"credits_used must be a non-negative integer, got {credits_used!r}")

        data: Dict[str, Any] = {
            'officer_id': officer_id,
            'type': QueryType(query_type),
            'input': input,
            'source': source,
            'status': QueryStatus(status),
            'credits_used': credits_used,
        }
        for key in ('result_summary', 'response_time_ms', 'error_message',
                    'session_id', 'created_at', 'completed_at'):
            if extra.get(key) is not None:
                data[key] = extra[key]
        if extra.get('platform') is not None:
            data['platform'] = QueryPlatform(extra['platform'])

        try:
            with self.provider.get_unit_of_work() as uow:
                if not OfficerRepository(uow.session).exists(officer_id):
                    raise UnknownOfficerError(officer_id)
                query = QueryRepository(uow.session).create(data)
                record = QueryRecord.from_model(query)
                uow.commit()
        except (SQLAlchemyError, RepositoryError) as e:
            logger.error(f"Recording query for officer {officer_id} failed: {e}")
            raise PersistenceError(f"Could not record query for officer {officer_id}") from e

        logger.debug(f"Recorded {record.type.value} query {record.id} for officer {officer_id}")
        return record
