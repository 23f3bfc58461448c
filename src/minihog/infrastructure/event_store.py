"""Append-only event store.

All analytics read through :class:`EventStore`; writes are batch inserts inside a single
transaction that rolls back as a whole when any row fails.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence
from sqlalchemy import func, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from minihog.errors import StoreUnavailable
from minihog.infrastructure.db import ensure_tables, healthcheck, make_session_factory
from minihog.infrastructure.metrics import STORE_FAILURES
from minihog.infrastructure.query import EventQuery
from minihog.models.tables import Event, EVENT_TABLES
from minihog.timerange import to_storage, utcnow

logger = logging.getLogger(__name__)

EventRecord = Mapping[str, Any]


def _to_row(record: EventRecord) -> Event:
    ts = record.get("timestamp") or utcnow()
    received = record.get("received_at") or utcnow()
    return Event(
        event=record["event"],
        distinct_id=record["distinct_id"],
        anonymous_id=record.get("anonymous_id"),
        timestamp=to_storage(ts),
        received_at=to_storage(received),
        properties=dict(record.get("properties") or {}),
        context=dict(record.get("context") or {}),
        project_id=record.get("project_id") or "default",
        session_id=record.get("session_id"),
    )


class EventStore:
    name = "events"

    def __init__(self, engine: Engine, chunk_size: int = 500):
        self.engine = engine
        self.chunk_size = chunk_size
        self._sessions = make_session_factory(engine)

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            STORE_FAILURES.labels(self.name, operation).inc()
            logger.error(f"Event store {operation} failed: {e}")
            raise StoreUnavailable(f"event store {operation} failed") from e

    def create_schema(self) -> None:
        with self._guard("create_schema"):
            ensure_tables(self.engine, EVENT_TABLES)

    def insert_event(self, record: EventRecord) -> None:
        self.insert_events([record])

    def insert_events(self, records: Iterable[EventRecord]) -> int:
        rows = [_to_row(r) for r in records]
        if not rows:
            return 0
        with self._guard("insert"):
            # begin() commits on success and rolls the whole batch back on any error
            with self._sessions.begin() as session:
                session.add_all(rows)
        logger.debug(f"Inserted {len(rows)} events")
        return len(rows)

    def fetch(self, query: EventQuery) -> list[Mapping[str, Any]]:
        stmt = query.build()
        with self._guard("query"):
            with self.engine.connect() as conn:
                return list(conn.execute(stmt).mappings().all())

    def scalar(self, query: EventQuery) -> Any:
        stmt = query.build()
        with self._guard("query"):
            with self.engine.connect() as conn:
                return conn.execute(stmt).scalar()

    def fetch_for_users(self, query: EventQuery, distinct_ids: Sequence[str]) -> list[Mapping[str, Any]]:
        """Run ``query`` restricted to ``distinct_ids``, chunking the bound IN list."""
        ids = list(distinct_ids)
        rows: list[Mapping[str, Any]] = []
        for i in range(0, len(ids), self.chunk_size):
            rows.extend(self.fetch(query.copy().distinct_ids(ids[i:i + self.chunk_size])))
        return rows

    def execute_readonly(self, sql: str) -> list[dict[str, Any]]:
        """Execute an already-validated SELECT statement and return plain dict rows."""
        with self._guard("readonly_query"):
            with self.engine.connect() as conn:
                result = conn.execute(text(sql))
                rows = [dict(r) for r in result.mappings().all()]
                conn.rollback()
                return rows

    def count_events(self) -> int:
        return int(self.scalar(EventQuery(func.count(Event.id))) or 0)

    def count_received_since(self, instant: datetime) -> int:
        return int(self.scalar(EventQuery(func.count(Event.id)).received_since(instant)) or 0)

    def healthcheck(self) -> bool:
        try:
            return healthcheck(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Event store health check failed: {e}")
            return False
