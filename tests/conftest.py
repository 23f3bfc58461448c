"""Pytest configuration and fixtures."""
import os
from datetime import datetime, timedelta, timezone

import pytest

# Set test environment before importing the app
os.environ["APP_ENV"] = "test"
os.environ["ENVIRONMENT"] = "test"

from minihog.analytics import FunnelEngine, InsightsService, RetentionEngine
from minihog.flags.service import FlagService
from minihog.infrastructure.db import create_db_engine
from minihog.infrastructure.event_store import EventStore
from minihog.infrastructure.flag_store import FlagStore
from minihog.ingest.service import IngestService

# Monday noon UTC; every engine under test sees this as "now"
NOW = datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)


def clock():
    return NOW


def ago(**kwargs):
    return NOW - timedelta(**kwargs)


@pytest.fixture
def events_engine():
    """Fresh in-memory events database."""
    engine = create_db_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def metadata_engine():
    """Fresh in-memory metadata database."""
    engine = create_db_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def event_store(events_engine):
    store = EventStore(events_engine, chunk_size=2)
    store.create_schema()
    return store


@pytest.fixture
def flag_store(metadata_engine):
    store = FlagStore(metadata_engine)
    store.create_schema()
    return store


@pytest.fixture
def flag_service(flag_store):
    return FlagService(flag_store)


@pytest.fixture
def funnel_engine(event_store):
    return FunnelEngine(event_store, now=clock)


@pytest.fixture
def retention_engine(event_store):
    return RetentionEngine(event_store, now=clock)


@pytest.fixture
def insights(event_store):
    return InsightsService(event_store, now=clock)


@pytest.fixture
def ingest_service(event_store):
    return IngestService(event_store, max_properties=5, max_batch=10, now=clock)


@pytest.fixture
def add_events(event_store):
    """Insert ``(distinct_id, event, timestamp[, properties])`` tuples."""
    def _add(*rows):
        records = []
        for row in rows:
            distinct_id, event, ts = row[:3]
            props = row[3] if len(row) > 3 else {}
            records.append({"distinct_id": distinct_id, "event": event, "timestamp": ts, "properties": props})
        return event_store.insert_events(records)
    return _add
