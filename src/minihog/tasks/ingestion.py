from __future__ import annotations
import logging
from functools import lru_cache
from celery import shared_task
from minihog.config import get_settings
from minihog.infrastructure.db import create_db_engine
from minihog.infrastructure.event_store import EventStore
from minihog.ingest.service import IngestService

logger = logging.getLogger(__name__)


@lru_cache
def _worker_service() -> IngestService:
    """Ingest service bound to the configured events database, built once per worker process."""
    settings = get_settings()
    store = EventStore(create_db_engine(settings.events_database_url), chunk_size=settings.query_in_chunk_size)
    store.create_schema()
    return IngestService(store, max_properties=settings.max_event_properties, max_batch=settings.ingest_max_batch)


@shared_task(name="minihog.tasks.ingestion.ingest_events")
def ingest_events(events: list[dict], user_agent: str | None = None, ip_address: str | None = None, service: IngestService | None = None) -> dict:
    """Persist a batch of raw events; invalid events are rejected individually."""
    result = (service or _worker_service()).ingest_events(events, user_agent=user_agent, ip_address=ip_address)
    logger.info(f"Ingestion task finished: {result}")
    return result
