"""Event ingestion into the append-only store.

Each batch is validated event by event; rejected events are counted and logged, and the
accepted remainder is written in one transaction (all or nothing).
"""
from __future__ import annotations
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable
from minihog.errors import InvalidEvent
from minihog.infrastructure.event_store import EventStore
from minihog.infrastructure.metrics import EVENTS_INGESTED, EVENTS_REJECTED
from minihog.timerange import utcnow
from minihog.validation.events import EventIn, IdentifyIn, validate_event

logger = logging.getLogger(__name__)

IDENTIFY_EVENT = "$identify"
DEFAULT_PROJECT = "default"


def hash_ip(ip_address: str) -> str:
    return hashlib.sha256(ip_address.encode("utf-8")).hexdigest()[:16]


class IngestService:
    def __init__(self, store: EventStore, max_properties: int = 100, max_batch: int = 1000, now: Callable[[], datetime] | None = None):
        self.store = store
        self.max_properties = max_properties
        self.max_batch = max_batch
        self.now = now or utcnow

    def enrich(self, event: EventIn, user_agent: str | None = None, ip_address: str | None = None) -> dict[str, Any]:
        context = dict(event.context)
        if user_agent:
            context["user_agent"] = user_agent
        if ip_address:
            # raw IPs are never stored
            context["ip_hash"] = hash_ip(ip_address)
        context.setdefault("sdk_name", "unknown")
        now = self.now()
        return {
            "event": event.event,
            "distinct_id": event.distinct_id,
            "anonymous_id": event.anonymous_id,
            "timestamp": event.timestamp or now,
            "received_at": now,
            "properties": event.properties,
            "context": context,
            "project_id": event.project_id or DEFAULT_PROJECT,
            "session_id": event.session_id,
        }

    def ingest_events(self, events: Iterable[dict], user_agent: str | None = None, ip_address: str | None = None) -> dict[str, int]:
        payload = list(events)
        if len(payload) > self.max_batch:
            raise InvalidEvent(f"batch of {len(payload)} events exceeds limit of {self.max_batch}")
        accepted: list[dict[str, Any]] = []
        rejected = 0
        for raw in payload:
            model, reason = validate_event(raw if isinstance(raw, dict) else {}, self.max_properties)
            if model is None:
                rejected += 1
                EVENTS_REJECTED.labels(reason).inc()
                logger.warning(f"Rejected event {raw.get('event') if isinstance(raw, dict) else raw!r}: {reason}")
                continue
            accepted.append(self.enrich(model, user_agent, ip_address))
        processed = self.store.insert_events(accepted)
        EVENTS_INGESTED.inc(processed)
        logger.info(f"Successfully processed {processed}/{len(payload)} events")
        return {"received": len(payload), "processed": processed, "rejected": rejected}

    def identify(self, identify: IdentifyIn | dict, user_agent: str | None = None, ip_address: str | None = None) -> dict[str, Any]:
        if isinstance(identify, dict):
            identify = IdentifyIn(**identify)
        event = EventIn(
            event=IDENTIFY_EVENT,
            distinct_id=identify.distinct_id,
            anonymous_id=identify.anonymous_id,
            timestamp=identify.timestamp,
            properties=identify.traits,
        )
        record = self.enrich(event, user_agent, ip_address)
        self.store.insert_event(record)
        EVENTS_INGESTED.inc()
        logger.info(f"Identified user: {identify.distinct_id}")
        return record

    def get_stats(self) -> dict[str, int]:
        return {
            "total_events": self.store.count_events(),
            "last_24h": self.store.count_received_since(self.now() - timedelta(hours=24)),
        }
