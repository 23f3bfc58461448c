from __future__ import annotations
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable
import pandas as pd
from sqlalchemy import func
from minihog.analytics.schemas import (
    ActiveUsersResponse,
    EventRecordOut,
    EventsListResponse,
    TimeSeriesPoint,
    TimelineEvent,
    TopEvent,
    TopEventsResponse,
    TrendsResponse,
    UserTimelineResponse,
)
from minihog.errors import InvalidInput
from minihog.infrastructure.event_store import EventStore
from minihog.infrastructure.metrics import ANALYTICS_LATENCY
from minihog.infrastructure.query import EventQuery, count_distinct_users
from minihog.models.tables import Event
from minihog.timerange import isoformat, resolve_time_range

logger = logging.getLogger(__name__)

INTERVAL_FORMATS = {
    "minute": "%Y-%m-%d %H:%M:00",
    "hour": "%Y-%m-%d %H:00:00",
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}
UNBOUNDED_TOP_EVENTS_LABEL = "30d"


def _iso(value) -> str:
    return isoformat(value) if isinstance(value, datetime) else str(value)


class InsightsService:
    """Trends, active users, top events and raw event listings."""

    def __init__(self, store: EventStore, default_period: str = "7d", now: Callable[[], datetime] | None = None):
        self.store = store
        self.default_period = default_period
        self.now = now

    def _now(self) -> datetime:
        return self.now() if self.now else datetime.now(timezone.utc)

    def get_trends(self, event_name: str | None = None, from_=None, to=None, period: str | None = None, interval: str = "day") -> TrendsResponse:
        period = period or self.default_period
        window = resolve_time_range(from_, to, period, default_period=self.default_period, now=self.now)
        fmt = INTERVAL_FORMATS.get(interval, INTERVAL_FORMATS["day"])
        query = EventQuery(Event.timestamp).within(window).event(event_name)
        with ANALYTICS_LATENCY.labels("trends").time():
            frame = pd.DataFrame([dict(r) for r in self.store.fetch(query)], columns=["timestamp"])
            if frame.empty:
                series: list[TimeSeriesPoint] = []
            else:
                buckets = pd.to_datetime(frame["timestamp"]).dt.strftime(fmt)
                counts = buckets.value_counts().sort_index()
                series = [TimeSeriesPoint(timestamp=k, count=int(v)) for k, v in counts.items()]
        logger.debug(f"Trends for {event_name or 'all events'}: {len(series)} buckets")
        return TrendsResponse(
            event_name=event_name,
            period=period,
            interval=interval,
            series=series,
            total=sum(p.count for p in series),
        )

    def get_active_users(self, period: str = "7d") -> ActiveUsersResponse:
        now = self._now()

        def active_since(delta: timedelta) -> int:
            query = EventQuery(count_distinct_users()).since(now - delta)
            return int(self.store.scalar(query) or 0)

        return ActiveUsersResponse(
            dau=active_since(timedelta(hours=24)),
            wau=active_since(timedelta(days=7)),
            mau=active_since(timedelta(days=30)),
            period=period,
            calculated_at=isoformat(now),
        )

    def get_top_events(self, limit: int = 10, from_=None, to=None) -> TopEventsResponse:
        if limit < 1:
            raise InvalidInput("limit must be positive")
        count_col = func.count(Event.id).label("count")
        query = EventQuery(Event.event, count_col).group_by(Event.event).order_by(count_col.desc(), Event.event).limit(limit)
        if from_ is not None or to is not None:
            query.within(resolve_time_range(from_, to, "30d", now=self.now))
        rows = self.store.fetch(query)
        total = sum(int(r["count"]) for r in rows)
        events = [
            TopEvent(event=r["event"], count=int(r["count"]), percentage=round(int(r["count"]) / total * 100, 2) if total else 0.0)
            for r in rows
        ]
        return TopEventsResponse(events=events, total_events=total, period=None if from_ is not None and to is not None else UNBOUNDED_TOP_EVENTS_LABEL)

    def get_events(self, page: int = 1, limit: int = 20, event_name: str | None = None, distinct_id: str | None = None, from_=None, to=None, period: str | None = None) -> EventsListResponse:
        if page < 1 or limit < 1:
            raise InvalidInput("page and limit must be positive")
        window = resolve_time_range(from_, to, period, default_period=self.default_period, now=self.now)
        total = int(self.store.scalar(EventQuery(func.count(Event.id)).within(window).event(event_name).distinct_id(distinct_id)) or 0)
        query = (
            EventQuery(
                Event.timestamp,
                Event.event,
                Event.distinct_id,
                Event.anonymous_id,
                Event.properties,
                Event.context,
                Event.session_id,
            )
            .within(window)
            .event(event_name)
            .distinct_id(distinct_id)
            .order_by(Event.timestamp.desc(), Event.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        events = [
            EventRecordOut(
                timestamp=_iso(r["timestamp"]),
                event=r["event"],
                distinct_id=r["distinct_id"],
                anonymous_id=r["anonymous_id"],
                properties=r["properties"] or {},
                context=r["context"] or {},
                session_id=r["session_id"],
            )
            for r in self.store.fetch(query)
        ]
        return EventsListResponse(events=events, total=total, page=page, limit=limit, total_pages=math.ceil(total / limit))

    def get_user_timeline(self, distinct_id: str, limit: int = 100) -> UserTimelineResponse:
        query = (
            EventQuery(Event.timestamp, Event.event, Event.properties)
            .distinct_id(distinct_id)
            .order_by(Event.timestamp.desc())
            .limit(limit)
        )
        events = [TimelineEvent(timestamp=_iso(r["timestamp"]), event=r["event"], properties=r["properties"] or {}) for r in self.store.fetch(query)]
        total = int(self.store.scalar(EventQuery(func.count(Event.id)).distinct_id(distinct_id)) or 0)
        return UserTimelineResponse(distinct_id=distinct_id, events=events, total=total)
