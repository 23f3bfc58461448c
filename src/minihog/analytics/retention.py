"""Cohort retention engine.

Users are grouped into cohorts by the calendar bucket (day, ISO week starting Monday, or
month) of their first ``cohort_event`` inside the window. For every cohort and period offset
``n`` we count distinct members who performed ``return_event`` (any event for ``"any"``) in
``[cohort_start + n * length, cohort_start + (n + 1) * length)``.

Period lengths are fixed: 1 day, 7 days and 30 days. Monthly periods are therefore an
approximation and do not follow calendar month boundaries; a member whose first event falls
after the 30th day of its month is counted in period 1 rather than period 0.

The defining event is ordinary activity: with ``return_event == "any"`` (or equal to the
cohort event) it counts towards the period it falls in, which for daily and weekly cohorts
is always period 0, so period 0 is 100% there.

A cohort only reports periods that have started by the end of the window; periods it has not
reached yet are omitted, and omitted periods are excluded from the summary averages.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Callable
import numpy as np
import pandas as pd
from sqlalchemy import func
from minihog.analytics.schemas import (
    CohortRetention,
    RetentionMetadata,
    RetentionPeriod,
    RetentionQuery,
    RetentionResponse,
    RetentionSummary,
)
from minihog.errors import InvalidRetentionQuery
from minihog.infrastructure.event_store import EventStore
from minihog.infrastructure.metrics import ANALYTICS_LATENCY, RETENTION_COMPUTATIONS
from minihog.infrastructure.query import EventQuery
from minihog.models.tables import Event
from minihog.timerange import TimeRange, isoformat, resolve_time_range

logger = logging.getLogger(__name__)

PERIOD_SECONDS = {
    "daily": 86400,
    "weekly": 604800,
    "monthly": 2592000,  # 30 days, not calendar months
}
MIN_PERIODS = 1
MAX_PERIODS = 52
ANY_EVENT = "any"
RANKING_PERIOD = 7


def truncate_to_period(values: pd.Series, period_type: str) -> pd.Series:
    ts = pd.to_datetime(values)
    if period_type == "daily":
        return ts.dt.normalize()
    if period_type == "weekly":
        return ts.dt.normalize() - pd.to_timedelta(ts.dt.weekday, unit="D")
    return ts.dt.to_period("M").dt.to_timestamp()


def format_cohort_name(start: pd.Timestamp, period_type: str) -> str:
    if period_type == "daily":
        return f"{start:%b} {start.day}, {start.year}"
    if period_type == "weekly":
        return f"Week of {start:%b} {start.day}"
    return f"{start:%B} {start.year}"


class RetentionEngine:
    def __init__(self, store: EventStore, default_range: str = "90d", now: Callable[[], datetime] | None = None):
        self.store = store
        self.default_range = default_range
        self.now = now

    def calculate_retention(self, query: RetentionQuery) -> RetentionResponse:
        period_type = query.period_type
        if period_type not in PERIOD_SECONDS:
            raise InvalidRetentionQuery(f"Unknown period_type: {period_type}")
        if not MIN_PERIODS <= query.periods <= MAX_PERIODS:
            raise InvalidRetentionQuery(f"periods must be between {MIN_PERIODS} and {MAX_PERIODS}, got {query.periods}")
        window = resolve_time_range(query.from_, query.to, query.date_range, default_period=self.default_range, now=self.now)
        metadata = RetentionMetadata(
            cohort_type=query.cohort_type,
            period_type=period_type,
            periods_analyzed=query.periods,
            date_from=isoformat(window.start),
            date_to=isoformat(window.end),
        )
        logger.debug(f"Calculating retention: cohort_event={query.cohort_event}, period_type={period_type}, window={window.as_dict()}")

        RETENTION_COMPUTATIONS.labels(period_type).inc()
        with ANALYTICS_LATENCY.labels("retention").time():
            members = self._identify_cohorts(query.cohort_event, period_type, window)
            if members.empty:
                logger.info("No cohorts found for retention window")
                return RetentionResponse(cohorts=[], summary=RetentionSummary(), metadata=metadata)
            counts = self._period_activity(members, query.return_event, period_type, query.periods, window)
            cohorts = self._build_cohorts(members, counts, period_type, query.periods, window)

        logger.info(f"Retention computed for {len(cohorts)} cohorts")
        return RetentionResponse(cohorts=cohorts, summary=summarize(cohorts), metadata=metadata)

    def _identify_cohorts(self, cohort_event: str, period_type: str, window: TimeRange) -> pd.DataFrame:
        """One row per user: ``distinct_id``, ``first_seen``, ``cohort_start``."""
        query = (
            EventQuery(Event.distinct_id, func.min(Event.timestamp).label("first_seen"))
            .event(cohort_event)
            .within(window)
            .group_by(Event.distinct_id)
        )
        rows = [dict(r) for r in self.store.fetch(query)]
        members = pd.DataFrame(rows, columns=["distinct_id", "first_seen"])
        if members.empty:
            return members
        members["first_seen"] = pd.to_datetime(members["first_seen"])
        members["cohort_start"] = truncate_to_period(members["first_seen"], period_type)
        return members

    def _period_activity(self, members: pd.DataFrame, return_event: str, period_type: str, periods: int, window: TimeRange) -> dict:
        """Map ``(cohort_start, period_number) -> distinct active members``."""
        query = (
            EventQuery(Event.distinct_id, Event.timestamp)
            .since(members["cohort_start"].min().to_pydatetime())
            .until(window.end)
        )
        if return_event != ANY_EVENT:
            query.event(return_event)
        rows = [dict(r) for r in self.store.fetch_for_users(query, members["distinct_id"].tolist())]
        activity = pd.DataFrame(rows, columns=["distinct_id", "timestamp"])
        if activity.empty:
            return {}
        activity["timestamp"] = pd.to_datetime(activity["timestamp"])
        activity = activity.merge(members[["distinct_id", "cohort_start"]], on="distinct_id", how="inner")
        elapsed = (activity["timestamp"] - activity["cohort_start"]).dt.total_seconds()
        activity["period_number"] = (elapsed // PERIOD_SECONDS[period_type]).astype(int)
        activity = activity[(activity["period_number"] >= 0) & (activity["period_number"] < periods)]
        return activity.groupby(["cohort_start", "period_number"])["distinct_id"].nunique().to_dict()

    def _build_cohorts(self, members: pd.DataFrame, counts: dict, period_type: str, periods: int, window: TimeRange) -> list[CohortRetention]:
        length = pd.Timedelta(seconds=PERIOD_SECONDS[period_type])
        end = pd.Timestamp(window.end_storage)
        cohorts: list[CohortRetention] = []
        for start, group in members.groupby("cohort_start", sort=True):
            size = int(group["distinct_id"].nunique())
            cohort_periods = []
            for n in range(periods):
                if start + n * length > end:
                    break
                users = int(counts.get((start, n), 0))
                cohort_periods.append(RetentionPeriod(
                    period_number=n,
                    users=users,
                    percentage=round(users / size * 100, 2) if size else 0.0,
                ))
            cohorts.append(CohortRetention(
                cohort_name=format_cohort_name(start, period_type),
                cohort_start=start.strftime("%Y-%m-%d"),
                cohort_size=size,
                periods=cohort_periods,
            ))
        return cohorts


def _average_at(cohorts: list[CohortRetention], period_number: int) -> float | None:
    values = [p.percentage for c in cohorts for p in c.periods if p.period_number == period_number]
    if not values:
        return None
    return round(float(np.mean(values)), 2)


def _ranking_score(cohort: CohortRetention) -> float:
    for p in cohort.periods:
        if p.period_number == RANKING_PERIOD:
            return p.percentage
    return cohort.periods[-1].percentage if cohort.periods else 0.0


def summarize(cohorts: list[CohortRetention]) -> RetentionSummary:
    if not cohorts:
        return RetentionSummary()
    ranked = sorted(cohorts, key=_ranking_score, reverse=True)
    return RetentionSummary(
        total_cohorts=len(cohorts),
        total_users=sum(c.cohort_size for c in cohorts),
        avg_period1_retention=_average_at(cohorts, 1),
        avg_period7_retention=_average_at(cohorts, 7),
        avg_period30_retention=_average_at(cohorts, 30),
        best_cohort=ranked[0].cohort_name,
        worst_cohort=ranked[-1].cohort_name,
    )
