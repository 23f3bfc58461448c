"""Funnel conversion engine.

Two modes:

``strict``
    Each user walks the steps in order. A user reaches step *i* when they performed its event
    strictly after the timestamp at which they reached step *i-1* (and no later than the end of
    the window). The earliest qualifying timestamp is used at every step, which maximises the
    chance of reaching the following one, so ``users_count`` never increases along the funnel.

``any_order``
    Each step is counted independently: distinct users who performed the event anywhere in the
    window. No timing is reported in this mode.

Completion rates are relative to the funnel entrants (step 1); drop-off is relative to the
previous step. All divisions by zero yield 0.
"""
from __future__ import annotations
import json
import logging
import math
from bisect import bisect_right
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional
from minihog.analytics.schemas import FunnelQuery, FunnelResponse, FunnelStep, FunnelStepResult
from minihog.errors import InvalidFunnelDefinition
from minihog.infrastructure.event_store import EventStore
from minihog.infrastructure.metrics import ANALYTICS_LATENCY, FUNNEL_COMPUTATIONS
from minihog.infrastructure.query import EventQuery
from minihog.models.tables import Event
from minihog.timerange import TimeRange, resolve_time_range

logger = logging.getLogger(__name__)

STRICT = "strict"
ANY_ORDER = "any_order"

# distinct_id -> ascending timestamps of the step's matching events
Occurrences = Dict[str, List[datetime]]


def _half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_duration(seconds: float) -> str:
    """Human readable duration using the two largest units, e.g. ``45s``, ``2h 15m``, ``3d 4h``.

    The smaller unit is rounded before splitting, so ``3599.6`` is ``1h`` rather than ``59m 60s``.
    """
    total_seconds = _half_up(seconds)
    if total_seconds < 60:
        return f"{total_seconds}s"
    if total_seconds < 3600:
        minutes, secs = divmod(total_seconds, 60)
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    total_minutes = _half_up(seconds / 60)
    if total_minutes < 1440:
        hours, minutes = divmod(total_minutes, 60)
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"
    days, hours = divmod(_half_up(seconds / 3600), 24)
    return f"{days}d {hours}h" if hours > 0 else f"{days}d"


def _pct(numerator: int, denominator: int) -> float:
    return round(numerator / denominator * 100, 2) if denominator else 0.0


def _matches(properties: dict | None, filters: dict) -> bool:
    props = properties or {}
    return all(k in props and props[k] == v for k, v in filters.items())


def _avg_gap(later: Dict[str, datetime], earlier: Dict[str, datetime]) -> Optional[str]:
    gaps = [(ts - earlier[user]).total_seconds() for user, ts in later.items() if user in earlier]
    if not gaps:
        return None
    return format_duration(sum(gaps) / len(gaps))


class FunnelEngine:
    def __init__(self, store: EventStore, default_window: str = "7d", now: Callable[[], datetime] | None = None):
        self.store = store
        self.default_window = default_window
        self.now = now

    def calculate_funnel(self, query: FunnelQuery) -> FunnelResponse:
        if len(query.steps) < 2:
            raise InvalidFunnelDefinition("Funnel must have at least 2 steps")
        time_window = query.time_window or self.default_window
        window = resolve_time_range(query.from_, query.to, time_window, default_period=self.default_window, now=self.now)
        logger.debug(f"Calculating {query.step_order} funnel with {len(query.steps)} steps over {window.as_dict()}")

        FUNNEL_COMPUTATIONS.labels(query.step_order).inc()
        with ANALYTICS_LATENCY.labels("funnel").time():
            occurrences = self._load_occurrences(query.steps, window)
            if query.step_order == STRICT:
                counts, gaps, completion = self._strict(occurrences)
            else:
                counts = [len(o) for o in occurrences]
                gaps = [None] * len(counts)
                completion = None

        results: list[FunnelStepResult] = []
        for i, step in enumerate(query.steps):
            results.append(FunnelStepResult(
                step=i + 1,
                name=step.label,
                event=step.event,
                users_count=counts[i],
                completion_rate=_pct(counts[i], counts[0]),
                drop_off_rate=_pct(counts[i - 1] - counts[i], counts[i - 1]) if i > 0 else 0.0,
                avg_time_to_next=gaps[i],
            ))

        entered, converted = counts[0], counts[-1]
        logger.info(f"Funnel computed: {entered} entered, {converted} converted ({query.step_order})")
        return FunnelResponse(
            steps=results,
            total_conversion_rate=_pct(converted, entered),
            total_users_entered=entered,
            total_users_converted=converted,
            average_completion_time=completion,
            time_window=time_window,
        )

    def _load_occurrences(self, steps: list[FunnelStep], window: TimeRange) -> list[Occurrences]:
        cache: dict[str, Occurrences] = {}
        out: list[Occurrences] = []
        for i, step in enumerate(steps):
            cache_key = json.dumps([step.event, step.properties or {}], sort_keys=True, default=str)
            if cache_key not in cache:
                cache[cache_key] = self._fetch_step(step, window)
                logger.debug(f"Step {i + 1} ({step.event}): {len(cache[cache_key])} users in window")
            out.append(cache[cache_key])
        return out

    def _fetch_step(self, step: FunnelStep, window: TimeRange) -> Occurrences:
        columns = [Event.distinct_id, Event.timestamp]
        if step.properties:
            columns.append(Event.properties)
        query = EventQuery(*columns).event(step.event).within(window).order_by(Event.timestamp)
        occ: Occurrences = defaultdict(list)
        for row in self.store.fetch(query):
            if step.properties and not _matches(row["properties"], step.properties):
                continue
            occ[row["distinct_id"]].append(row["timestamp"])
        return dict(occ)

    def _strict(self, occurrences: list[Occurrences]):
        # chains[i][user] = timestamp at which the user reached step i
        chains: list[Dict[str, datetime]] = [{user: ts[0] for user, ts in occurrences[0].items() if ts}]
        for occ in occurrences[1:]:
            reached: Dict[str, datetime] = {}
            for user, prev_ts in chains[-1].items():
                candidates = occ.get(user)
                if not candidates:
                    continue
                idx = bisect_right(candidates, prev_ts)
                if idx < len(candidates):
                    reached[user] = candidates[idx]
            chains.append(reached)

        counts = [len(c) for c in chains]
        gaps: list[Optional[str]] = [_avg_gap(chains[i + 1], chains[i]) for i in range(len(chains) - 1)] + [None]
        completion = _avg_gap(chains[-1], chains[0])
        return counts, gaps, completion
