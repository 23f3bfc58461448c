"""Resolution of relative/absolute period expressions into concrete ``[start, end]`` instants.

Every analytical component resolves its window through :func:`resolve_time_range` so that
``7d`` means the same thing for funnels, retention and insights. Calendar units (days, weeks,
months, years) are subtracted on the wall clock of the instant's own timezone via pandas
``DateOffset``, so month ends clamp (Mar 31 - 1m = Feb 28/29) and DST shifts are honoured.
Hours are absolute durations.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
import pandas as pd
from minihog.errors import InvalidPeriodFormat, InvalidTimeRange

PERIOD_PATTERN = re.compile(r"^(\d+)([hdwmy])$")


def utcnow() -> datetime:
    """Naive UTC now, the storage representation for instants."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive input is taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)


def parse_instant(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return pd.Timestamp(value).to_pydatetime()
    except (ValueError, TypeError) as e:
        raise InvalidTimeRange(f"Invalid instant: {value}") from e


def isoformat(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


def parse_period(period: str) -> tuple[int, str]:
    match = PERIOD_PATTERN.match(period or "")
    if not match:
        raise InvalidPeriodFormat(period)
    return int(match.group(1)), match.group(2)


def subtract_period(instant: datetime, period: str) -> datetime:
    value, unit = parse_period(period)
    try:
        ts = pd.Timestamp(instant)
        if unit == "h":
            shifted = ts - pd.Timedelta(hours=value)
        elif unit == "d":
            shifted = ts - pd.DateOffset(days=value)
        elif unit == "w":
            shifted = ts - pd.DateOffset(weeks=value)
        elif unit == "m":
            shifted = ts - pd.DateOffset(months=value)
        else:
            shifted = ts - pd.DateOffset(years=value)
        return shifted.to_pydatetime()
    except (ValueError, OverflowError) as e:
        # OutOfBoundsDatetime/OutOfBoundsTimedelta are ValueErrors
        raise InvalidTimeRange(f"Period {period} is out of range") from e


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    @property
    def start_storage(self) -> datetime:
        return to_storage(self.start)

    @property
    def end_storage(self) -> datetime:
        return to_storage(self.end)

    def as_dict(self) -> dict[str, str]:
        return {"from": isoformat(self.start), "to": isoformat(self.end)}


def resolve_time_range(
    from_: str | datetime | None = None,
    to: str | datetime | None = None,
    period: str | None = None,
    default_period: str = "7d",
    now: Callable[[], datetime] | None = None,
) -> TimeRange:
    """Resolve the window used by a query.

    An explicit ``from_`` wins over ``period``; ``to`` defaults to now. Without ``from_`` the
    start is ``to`` minus ``period`` (or ``default_period`` when no period is given).
    Raises ``InvalidPeriodFormat`` for tokens that do not match ``^(\\d+)([hdwmy])$``.
    """
    end = parse_instant(to)
    if end is None:
        end = now() if now else datetime.now(timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    start = parse_instant(from_)
    if start is None:
        start = subtract_period(end, period or default_period)
    elif start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    start, end = as_utc(start), as_utc(end)
    if start > end:
        raise InvalidTimeRange(f"from ({isoformat(start)}) is after to ({isoformat(end)})")
    return TimeRange(start=start, end=end)
