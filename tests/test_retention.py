"""Tests for the cohort retention engine."""
from datetime import datetime, timezone

import pytest

from minihog.analytics.retention import format_cohort_name, summarize
from minihog.analytics.schemas import CohortRetention, RetentionPeriod, RetentionQuery
from minihog.errors import InvalidRetentionQuery


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def periods_of(cohort):
    return [(p.period_number, p.users, p.percentage) for p in cohort.periods]


@pytest.fixture
def weekly_events(add_events):
    add_events(
        ("u1", "pageview", utc(2025, 1, 6, 10)),
        ("u2", "pageview", utc(2025, 1, 8, 15)),
        ("u1", "click", utc(2025, 1, 14, 9)),
        ("u3", "pageview", utc(2025, 1, 13, 8)),
        ("u3", "pageview", utc(2025, 1, 20, 9)),
    )


class TestWeeklyRetention:
    """Weekly cohorts anchored on ISO Monday."""

    def test_cohorts_and_periods(self, retention_engine, weekly_events):
        result = retention_engine.calculate_retention(RetentionQuery(period_type="weekly", periods=4))
        first, second = result.cohorts

        assert first.cohort_name == "Week of Jan 6"
        assert first.cohort_start == "2025-01-06"
        assert first.cohort_size == 2
        # the Jan 27 period has not started yet and is omitted
        assert periods_of(first) == [(0, 2, 100.0), (1, 1, 50.0), (2, 0, 0.0)]

        assert second.cohort_start == "2025-01-13"
        assert second.cohort_size == 1
        assert periods_of(second) == [(0, 1, 100.0), (1, 1, 100.0)]

    def test_summary(self, retention_engine, weekly_events):
        summary = retention_engine.calculate_retention(RetentionQuery(periods=4)).summary
        assert summary.total_cohorts == 2
        assert summary.total_users == 3
        assert summary.avg_period1_retention == 75.0
        assert summary.avg_period7_retention is None
        assert summary.avg_period30_retention is None
        assert summary.best_cohort == "Week of Jan 13"
        assert summary.worst_cohort == "Week of Jan 6"

    def test_specific_return_event(self, retention_engine, weekly_events):
        result = retention_engine.calculate_retention(RetentionQuery(return_event="click", periods=4))
        first, second = result.cohorts
        assert periods_of(first) == [(0, 0, 0.0), (1, 1, 50.0), (2, 0, 0.0)]
        assert periods_of(second) == [(0, 0, 0.0), (1, 0, 0.0)]

    def test_metadata(self, retention_engine, weekly_events):
        metadata = retention_engine.calculate_retention(RetentionQuery(periods=4, date_range="30d")).metadata
        assert metadata.period_type == "weekly"
        assert metadata.periods_analyzed == 4
        assert metadata.cohort_type == "first_event"
        assert metadata.date_to == "2025-01-20T12:00:00Z"
        assert metadata.date_from == "2024-12-21T12:00:00Z"


class TestDailyAndMonthlyRetention:
    """Other period types."""

    def test_daily(self, retention_engine, add_events):
        add_events(
            ("a", "signup", utc(2025, 1, 18, 23)),
            ("a", "open", utc(2025, 1, 19, 1)),
            ("b", "signup", utc(2025, 1, 18, 5)),
        )
        result = retention_engine.calculate_retention(
            RetentionQuery(cohort_event="signup", period_type="daily", periods=5)
        )
        (cohort,) = result.cohorts
        assert cohort.cohort_name == "Jan 18, 2025"
        # day boundaries are measured from the cohort start, not the user's first event
        assert periods_of(cohort) == [(0, 2, 100.0), (1, 1, 50.0), (2, 0, 0.0)]

    def test_monthly_uses_fixed_thirty_day_periods(self, retention_engine, add_events):
        add_events(
            ("late", "pageview", utc(2025, 1, 31, 10)),
            ("early", "pageview", utc(2025, 1, 2, 10)),
        )
        query = RetentionQuery(period_type="monthly", periods=3, **{"from": utc(2025, 1, 1), "to": utc(2025, 2, 15)})
        (cohort,) = retention_engine.calculate_retention(query).cohorts
        assert cohort.cohort_name == "January 2025"
        assert cohort.cohort_start == "2025-01-01"
        # Jan 31 is 30 days after Jan 1, so it falls into period 1
        assert periods_of(cohort) == [(0, 1, 50.0), (1, 1, 50.0)]


class TestRetentionInvariants:
    """Properties that hold for any data."""

    def test_disjoint_cohorts(self, retention_engine, add_events):
        rows = []
        for i in range(20):
            rows.append((f"u{i}", "pageview", utc(2025, 1, 1 + i % 15, 12)))
            rows.append((f"u{i}", "pageview", utc(2025, 1, 16, 12)))
        add_events(*rows)
        result = retention_engine.calculate_retention(RetentionQuery(period_type="daily", periods=10))
        assert sum(c.cohort_size for c in result.cohorts) == result.summary.total_users == 20
        assert len({c.cohort_start for c in result.cohorts}) == len(result.cohorts)
        for cohort in result.cohorts:
            for period in cohort.periods:
                assert 0.0 <= period.percentage <= 100.0
            assert cohort.periods[0].percentage == 100.0

    def test_empty_window(self, retention_engine):
        result = retention_engine.calculate_retention(RetentionQuery())
        assert result.cohorts == []
        assert result.summary.model_dump() == {
            "total_cohorts": 0,
            "total_users": 0,
            "avg_period1_retention": None,
            "avg_period7_retention": None,
            "avg_period30_retention": None,
            "best_cohort": None,
            "worst_cohort": None,
        }

    @pytest.mark.parametrize("periods", [0, 53, -1])
    def test_periods_out_of_range(self, retention_engine, periods):
        with pytest.raises(InvalidRetentionQuery):
            retention_engine.calculate_retention(RetentionQuery(periods=periods))

    def test_unknown_period_type(self, retention_engine):
        with pytest.raises(InvalidRetentionQuery):
            retention_engine.calculate_retention(RetentionQuery(period_type="yearly"))


class TestSummarize:
    """Summary ranking and averages."""

    def _cohort(self, name, percentages):
        return CohortRetention(
            cohort_name=name,
            cohort_start="2025-01-01",
            cohort_size=10,
            periods=[RetentionPeriod(period_number=n, users=int(p / 10), percentage=p) for n, p in enumerate(percentages)],
        )

    def test_ranks_by_period_seven(self):
        strong = self._cohort("strong", [100, 10, 10, 10, 10, 10, 10, 60])
        weak = self._cohort("weak", [100, 90, 90, 90, 90, 90, 90, 20])
        summary = summarize([weak, strong])
        assert summary.best_cohort == "strong"
        assert summary.worst_cohort == "weak"
        assert summary.avg_period7_retention == 40.0
        assert summary.avg_period1_retention == 50.0

    def test_missing_periods_are_excluded_from_averages(self):
        summary = summarize([self._cohort("long", [100, 40]), self._cohort("short", [100])])
        assert summary.avg_period1_retention == 40.0


def test_format_cohort_name():
    import pandas as pd
    start = pd.Timestamp("2025-03-03")
    assert format_cohort_name(start, "daily") == "Mar 3, 2025"
    assert format_cohort_name(start, "weekly") == "Week of Mar 3"
    assert format_cohort_name(start, "monthly") == "March 2025"
