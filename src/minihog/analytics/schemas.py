from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class _Query(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[datetime] = Field(None, alias="from")
    to: Optional[datetime] = None


# -- funnels -----------------------------------------------------------------

class FunnelStep(BaseModel):
    event: str = Field(min_length=1)
    name: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None

    @property
    def label(self) -> str:
        return self.name or self.event


class FunnelQuery(_Query):
    steps: List[FunnelStep]
    time_window: str = "7d"
    step_order: Literal["strict", "any_order"] = "strict"


class FunnelStepResult(BaseModel):
    step: int
    name: str
    event: str
    users_count: int
    completion_rate: float
    drop_off_rate: float
    avg_time_to_next: Optional[str] = None


class FunnelResponse(BaseModel):
    steps: List[FunnelStepResult]
    total_conversion_rate: float
    total_users_entered: int
    total_users_converted: int
    average_completion_time: Optional[str] = None
    time_window: str


# -- retention ---------------------------------------------------------------

class RetentionQuery(_Query):
    cohort_type: str = "first_event"
    cohort_event: str = "pageview"
    return_event: str = "any"
    period_type: str = "weekly"
    periods: int = 12
    date_range: Optional[str] = None


class RetentionPeriod(BaseModel):
    period_number: int
    users: int
    percentage: float


class CohortRetention(BaseModel):
    cohort_name: str
    cohort_start: str
    cohort_size: int
    periods: List[RetentionPeriod]


class RetentionSummary(BaseModel):
    total_cohorts: int = 0
    total_users: int = 0
    avg_period1_retention: Optional[float] = None
    avg_period7_retention: Optional[float] = None
    avg_period30_retention: Optional[float] = None
    best_cohort: Optional[str] = None
    worst_cohort: Optional[str] = None


class RetentionMetadata(BaseModel):
    cohort_type: str
    period_type: str
    periods_analyzed: int
    date_from: str
    date_to: str


class RetentionResponse(BaseModel):
    cohorts: List[CohortRetention]
    summary: RetentionSummary
    metadata: RetentionMetadata


# -- insights ----------------------------------------------------------------

class TimeSeriesPoint(BaseModel):
    timestamp: str
    count: int


class TrendsResponse(BaseModel):
    event_name: Optional[str] = None
    period: str
    interval: str
    series: List[TimeSeriesPoint]
    total: int


class ActiveUsersResponse(BaseModel):
    dau: int
    wau: int
    mau: int
    period: str
    calculated_at: str


class TopEvent(BaseModel):
    event: str
    count: int
    percentage: float


class TopEventsResponse(BaseModel):
    events: List[TopEvent]
    total_events: int
    period: Optional[str] = None


class EventRecordOut(BaseModel):
    timestamp: str
    event: str
    distinct_id: str
    anonymous_id: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None


class EventsListResponse(BaseModel):
    events: List[EventRecordOut]
    total: int
    page: int
    limit: int
    total_pages: int


class TimelineEvent(BaseModel):
    timestamp: str
    event: str
    properties: Dict[str, Any] = Field(default_factory=dict)


class UserTimelineResponse(BaseModel):
    distinct_id: str
    events: List[TimelineEvent]
    total: int
