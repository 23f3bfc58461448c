from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, JSON, Float, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column
from minihog.infrastructure.db import Base
from minihog.timerange import utcnow


class Event(Base):
    """Append-only behavioral fact. Timestamps are stored as naive UTC."""
    __tablename__ = "events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event: Mapped[str] = mapped_column(String(256), index=True)
    distinct_id: Mapped[str] = mapped_column(String(128), index=True)
    anonymous_id: Mapped[str | None] = mapped_column(String(128), default=None)
    timestamp: Mapped[datetime] = mapped_column(DateTime, index=True)
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    properties: Mapped[dict] = mapped_column(JSON, default=dict)
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    project_id: Mapped[str] = mapped_column(String(64), default="default", index=True)
    session_id: Mapped[str | None] = mapped_column(String(128), default=None, index=True)

    __table_args__ = (
        Index("ix_events_event_ts", "event", "timestamp"),
        Index("ix_events_distinct_ts", "distinct_id", "timestamp"),
    )


class FeatureFlag(Base):
    __tablename__ = "feature_flags"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(256))
    description: Mapped[str | None] = mapped_column(String(1024), default=None)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    rollout_percentage: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class FlagDecision(Base):
    """Sticky bucketing record; one row per (distinct_id, flag_key), never updated."""
    __tablename__ = "flag_decisions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    distinct_id: Mapped[str] = mapped_column(String(128), index=True)
    flag_key: Mapped[str] = mapped_column(String(128), index=True)
    variant: Mapped[str] = mapped_column(String(32))
    hash_value: Mapped[float] = mapped_column(Float)
    decided_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ux_flag_decision_user_flag", "distinct_id", "flag_key", unique=True),
    )


EVENT_TABLES = (Event.__table__,)
METADATA_TABLES = (FeatureFlag.__table__, FlagDecision.__table__)
