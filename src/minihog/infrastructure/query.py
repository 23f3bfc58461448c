"""Composable, parameter-bound query builder over the ``events`` table.

Conditional clauses are appended only when the caller supplies a value, and every value goes
through SQLAlchemy bind parameters; raw SQL strings are never concatenated.
"""
from __future__ import annotations
import copy
from datetime import datetime
from typing import Iterable
from sqlalchemy import select, func, Select
from sqlalchemy.sql.elements import ColumnElement
from minihog.models.tables import Event
from minihog.timerange import TimeRange, to_storage


class EventQuery:
    def __init__(self, *columns):
        self._columns = columns or tuple(Event.__table__.c)
        self._conditions: list[ColumnElement] = []
        self._group_by: list = []
        self._order_by: list = []
        self._limit: int | None = None
        self._offset: int | None = None

    def copy(self) -> "EventQuery":
        clone = copy.copy(self)
        clone._conditions = list(self._conditions)
        clone._group_by = list(self._group_by)
        clone._order_by = list(self._order_by)
        return clone

    def event(self, name: str | None) -> "EventQuery":
        if name:
            self._conditions.append(Event.event == name)
        return self

    def distinct_id(self, distinct_id: str | None) -> "EventQuery":
        if distinct_id:
            self._conditions.append(Event.distinct_id == distinct_id)
        return self

    def distinct_ids(self, ids: Iterable[str]) -> "EventQuery":
        self._conditions.append(Event.distinct_id.in_(list(ids)))
        return self

    def since(self, instant: datetime | None) -> "EventQuery":
        if instant is not None:
            self._conditions.append(Event.timestamp >= to_storage(instant))
        return self

    def until(self, instant: datetime | None) -> "EventQuery":
        if instant is not None:
            self._conditions.append(Event.timestamp <= to_storage(instant))
        return self

    def within(self, window: TimeRange | None) -> "EventQuery":
        """Inclusive on both ends, matching the ``[from, to]`` window semantics."""
        if window is not None:
            self.since(window.start).until(window.end)
        return self

    def received_since(self, instant: datetime) -> "EventQuery":
        self._conditions.append(Event.received_at >= to_storage(instant))
        return self

    def group_by(self, *clauses) -> "EventQuery":
        self._group_by.extend(clauses)
        return self

    def order_by(self, *clauses) -> "EventQuery":
        self._order_by.extend(clauses)
        return self

    def limit(self, limit: int | None) -> "EventQuery":
        self._limit = limit
        return self

    def offset(self, offset: int | None) -> "EventQuery":
        self._offset = offset
        return self

    def build(self) -> Select:
        stmt = select(*self._columns)
        if self._conditions:
            stmt = stmt.where(*self._conditions)
        if self._group_by:
            stmt = stmt.group_by(*self._group_by)
        if self._order_by:
            stmt = stmt.order_by(*self._order_by)
        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        if self._offset:
            stmt = stmt.offset(self._offset)
        return stmt


def count_distinct_users() -> ColumnElement:
    return func.count(func.distinct(Event.distinct_id))
