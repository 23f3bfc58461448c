from __future__ import annotations
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Query, Request
from minihog.analytics.schemas import FunnelQuery, RetentionQuery

router = APIRouter(prefix="/insights", tags=["insights"])


def _ok(data) -> dict:
    return {"success": True, "data": data}


@router.post("/funnel")
def calculate_funnel(request: Request, body: FunnelQuery):
    result = request.app.state.funnels.calculate_funnel(body)
    return _ok(result.model_dump())


@router.post("/retention")
def calculate_retention(request: Request, body: RetentionQuery):
    result = request.app.state.retention.calculate_retention(body)
    return _ok(result.model_dump())


@router.get("/trends")
def get_trends(
    request: Request,
    event_name: Optional[str] = None,
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = None,
    period: Optional[str] = None,
    interval: str = "day",
):
    result = request.app.state.insights.get_trends(event_name=event_name, from_=from_, to=to, period=period, interval=interval)
    return _ok(result.model_dump())


@router.get("/active-users")
def get_active_users(request: Request, period: str = "7d"):
    return _ok(request.app.state.insights.get_active_users(period=period).model_dump())


@router.get("/top-events")
def get_top_events(
    request: Request,
    limit: int = Query(10, ge=1, le=1000),
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = None,
):
    return _ok(request.app.state.insights.get_top_events(limit=limit, from_=from_, to=to).model_dump())


@router.get("/overview")
def get_overview(request: Request):
    insights = request.app.state.insights
    return _ok({
        "active_users": insights.get_active_users(period="7d").model_dump(),
        "top_events": insights.get_top_events(limit=5).model_dump()["events"],
    })


@router.get("/events")
def get_events(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=1000),
    event_name: Optional[str] = None,
    distinct_id: Optional[str] = None,
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = None,
    period: Optional[str] = None,
):
    result = request.app.state.insights.get_events(
        page=page, limit=limit, event_name=event_name, distinct_id=distinct_id, from_=from_, to=to, period=period,
    )
    return _ok(result.model_dump())


@router.get("/users/{distinct_id}/timeline")
def get_user_timeline(request: Request, distinct_id: str, limit: int = Query(100, ge=1, le=1000)):
    return _ok(request.app.state.insights.get_user_timeline(distinct_id, limit=limit).model_dump())
