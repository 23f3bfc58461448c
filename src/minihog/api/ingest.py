from __future__ import annotations
import os
from typing import Any, List, Optional
from fastapi import APIRouter, Body, Header, Request
from minihog.tasks.ingestion import ingest_events
from minihog.validation.events import IdentifyIn

router = APIRouter(prefix="/ingest", tags=["ingest"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/batch")
def ingest_batch(
    request: Request,
    events: List[Any] = Body(..., embed=True),
    user_agent: Optional[str] = Header(None),
):
    """Accept a batch of raw events; each is validated individually during persistence."""
    settings = request.app.state.settings
    ip_address = _client_ip(request)
    # No broker in tests: run the task body inline against the app's own store
    if (settings.app_env == "test") or (os.getenv("APP_ENV") == "test"):
        result = ingest_events(events, user_agent=user_agent, ip_address=ip_address, service=request.app.state.ingest)
        return {"success": True, "data": {**result, "task_id": None}}
    task = ingest_events.delay(events, user_agent=user_agent, ip_address=ip_address)
    return {"success": True, "data": {"received": len(events), "task_id": task.id}}


@router.post("/identify")
def identify(request: Request, body: IdentifyIn, user_agent: Optional[str] = Header(None)):
    request.app.state.ingest.identify(body, user_agent=user_agent, ip_address=_client_ip(request))
    return {"success": True, "data": {"distinct_id": body.distinct_id}}


@router.get("/stats")
def stats(request: Request):
    return {"success": True, "data": request.app.state.ingest.get_stats()}
