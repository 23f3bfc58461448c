from __future__ import annotations
from typing import Optional
from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field
from minihog.flags.service import decision_to_dict, flag_to_dict

router = APIRouter(tags=["flags"])


class FlagCreate(BaseModel):
    key: str = Field(min_length=1, max_length=128, pattern=r"^[a-zA-Z0-9_\-]+$")
    name: str = Field(min_length=1, max_length=256)
    description: Optional[str] = None
    active: bool = True
    rollout_percentage: int = Field(0, ge=0, le=100)


class FlagUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=256)
    description: Optional[str] = None
    active: Optional[bool] = None
    rollout_percentage: Optional[int] = Field(None, ge=0, le=100)


@router.get("/ff")
def evaluate_flag(request: Request, key: str = Query(..., min_length=1), distinct_id: str = Query(..., min_length=1)):
    evaluation = request.app.state.flags.evaluate(key, distinct_id)
    return {"success": True, "data": evaluation.to_dict()}


@router.get("/flags")
def list_flags(request: Request):
    flags = request.app.state.flags.list_flags()
    return {"success": True, "data": [flag_to_dict(f) for f in flags]}


@router.get("/flags/{key}")
def get_flag(request: Request, key: str):
    return {"success": True, "data": flag_to_dict(request.app.state.flags.get_flag(key))}


@router.post("/flags", status_code=201)
def create_flag(request: Request, body: FlagCreate):
    flag = request.app.state.flags.create_flag(**body.model_dump())
    return {"success": True, "data": flag_to_dict(flag)}


@router.patch("/flags/{key}")
def update_flag(request: Request, key: str, body: FlagUpdate):
    flag = request.app.state.flags.update_flag(key, **body.model_dump(exclude_unset=True))
    return {"success": True, "data": flag_to_dict(flag)}


@router.delete("/flags/{key}")
def delete_flag(request: Request, key: str):
    request.app.state.flags.delete_flag(key)
    return {"success": True, "data": {"key": key, "deleted": True}}


@router.get("/flags/{key}/decisions/{distinct_id}")
def get_decision(request: Request, key: str, distinct_id: str):
    service = request.app.state.flags
    service.get_flag(key)
    decision = service.get_decision(key, distinct_id)
    return {"success": True, "data": decision_to_dict(decision) if decision else None}


@router.delete("/flags/{key}/decisions")
def clear_decisions(request: Request, key: str):
    service = request.app.state.flags
    service.get_flag(key)
    return {"success": True, "data": {"key": key, "cleared": service.clear_decisions(key)}}
