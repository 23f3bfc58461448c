from __future__ import annotations
from pydantic import BaseModel, Field, ValidationError
from datetime import datetime
from typing import Any, Dict, Optional


class EventIn(BaseModel):
    event: str = Field(min_length=1, max_length=256)
    distinct_id: str = Field(min_length=1, max_length=128)
    anonymous_id: Optional[str] = Field(None, max_length=128)
    timestamp: Optional[datetime] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    project_id: Optional[str] = Field(None, max_length=64)
    session_id: Optional[str] = Field(None, max_length=128)


class IdentifyIn(BaseModel):
    distinct_id: str = Field(min_length=1, max_length=128)
    anonymous_id: Optional[str] = Field(None, max_length=128)
    traits: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


def validate_event(evt: dict, max_properties: int = 100) -> tuple[EventIn | None, str | None]:
    try:
        model = EventIn(**evt)
    except ValidationError as ve:
        err = ve.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", ())) or "event"
        return None, f"validation_error:{field}"
    except TypeError:
        return None, "validation_error:not_an_object"
    # Additional lightweight limits: props size
    if len(model.properties) > max_properties:
        return None, "too_many_properties"
    return model, None
