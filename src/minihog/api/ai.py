from __future__ import annotations
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

router = APIRouter(prefix="/ai", tags=["ai"])


class QuestionIn(BaseModel):
    question: str = Field(min_length=1)


@router.post("/query")
def query(request: Request, body: QuestionIn):
    return {"success": True, "data": request.app.state.nl_query.execute(body.question)}


@router.post("/generate-sql")
def generate_sql(request: Request, body: QuestionIn):
    return {"success": True, "data": {"question": body.question, "sql": request.app.state.nl_query.generate_sql(body.question)}}
