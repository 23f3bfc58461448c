from __future__ import annotations
import logging
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.engine import Engine
from minihog.ai.nl_query import ChatCompletionSqlGenerator, NaturalLanguageQueryService
from minihog.analytics import FunnelEngine, InsightsService, RetentionEngine
from minihog.config import Settings, get_settings
from minihog.errors import (
    AnalyticsError,
    FlagAlreadyExists,
    FlagNotFound,
    InvalidInput,
    StoreUnavailable,
    TextGenerationFailed,
)
from minihog.flags.service import FlagService
from minihog.infrastructure.celery_app import celery_app  # noqa: F401  (binds .delay() to the Redis broker)
from minihog.infrastructure.db import create_db_engine
from minihog.infrastructure.event_store import EventStore
from minihog.infrastructure.flag_store import FlagStore
from minihog.infrastructure.metrics import registry
from minihog.ingest.service import IngestService
from minihog.api import ai, flags, ingest, insights

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (InvalidInput, 400),
    (FlagNotFound, 404),
    (FlagAlreadyExists, 409),
    (TextGenerationFailed, 502),
    (StoreUnavailable, 500),
)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


async def analytics_error_handler(request: Request, exc: AnalyticsError):
    for exc_type, status_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            break
    else:
        status_code = 500
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc}")
    return _error(status_code, str(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return _error(400, "Validation failed", details=errors)


def create_app(settings: Settings | None = None, events_engine: Engine | None = None, metadata_engine: Engine | None = None) -> FastAPI:
    """Composition root: build engines, stores and services and hang them on ``app.state``."""
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    events = EventStore(events_engine or create_db_engine(settings.events_database_url), chunk_size=settings.query_in_chunk_size)
    metadata = FlagStore(metadata_engine or create_db_engine(settings.metadata_database_url))
    events.create_schema()
    metadata.create_schema()

    app = FastAPI(title="minihog analytics API", version="0.1.0")
    app.state.settings = settings
    app.state.events = events
    app.state.metadata = metadata
    app.state.funnels = FunnelEngine(events, default_window=settings.default_funnel_window)
    app.state.retention = RetentionEngine(events, default_range=settings.default_retention_range)
    app.state.insights = InsightsService(events, default_period=settings.default_insights_period)
    app.state.flags = FlagService(metadata)
    app.state.ingest = IngestService(events, max_properties=settings.max_event_properties, max_batch=settings.ingest_max_batch)
    completions = ChatCompletionSqlGenerator(
        settings.nl_query_api_url,
        settings.nl_query_api_key,
        settings.nl_query_model,
        timeout=settings.nl_query_timeout_seconds,
    )
    app.state.nl_query = NaturalLanguageQueryService(
        events,
        completions,
        max_sql_length=settings.nl_query_max_sql_length,
        max_question_length=settings.nl_query_max_question_length,
        summarizer=completions.summarize,
    )

    app.add_exception_handler(AnalyticsError, analytics_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    for module in (insights, flags, ingest, ai):
        app.include_router(module.router, prefix="/api")

    @app.get("/health")
    def health():
        stores = {"events": events.healthcheck(), "metadata": metadata.healthcheck()}
        ok = all(stores.values())
        return JSONResponse(status_code=200 if ok else 503, content={"success": ok, "data": {"status": "ok" if ok else "degraded", "stores": stores}})

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    logger.info(f"API ready (environment={settings.environment}, app_env={settings.app_env})")
    return app
