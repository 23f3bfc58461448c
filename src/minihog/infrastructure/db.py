from __future__ import annotations
from pathlib import Path
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Build an engine for one of the stores.

    Engines are created by the composition root (API app, Celery worker, tests) and handed to
    the stores explicitly; nothing in the package holds a module-level connection.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        database = parsed.database
        if not database or database == ":memory:":
            # single shared connection, otherwise every checkout sees an empty database
            return create_engine(url, echo=echo, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        Path(database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def ensure_tables(engine: Engine, tables) -> None:
    Base.metadata.create_all(engine, tables=list(tables))


def healthcheck(engine: Engine) -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
        return True
