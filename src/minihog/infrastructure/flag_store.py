"""Metadata store for feature flags and their sticky decisions."""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any
from sqlalchemy import select, delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from minihog.errors import FlagAlreadyExists, FlagNotFound, StoreUnavailable
from minihog.infrastructure.db import ensure_tables, healthcheck, make_session_factory
from minihog.infrastructure.metrics import STORE_FAILURES, FLAG_DECISION_RACES
from minihog.models.tables import FeatureFlag, FlagDecision, METADATA_TABLES
from minihog.timerange import utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "active", "rollout_percentage")


class FlagStore:
    name = "metadata"

    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessions = make_session_factory(engine)

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            STORE_FAILURES.labels(self.name, operation).inc()
            logger.error(f"Flag store {operation} failed: {e}")
            raise StoreUnavailable(f"metadata store {operation} failed") from e

    def create_schema(self) -> None:
        with self._guard("create_schema"):
            ensure_tables(self.engine, METADATA_TABLES)

    # -- flags -------------------------------------------------------------

    def list_flags(self) -> list[FeatureFlag]:
        with self._guard("list_flags"), self._sessions() as session:
            return list(session.scalars(select(FeatureFlag).order_by(FeatureFlag.key)))

    def find_flag(self, key: str) -> FeatureFlag | None:
        with self._guard("find_flag"), self._sessions() as session:
            return session.scalars(select(FeatureFlag).where(FeatureFlag.key == key).limit(1)).first()

    def get_flag(self, key: str) -> FeatureFlag:
        flag = self.find_flag(key)
        if flag is None:
            raise FlagNotFound(key)
        return flag

    def add_flag(self, key: str, name: str, description: str | None = None, active: bool = True, rollout_percentage: int = 0) -> FeatureFlag:
        flag = FeatureFlag(key=key, name=name, description=description, active=active, rollout_percentage=rollout_percentage)
        try:
            with self._sessions.begin() as session:
                session.add(flag)
        except IntegrityError as e:
            raise FlagAlreadyExists(key) from e
        except SQLAlchemyError as e:
            STORE_FAILURES.labels(self.name, "add_flag").inc()
            raise StoreUnavailable("metadata store add_flag failed") from e
        return flag

    def update_flag(self, key: str, changes: dict[str, Any]) -> FeatureFlag:
        """Apply every updatable key present in ``changes``; a present ``None`` is written as null."""
        with self._guard("update_flag"), self._sessions.begin() as session:
            flag = session.scalars(select(FeatureFlag).where(FeatureFlag.key == key).limit(1)).first()
            if flag is None:
                raise FlagNotFound(key)
            for field in UPDATABLE_FIELDS:
                if field in changes:
                    setattr(flag, field, changes[field])
            flag.updated_at = utcnow()
        return flag

    def delete_flag(self, key: str) -> None:
        with self._guard("delete_flag"), self._sessions.begin() as session:
            result = session.execute(delete(FeatureFlag).where(FeatureFlag.key == key))
            if not result.rowcount:
                raise FlagNotFound(key)
            session.execute(delete(FlagDecision).where(FlagDecision.flag_key == key))

    # -- decisions ---------------------------------------------------------

    def find_decision(self, flag_key: str, distinct_id: str) -> FlagDecision | None:
        with self._guard("find_decision"), self._sessions() as session:
            stmt = select(FlagDecision).where(FlagDecision.distinct_id == distinct_id, FlagDecision.flag_key == flag_key).limit(1)
            return session.scalars(stmt).first()

    def record_decision(self, flag_key: str, distinct_id: str, variant: str, hash_value: float) -> tuple[FlagDecision, bool]:
        """Insert the decision, or return the one a concurrent evaluation stored first.

        Returns ``(decision, created)``. The unique ``(distinct_id, flag_key)`` index is the
        arbiter: on a duplicate insert the existing row is fetched and returned unchanged.
        """
        decision = FlagDecision(distinct_id=distinct_id, flag_key=flag_key, variant=variant, hash_value=hash_value)
        try:
            with self._sessions.begin() as session:
                session.add(decision)
            return decision, True
        except IntegrityError:
            FLAG_DECISION_RACES.inc()
            logger.warning(f"Decision for {distinct_id}/{flag_key} already recorded; using stored decision")
        except SQLAlchemyError as e:
            STORE_FAILURES.labels(self.name, "record_decision").inc()
            raise StoreUnavailable("metadata store record_decision failed") from e
        existing = self.find_decision(flag_key, distinct_id)
        if existing is None:
            raise StoreUnavailable(f"decision for {distinct_id}/{flag_key} conflicted but could not be read back")
        return existing, False

    def clear_decisions(self, flag_key: str) -> int:
        with self._guard("clear_decisions"), self._sessions.begin() as session:
            return session.execute(delete(FlagDecision).where(FlagDecision.flag_key == flag_key)).rowcount or 0

    def healthcheck(self) -> bool:
        try:
            return healthcheck(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Metadata store health check failed: {e}")
            return False
