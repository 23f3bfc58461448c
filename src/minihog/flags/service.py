"""Feature flag administration and deterministic, sticky evaluation."""
from __future__ import annotations
import logging
from dataclasses import dataclass, asdict
from typing import Any
from minihog.errors import InvalidInput
from minihog.flags.bucketing import CONTROL, TREATMENT, assign_variant, bucket_hash
from minihog.infrastructure.flag_store import FlagStore
from minihog.infrastructure.metrics import FLAG_EVALUATIONS
from minihog.models.tables import FeatureFlag, FlagDecision

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "Flag not found"
REASON_INACTIVE = "Flag is inactive"
REASON_STICKY = "Sticky bucketing"

NON_NULLABLE_FIELDS = ("name", "active", "rollout_percentage")


@dataclass
class FlagEvaluation:
    key: str
    enabled: bool
    variant: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def flag_to_dict(flag: FeatureFlag) -> dict[str, Any]:
    return {
        "key": flag.key,
        "name": flag.name,
        "description": flag.description,
        "active": bool(flag.active),
        "rollout_percentage": flag.rollout_percentage,
        "created_at": flag.created_at.isoformat() if flag.created_at else None,
        "updated_at": flag.updated_at.isoformat() if flag.updated_at else None,
    }


def decision_to_dict(decision: FlagDecision) -> dict[str, Any]:
    return {
        "distinct_id": decision.distinct_id,
        "flag_key": decision.flag_key,
        "variant": decision.variant,
        "hash_value": decision.hash_value,
        "decided_at": decision.decided_at.isoformat() if decision.decided_at else None,
    }


def _check_rollout(rollout_percentage: int | None) -> None:
    if rollout_percentage is not None and not 0 <= rollout_percentage <= 100:
        raise InvalidInput(f"rollout_percentage must be between 0 and 100, got {rollout_percentage}")


class FlagService:
    def __init__(self, store: FlagStore):
        self.store = store

    def list_flags(self) -> list[FeatureFlag]:
        return self.store.list_flags()

    def get_flag(self, key: str) -> FeatureFlag:
        return self.store.get_flag(key)

    def create_flag(self, key: str, name: str, description: str | None = None, active: bool = True, rollout_percentage: int = 0) -> FeatureFlag:
        _check_rollout(rollout_percentage)
        flag = self.store.add_flag(key, name, description=description, active=active, rollout_percentage=rollout_percentage)
        logger.info(f"Created feature flag: {key}")
        return flag

    def update_flag(self, key: str, **changes: Any) -> FeatureFlag:
        _check_rollout(changes.get("rollout_percentage"))
        for field in NON_NULLABLE_FIELDS:
            if field in changes and changes[field] is None:
                raise InvalidInput(f"{field} cannot be null")
        flag = self.store.update_flag(key, changes)
        logger.info(f"Updated feature flag: {key}")
        return flag

    def delete_flag(self, key: str) -> None:
        self.store.delete_flag(key)
        logger.info(f"Deleted feature flag: {key}")

    def get_decision(self, key: str, distinct_id: str) -> FlagDecision | None:
        return self.store.find_decision(key, distinct_id)

    def clear_decisions(self, key: str) -> int:
        removed = self.store.clear_decisions(key)
        logger.info(f"Cleared {removed} decisions for flag: {key}")
        return removed

    def evaluate(self, key: str, distinct_id: str) -> FlagEvaluation:
        """Evaluate ``key`` for ``distinct_id``.

        Once a decision is stored it is returned verbatim on every later call, whatever the
        flag's current rollout percentage. Missing or inactive flags evaluate to control and
        record nothing.
        """
        flag = self.store.find_flag(key)
        if flag is None:
            return self._result(key, False, CONTROL, REASON_NOT_FOUND)
        if not flag.active:
            return self._result(key, False, CONTROL, REASON_INACTIVE)

        existing = self.store.find_decision(key, distinct_id)
        if existing is not None:
            return self._result(key, existing.variant == TREATMENT, existing.variant, REASON_STICKY)

        hash_value = bucket_hash(distinct_id, key)
        enabled, variant = assign_variant(hash_value, flag.rollout_percentage)
        decision, created = self.store.record_decision(key, distinct_id, variant, hash_value)
        if not created:
            return self._result(key, decision.variant == TREATMENT, decision.variant, REASON_STICKY)
        return self._result(key, enabled, variant, f"Bucketed at {hash_value * 100:.2f}%")

    def _result(self, key: str, enabled: bool, variant: str, reason: str) -> FlagEvaluation:
        label = reason if not reason.startswith("Bucketed") else "bucketed"
        FLAG_EVALUATIONS.labels(label).inc()
        return FlagEvaluation(key=key, enabled=enabled, variant=variant, reason=reason)
