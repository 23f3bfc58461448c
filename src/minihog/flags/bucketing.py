from __future__ import annotations
import hashlib

TREATMENT = "treatment"
CONTROL = "control"


def bucket_hash(distinct_id: str, flag_key: str) -> float:
    """Stable hash of ``distinct_id:flag_key`` mapped uniformly into [0, 1).

    Uses the first 32 bits of the MD5 digest, so the value is identical across processes and
    restarts (no per-process seed).
    """
    digest = hashlib.md5(f"{distinct_id}:{flag_key}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16) / 2**32


def assign_variant(hash_value: float, rollout_percentage: int) -> tuple[bool, str]:
    enabled = hash_value * 100 < rollout_percentage
    return enabled, TREATMENT if enabled else CONTROL
