"""Deterministic rollout bucketing.

A tenant's bucket for a flag depends only on the flag key and the tenant id,
never on the rollout percentage, the clock or process state. Raising a
percentage therefore only ever adds tenants to a rollout.
"""

from __future__ import annotations

import hashlib

BUCKET_COUNT = 100


def bucket(flag_key: str, tenant_id: str) -> int:
    """Return a stable bucket in ``[0, 100)`` for *flag_key* and *tenant_id*."""
    raw = f"{flag_key}:{tenant_id}".encode("utf-8")
    digest = hashlib.sha256(raw).hexdigest()
    return int(digest[:8], 16) % BUCKET_COUNT


def in_rollout(flag_key: str, tenant_id: str, percentage: int) -> bool:
    return bucket(flag_key, tenant_id) < percentage
