"""Per-tenant flag resolution.

Precedence, highest first: missing flag, archived, killed, tenant override,
global switch off, full rollout, zero rollout, hash bucket. Evaluation never
raises: store failures and timeouts resolve to ``enabled=False`` with reason
``store_error``.
"""

from __future__ import annotations

import asyncio
import time
from typing import assert_never

import structlog

from tenantflags.evaluation.bucket import bucket
from tenantflags.observability.metrics import EVALUATIONS_TOTAL, STORE_READ_SECONDS
from tenantflags.schemas import (
    EvaluationReason,
    EvaluationResult,
    FeatureFlag,
    FeatureFlagOverride,
    FlagStatus,
)
from tenantflags.store.base import FlagReader

logger = structlog.get_logger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 0.25

NOT_FOUND = EvaluationResult(enabled=False, reason=EvaluationReason.NOT_FOUND)
STORE_ERROR = EvaluationResult(enabled=False, reason=EvaluationReason.STORE_ERROR)


def resolve(
    flag: FeatureFlag | None,
    override: FeatureFlagOverride | None,
    tenant_id: str,
) -> EvaluationResult:
    """Pure precedence resolution over already-loaded state."""
    if flag is None:
        return NOT_FOUND

    match flag.status:
        case FlagStatus.ARCHIVED:
            return EvaluationResult(enabled=False, reason=EvaluationReason.ARCHIVED)
        case FlagStatus.KILLED:
            return EvaluationResult(enabled=False, reason=EvaluationReason.KILLED)
        case FlagStatus.ACTIVE | FlagStatus.ROLLOUT:
            pass
        case _:
            assert_never(flag.status)

    if override is not None:
        return EvaluationResult(enabled=override.is_enabled, reason=EvaluationReason.OVERRIDE)
    if not flag.is_enabled:
        return EvaluationResult(enabled=False, reason=EvaluationReason.DISABLED)
    if flag.rollout_percentage >= 100:
        return EvaluationResult(enabled=True, reason=EvaluationReason.FULL_ROLLOUT)
    if flag.rollout_percentage <= 0:
        return EvaluationResult(enabled=False, reason=EvaluationReason.NO_ROLLOUT)
    return EvaluationResult(
        enabled=bucket(flag.key, tenant_id) < flag.rollout_percentage,
        reason=EvaluationReason.ROLLOUT,
    )


def needs_override(flag: FeatureFlag | None) -> bool:
    """Whether the override lookup can change the outcome for *flag*."""
    if flag is None:
        return False
    match flag.status:
        case FlagStatus.ARCHIVED | FlagStatus.KILLED:
            return False
        case FlagStatus.ACTIVE | FlagStatus.ROLLOUT:
            return True
        case _:
            assert_never(flag.status)


class EvaluationEngine:
    """Resolve flags for tenants against a :class:`FlagReader`.

    Parameters
    ----------
    reader:
        Store or cached reader serving flag and override rows.
    timeout_seconds:
        Upper bound for the store reads of one evaluation.
    """

    def __init__(self, reader: FlagReader, timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS) -> None:
        self._reader = reader
        self._timeout = timeout_seconds

    async def _load(
        self, flag_key: str, tenant_id: str
    ) -> tuple[FeatureFlag | None, FeatureFlagOverride | None]:
        flag = await self._reader.get_flag_by_key(flag_key)
        if not needs_override(flag):
            return flag, None
        override = await self._reader.get_override(flag.id, tenant_id)  # type: ignore[union-attr]
        return flag, override

    async def evaluate(self, flag_key: str, tenant_id: str) -> EvaluationResult:
        start = time.perf_counter()
        try:
            flag, override = await asyncio.wait_for(
                self._load(flag_key, tenant_id), timeout=self._timeout
            )
            result = resolve(flag, override, tenant_id)
        except TimeoutError:
            logger.warning(
                "flag_evaluation_timeout",
                flag_key=flag_key,
                tenant_id=tenant_id,
                timeout_s=self._timeout,
            )
            result = STORE_ERROR
        except Exception as exc:
            logger.warning(
                "flag_evaluation_failed",
                flag_key=flag_key,
                tenant_id=tenant_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            result = STORE_ERROR
        finally:
            STORE_READ_SECONDS.observe(time.perf_counter() - start)

        EVALUATIONS_TOTAL.labels(reason=result.reason.value).inc()
        return result

    async def _load_all(
        self, tenant_id: str
    ) -> tuple[list[FeatureFlag], dict[str, FeatureFlagOverride]]:
        flags = await self._reader.list_flags(include_archived=False)
        overrides = await self._reader.list_tenant_overrides(tenant_id)
        return flags, {o.flag_id: o for o in overrides}

    async def evaluate_all(self, tenant_id: str) -> dict[str, EvaluationResult]:
        """Evaluate every non-archived flag for *tenant_id*.

        Returns an empty mapping when the store cannot be read, so callers
        treat every flag as off.
        """
        try:
            flags, overrides = await asyncio.wait_for(
                self._load_all(tenant_id), timeout=self._timeout
            )
        except TimeoutError:
            logger.warning("flag_bulk_evaluation_timeout", tenant_id=tenant_id, timeout_s=self._timeout)
            EVALUATIONS_TOTAL.labels(reason=EvaluationReason.STORE_ERROR.value).inc()
            return {}
        except Exception as exc:
            logger.warning(
                "flag_bulk_evaluation_failed",
                tenant_id=tenant_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            EVALUATIONS_TOTAL.labels(reason=EvaluationReason.STORE_ERROR.value).inc()
            return {}

        results: dict[str, EvaluationResult] = {}
        for flag in flags:
            result = resolve(flag, overrides.get(flag.id), tenant_id)
            EVALUATIONS_TOTAL.labels(reason=result.reason.value).inc()
            results[flag.key] = result
        return results
