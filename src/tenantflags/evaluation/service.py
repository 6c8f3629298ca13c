"""Cache-backed read surface used by the public flag routes."""

from __future__ import annotations

import structlog

from tenantflags.evaluation.bucket import bucket
from tenantflags.evaluation.cache import CachedFlagReader, FlagCache
from tenantflags.evaluation.engine import EvaluationEngine
from tenantflags.schemas import EvaluationDiagnostic, EvaluationResult
from tenantflags.store.base import FlagStore

logger = structlog.get_logger(__name__)


class EvaluationService:
    def __init__(self, store: FlagStore, cache: FlagCache, timeout_seconds: float) -> None:
        self._cache = cache
        self._engine = EvaluationEngine(CachedFlagReader(store, cache), timeout_seconds)
        # Diagnostics read through to the store so admins see post-mutation state.
        self._direct_engine = EvaluationEngine(store, timeout_seconds)

    @property
    def cache(self) -> FlagCache:
        return self._cache

    async def evaluate(self, tenant_id: str, flag_key: str) -> EvaluationResult:
        return await self._engine.evaluate(flag_key, tenant_id)

    async def is_enabled(self, tenant_id: str, flag_key: str) -> bool:
        result = await self._engine.evaluate(flag_key, tenant_id)
        return result.enabled

    async def flags_for_tenant(self, tenant_id: str) -> dict[str, bool]:
        results = await self._engine.evaluate_all(tenant_id)
        return {key: result.enabled for key, result in results.items()}

    async def diagnose(self, tenant_id: str, flag_key: str) -> EvaluationDiagnostic:
        result = await self._direct_engine.evaluate(flag_key, tenant_id)
        return EvaluationDiagnostic(
            flag_key=flag_key,
            tenant_id=tenant_id,
            enabled=result.enabled,
            reason=result.reason,
            bucket=bucket(flag_key, tenant_id),
        )
