"""Per-tenant flag overrides."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from tenantflags.admin.history import HistoryRecorder
from tenantflags.directory.tenants import TenantDirectory
from tenantflags.errors import InvalidTransitionError, NotFoundError, ValidationError
from tenantflags.schemas import (
    ChangeType,
    FeatureFlag,
    FeatureFlagOverride,
    FlagStatus,
    OverrideView,
)
from tenantflags.store.base import FlagStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OverrideFilter:
    enabled: bool | None = None
    tenant_query: str | None = None

    def matches(self, override: FeatureFlagOverride) -> bool:
        if self.enabled is not None and override.is_enabled is not self.enabled:
            return False
        if self.tenant_query and self.tenant_query.lower() not in override.tenant_id.lower():
            return False
        return True


class OverrideManager:
    def __init__(
        self,
        store: FlagStore,
        history: HistoryRecorder,
        directory: TenantDirectory,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._store = store
        self._history = history
        self._directory = directory
        self._on_change = on_change

    async def _require_flag(self, flag_id: str, *, writable: bool = False) -> FeatureFlag:
        flag = await self._store.get_flag(flag_id)
        if flag is None:
            raise NotFoundError(f"Feature flag not found: {flag_id}", details={"flag_id": flag_id})
        if writable and flag.status is FlagStatus.ARCHIVED:
            raise InvalidTransitionError(
                "Overrides of an archived flag cannot be changed",
                details={"flag_id": flag_id, "status": flag.status.value},
            )
        return flag

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    async def set_override(
        self,
        flag_id: str,
        tenant_id: str,
        enabled: bool,
        actor: str,
        reason: str | None = None,
    ) -> FeatureFlagOverride:
        if not tenant_id.strip():
            raise ValidationError("tenantId must not be empty")
        await self._require_flag(flag_id, writable=True)

        stored, previous = await self._store.upsert_override(
            FeatureFlagOverride(
                flag_id=flag_id,
                tenant_id=tenant_id,
                is_enabled=enabled,
                reason=reason,
                created_by=actor,
            )
        )
        await self._history.record(
            flag_id,
            ChangeType.OVERRIDE_ADDED,
            actor,
            before=previous.state() if previous is not None else None,
            after=stored.state(),
            reason=reason,
        )
        logger.info(
            "override_set",
            flag_id=flag_id,
            tenant_id=tenant_id,
            enabled=enabled,
            replaced=previous is not None,
            actor=actor,
        )
        self._changed()
        return stored

    async def remove_override(self, flag_id: str, tenant_id: str, actor: str) -> bool:
        """Delete the override if present. Returns whether a row was removed."""
        await self._require_flag(flag_id, writable=True)
        previous = await self._store.delete_override(flag_id, tenant_id)
        if previous is None:
            logger.debug("override_remove_noop", flag_id=flag_id, tenant_id=tenant_id)
            return False

        await self._history.record(
            flag_id,
            ChangeType.OVERRIDE_REMOVED,
            actor,
            before=previous.state(),
            after=None,
        )
        logger.info("override_removed", flag_id=flag_id, tenant_id=tenant_id, actor=actor)
        self._changed()
        return True

    async def list_overrides(
        self,
        flag_id: str,
        override_filter: OverrideFilter | None = None,
        *,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[OverrideView], int]:
        await self._require_flag(flag_id)
        rows = await self._store.list_overrides(flag_id)
        if override_filter is not None:
            rows = [o for o in rows if override_filter.matches(o)]
        total = len(rows)
        start = (page - 1) * per_page
        page_rows = rows[start : start + per_page]

        names = await self._directory.resolve_names([o.tenant_id for o in page_rows])
        views = [
            OverrideView(**o.model_dump(), tenant_name=names.get(o.tenant_id)) for o in page_rows
        ]
        return views, total
