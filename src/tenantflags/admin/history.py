"""Append-only audit trail of flag state changes."""
from __future__ import annotations

from typing import Any

import structlog

from tenantflags.observability.metrics import ADMIN_MUTATIONS_TOTAL
from tenantflags.schemas import ChangeType, FeatureFlagHistoryEntry
from tenantflags.store.base import FlagStore

logger = structlog.get_logger(__name__)


class HistoryRecorder:
    def __init__(self, store: FlagStore) -> None:
        self._store = store

    async def record(
        self,
        flag_id: str,
        change_type: ChangeType,
        actor: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        reason: str | None = None,
    ) -> str:
        entry = FeatureFlagHistoryEntry(
            flag_id=flag_id,
            change_type=change_type,
            actor=actor,
            before_state=before,
            after_state=after,
            reason=reason,
        )
        await self._store.append_history(entry)
        ADMIN_MUTATIONS_TOTAL.labels(change_type=change_type.value).inc()
        logger.info(
            "flag_change_recorded",
            flag_id=flag_id,
            change_type=change_type.value,
            actor=actor,
            entry_id=entry.id,
        )
        return entry.id

    async def list_entries(self, flag_id: str, *, limit: int = 50, offset: int = 0) -> list[FeatureFlagHistoryEntry]:
        return await self._store.list_history(flag_id, limit=limit, offset=offset)

    async def count(self, flag_id: str) -> int:
        return await self._store.count_history(flag_id)
