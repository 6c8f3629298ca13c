"""In-process reference implementation of :class:`FlagStore`.

Suitable for single-process deployments, development and tests. Each method
completes without yielding to the event loop between its read and its write,
so compare-and-swap and upserts are atomic under asyncio.
"""

from __future__ import annotations

from collections import defaultdict

import structlog

from tenantflags.errors import ConflictError, NotFoundError, ValidationError
from tenantflags.schemas import (
    FeatureFlag,
    FeatureFlagHistoryEntry,
    FeatureFlagOverride,
    FlagStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


class InMemoryFlagStore:
    def __init__(self) -> None:
        self._flags: dict[str, FeatureFlag] = {}
        self._ids_by_key: dict[str, str] = {}
        self._overrides: dict[tuple[str, str], FeatureFlagOverride] = {}
        self._history: defaultdict[str, list[FeatureFlagHistoryEntry]] = defaultdict(list)

    async def ping(self) -> bool:
        return True

    # -- flags ---------------------------------------------------------------

    async def insert_flag(self, flag: FeatureFlag) -> FeatureFlag:
        if flag.key in self._ids_by_key:
            raise ValidationError(
                f"Feature flag key already exists: {flag.key}", details={"key": flag.key}
            )
        if flag.id in self._flags:
            raise ValidationError(f"Feature flag id already exists: {flag.id}")
        self._flags[flag.id] = flag
        self._ids_by_key[flag.key] = flag.id
        logger.debug("flag_inserted", flag_id=flag.id, key=flag.key)
        return flag

    async def get_flag(self, flag_id: str) -> FeatureFlag | None:
        return self._flags.get(flag_id)

    async def get_flag_by_key(self, key: str) -> FeatureFlag | None:
        flag_id = self._ids_by_key.get(key)
        return self._flags.get(flag_id) if flag_id else None

    async def list_flags(
        self, *, include_archived: bool = True, status: FlagStatus | None = None
    ) -> list[FeatureFlag]:
        flags = sorted(self._flags.values(), key=lambda f: f.created_at, reverse=True)
        if not include_archived:
            flags = [f for f in flags if f.status is not FlagStatus.ARCHIVED]
        if status is not None:
            flags = [f for f in flags if f.status is status]
        return flags

    async def update_flag(self, flag: FeatureFlag, expected_version: int) -> FeatureFlag:
        current = self._flags.get(flag.id)
        if current is None:
            raise NotFoundError(f"Feature flag not found: {flag.id}")
        if current.version != expected_version:
            logger.info(
                "flag_cas_conflict",
                flag_id=flag.id,
                expected=expected_version,
                actual=current.version,
            )
            raise ConflictError(
                "Feature flag was modified concurrently; reload and retry",
                details={"expected_version": expected_version, "current_version": current.version},
            )
        if flag.key != current.key:
            raise ValidationError("Feature flag key is immutable")
        stored = flag.model_copy(update={"version": current.version + 1, "updated_at": utcnow()})
        self._flags[flag.id] = stored
        return stored

    # -- overrides -----------------------------------------------------------

    async def get_override(self, flag_id: str, tenant_id: str) -> FeatureFlagOverride | None:
        return self._overrides.get((flag_id, tenant_id))

    async def upsert_override(
        self, override: FeatureFlagOverride
    ) -> tuple[FeatureFlagOverride, FeatureFlagOverride | None]:
        pk = (override.flag_id, override.tenant_id)
        previous = self._overrides.get(pk)
        if previous is not None:
            stored = override.model_copy(
                update={
                    "created_at": previous.created_at,
                    "created_by": previous.created_by,
                    "updated_at": utcnow(),
                }
            )
        else:
            stored = override
        self._overrides[pk] = stored
        return stored, previous

    async def delete_override(self, flag_id: str, tenant_id: str) -> FeatureFlagOverride | None:
        return self._overrides.pop((flag_id, tenant_id), None)

    async def list_overrides(self, flag_id: str) -> list[FeatureFlagOverride]:
        rows = [o for (fid, _), o in self._overrides.items() if fid == flag_id]
        return sorted(rows, key=lambda o: o.created_at, reverse=True)

    async def list_tenant_overrides(self, tenant_id: str) -> list[FeatureFlagOverride]:
        return [o for (_, tid), o in self._overrides.items() if tid == tenant_id]

    async def count_overrides(self, flag_ids: list[str]) -> dict[str, int]:
        counts = dict.fromkeys(flag_ids, 0)
        for fid, _ in self._overrides:
            if fid in counts:
                counts[fid] += 1
        return counts

    # -- history -------------------------------------------------------------

    async def append_history(self, entry: FeatureFlagHistoryEntry) -> FeatureFlagHistoryEntry:
        self._history[entry.flag_id].append(entry)
        return entry

    async def list_history(
        self, flag_id: str, *, limit: int = 50, offset: int = 0
    ) -> list[FeatureFlagHistoryEntry]:
        entries = self._history.get(flag_id, [])
        newest_first = entries[::-1]
        return newest_first[offset : offset + limit]

    async def count_history(self, flag_id: str) -> int:
        return len(self._history.get(flag_id, []))
