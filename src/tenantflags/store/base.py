"""Narrow persistence interface for flags, overrides and history.

Implementations must provide:

- unique ``key`` per flag (duplicate inserts raise ``ValidationError``)
- compare-and-swap on ``version`` in :meth:`FlagStore.update_flag`
  (a stale ``expected_version`` raises ``ConflictError``)
- at most one override per ``(flag_id, tenant_id)``
- append-only history, listed most recent first

Infrastructure failures surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

from typing import Protocol

from tenantflags.schemas import (
    FeatureFlag,
    FeatureFlagHistoryEntry,
    FeatureFlagOverride,
    FlagStatus,
)


class FlagReader(Protocol):
    """Read side used by the evaluation path."""

    async def get_flag_by_key(self, key: str) -> FeatureFlag | None: ...

    async def get_override(self, flag_id: str, tenant_id: str) -> FeatureFlagOverride | None: ...

    async def list_flags(
        self, *, include_archived: bool = True, status: FlagStatus | None = None
    ) -> list[FeatureFlag]: ...

    async def list_tenant_overrides(self, tenant_id: str) -> list[FeatureFlagOverride]: ...


class FlagStore(FlagReader, Protocol):
    async def ping(self) -> bool: ...

    async def insert_flag(self, flag: FeatureFlag) -> FeatureFlag: ...

    async def get_flag(self, flag_id: str) -> FeatureFlag | None: ...

    async def update_flag(self, flag: FeatureFlag, expected_version: int) -> FeatureFlag:
        """Persist *flag* if the stored version equals *expected_version*.

        Returns the stored row with ``version`` incremented.
        """
        ...

    async def upsert_override(
        self, override: FeatureFlagOverride
    ) -> tuple[FeatureFlagOverride, FeatureFlagOverride | None]:
        """Insert or replace; returns ``(stored, previous)``."""
        ...

    async def delete_override(self, flag_id: str, tenant_id: str) -> FeatureFlagOverride | None: ...

    async def list_overrides(self, flag_id: str) -> list[FeatureFlagOverride]: ...

    async def count_overrides(self, flag_ids: list[str]) -> dict[str, int]: ...

    async def append_history(self, entry: FeatureFlagHistoryEntry) -> FeatureFlagHistoryEntry: ...

    async def list_history(
        self, flag_id: str, *, limit: int = 50, offset: int = 0
    ) -> list[FeatureFlagHistoryEntry]: ...

    async def count_history(self, flag_id: str) -> int: ...
