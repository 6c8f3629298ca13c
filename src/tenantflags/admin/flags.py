"""Admin operations on flag definitions.

Every mutation follows the same sequence: read the row, compute the next
state with :mod:`tenantflags.admin.lifecycle`, compare-and-swap it into the
store, then append history and invalidate the evaluation cache. History is
only written once the swap has succeeded, so the persisted row and the latest
history entry always agree.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from tenantflags.admin import lifecycle
from tenantflags.admin.history import HistoryRecorder
from tenantflags.errors import ConflictError, InvalidTransitionError, NotFoundError
from tenantflags.schemas import (
    ChangeType,
    FeatureFlag,
    FeatureFlagHistoryEntry,
    FlagCategory,
    FlagStatus,
    FlagSummary,
)
from tenantflags.store.base import FlagStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _Step:
    change_type: ChangeType
    before: FeatureFlag
    after: FeatureFlag
    fields: tuple[str, ...]


class FlagManager:
    def __init__(
        self,
        store: FlagStore,
        history: HistoryRecorder,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._store = store
        self._history = history
        self._on_change = on_change

    async def _require(self, flag_id: str, expected_version: int | None = None) -> FeatureFlag:
        flag = await self._store.get_flag(flag_id)
        if flag is None:
            raise NotFoundError(f"Feature flag not found: {flag_id}", details={"flag_id": flag_id})
        # No-op writes never reach the store, so the version is also checked here
        if expected_version is not None and expected_version != flag.version:
            raise ConflictError(
                "Feature flag was modified concurrently; reload and retry",
                details={"expected_version": expected_version, "current_version": flag.version},
            )
        return flag

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    async def _commit(
        self,
        base: FeatureFlag,
        steps: list[_Step],
        actor: str,
        expected_version: int | None,
        reason: str | None = None,
    ) -> FeatureFlag:
        if not steps:
            return base
        version = base.version if expected_version is None else expected_version
        stored = await self._store.update_flag(steps[-1].after, expected_version=version)
        for step in steps:
            await self._history.record(
                stored.id,
                step.change_type,
                actor,
                before=step.before.state(*step.fields),
                after=step.after.state(*step.fields),
                reason=reason,
            )
        self._changed()
        return stored

    # -- reads ---------------------------------------------------------------

    async def get_flag(self, flag_id: str) -> FeatureFlag:
        return await self._require(flag_id)

    async def list_flags(
        self,
        *,
        status: FlagStatus | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[FlagSummary], int]:
        flags = await self._store.list_flags(status=status)
        total = len(flags)
        start = (page - 1) * per_page
        page_flags = flags[start : start + per_page]
        counts = await self._store.count_overrides([f.id for f in page_flags])
        summaries = [
            FlagSummary(**f.model_dump(), override_count=counts.get(f.id, 0)) for f in page_flags
        ]
        return summaries, total

    async def history(
        self, flag_id: str, *, page: int = 1, per_page: int = 20
    ) -> tuple[list[FeatureFlagHistoryEntry], int]:
        await self._require(flag_id)
        entries = await self._history.list_entries(
            flag_id, limit=per_page, offset=(page - 1) * per_page
        )
        return entries, await self._history.count(flag_id)

    # -- mutations -----------------------------------------------------------

    async def create_flag(
        self,
        key: str,
        name: str,
        actor: str,
        *,
        description: str = "",
        category: FlagCategory = FlagCategory.CORE,
        is_enabled: bool = False,
        rollout_percentage: int = 0,
    ) -> FeatureFlag:
        flag = lifecycle.new_flag(
            key,
            name,
            description=description,
            category=category,
            is_enabled=is_enabled,
            rollout_percentage=rollout_percentage,
        )
        stored = await self._store.insert_flag(flag)
        await self._history.record(stored.id, ChangeType.CREATED, actor, before=None, after=stored.state())
        logger.info("flag_created", flag_id=stored.id, key=stored.key, actor=actor)
        self._changed()
        return stored

    async def update_flag(
        self,
        flag_id: str,
        actor: str,
        *,
        is_enabled: bool | None = None,
        rollout_percentage: int | None = None,
        name: str | None = None,
        description: str | None = None,
        category: FlagCategory | None = None,
        expected_version: int | None = None,
    ) -> FeatureFlag:
        """Apply a partial update as one write with one history entry per changed field."""
        flag = await self._require(flag_id, expected_version)
        supplied = [is_enabled, rollout_percentage, name, description, category]
        if flag.status is FlagStatus.ARCHIVED and any(v is not None for v in supplied):
            raise InvalidTransitionError(
                "Archived flags cannot be modified",
                details={"flag_id": flag.id, "status": flag.status.value},
            )

        steps: list[_Step] = []
        current = flag
        if is_enabled is not None and is_enabled != current.is_enabled:
            nxt = lifecycle.toggle(current, is_enabled)
            steps.append(_Step(ChangeType.TOGGLED, current, nxt, ("is_enabled",)))
            current = nxt
        if rollout_percentage is not None and rollout_percentage != current.rollout_percentage:
            nxt = lifecycle.update_rollout(current, rollout_percentage)
            steps.append(
                _Step(ChangeType.ROLLOUT_CHANGED, current, nxt, ("rollout_percentage", "status"))
            )
            current = nxt
        for field_name, value in (("name", name), ("description", description), ("category", category)):
            if value is not None and value != getattr(current, field_name):
                nxt = lifecycle.update_details(current, **{field_name: value})
                steps.append(_Step(ChangeType.UPDATED, current, nxt, (field_name,)))
                current = nxt

        stored = await self._commit(flag, steps, actor, expected_version)
        if steps:
            logger.info(
                "flag_updated",
                flag_id=flag_id,
                actor=actor,
                changes=[s.change_type.value for s in steps],
                version=stored.version,
            )
        return stored

    async def toggle(
        self, flag_id: str, enabled: bool, actor: str, *, expected_version: int | None = None
    ) -> FeatureFlag:
        return await self.update_flag(
            flag_id, actor, is_enabled=enabled, expected_version=expected_version
        )

    async def update_rollout(
        self, flag_id: str, percentage: int, actor: str, *, expected_version: int | None = None
    ) -> FeatureFlag:
        return await self.update_flag(
            flag_id, actor, rollout_percentage=percentage, expected_version=expected_version
        )

    async def kill(
        self,
        flag_id: str,
        actor: str,
        reason: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> FeatureFlag:
        flag = await self._require(flag_id, expected_version)
        killed = lifecycle.kill(flag, reason)
        if killed is flag:
            logger.info("flag_already_killed", flag_id=flag_id, actor=actor)
            return flag
        step = _Step(ChangeType.KILLED, flag, killed, ("status", "kill_reason"))
        stored = await self._commit(flag, [step], actor, expected_version, reason=reason)
        logger.warning("flag_killed", flag_id=flag_id, key=flag.key, actor=actor, reason=reason)
        return stored

    async def revive(
        self, flag_id: str, actor: str, *, expected_version: int | None = None
    ) -> FeatureFlag:
        flag = await self._require(flag_id, expected_version)
        revived = lifecycle.revive(flag)
        step = _Step(
            ChangeType.REVIVED, flag, revived, ("status", "rollout_percentage", "kill_reason")
        )
        stored = await self._commit(flag, [step], actor, expected_version)
        logger.info("flag_revived", flag_id=flag_id, key=flag.key, actor=actor)
        return stored

    async def archive(
        self, flag_id: str, actor: str, *, expected_version: int | None = None
    ) -> FeatureFlag:
        flag = await self._require(flag_id, expected_version)
        archived = lifecycle.archive(flag)
        step = _Step(ChangeType.ARCHIVED, flag, archived, ("status", "archived_at"))
        stored = await self._commit(flag, [step], actor, expected_version)
        logger.info("flag_archived", flag_id=flag_id, key=flag.key, actor=actor)
        return stored
