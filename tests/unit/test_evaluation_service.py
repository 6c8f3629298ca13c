from __future__ import annotations

import asyncio

import pytest

from tenantflags.admin.flags import FlagManager
from tenantflags.admin.history import HistoryRecorder
from tenantflags.evaluation.bucket import bucket
from tenantflags.evaluation.cache import FlagCache
from tenantflags.evaluation.service import EvaluationService
from tenantflags.schemas import EvaluationReason, FeatureFlagOverride
from tenantflags.store.memory import InMemoryFlagStore

ACTOR = "engineer@example.com"
TENANTS = [f"tenant-{i:04d}" for i in range(1000)]


class _SlowKeyReadStore(InMemoryFlagStore):
    async def get_flag_by_key(self, key):
        flag = await super().get_flag_by_key(key)
        await asyncio.sleep(0.05)
        return flag


class TestRolloutScenario:
    @pytest.mark.asyncio
    async def test_ai_scheduling_zero_to_thirty(self, flag_manager, evaluation):
        flag = await flag_manager.create_flag("ai_scheduling", "AI Scheduling", ACTOR, is_enabled=True)

        for tenant in TENANTS:
            assert await evaluation.is_enabled(tenant, "ai_scheduling") is False

        await flag_manager.update_rollout(flag.id, 30, ACTOR)

        first = {t: await evaluation.is_enabled(t, "ai_scheduling") for t in TENANTS}
        expected = {t: bucket("ai_scheduling", t) < 30 for t in TENANTS}
        assert first == expected
        assert 0.22 < sum(first.values()) / len(TENANTS) < 0.38

        second = {t: await evaluation.is_enabled(t, "ai_scheduling") for t in TENANTS}
        assert second == first

    @pytest.mark.asyncio
    async def test_raising_rollout_keeps_included_tenants(self, flag_manager, evaluation):
        flag = await flag_manager.create_flag(
            "staged", "Staged", ACTOR, is_enabled=True, rollout_percentage=20
        )
        before = {t for t in TENANTS if await evaluation.is_enabled(t, "staged")}
        await flag_manager.update_rollout(flag.id, 60, ACTOR)
        after = {t for t in TENANTS if await evaluation.is_enabled(t, "staged")}
        assert before <= after


class TestKillScenario:
    @pytest.mark.asyncio
    async def test_killed_beats_override(self, flag_manager, override_manager, evaluation):
        flag = await flag_manager.create_flag(
            "risky_feature", "Risky", ACTOR, is_enabled=True, rollout_percentage=100
        )
        await override_manager.set_override(flag.id, "tenant-vip", True, ACTOR)
        assert await evaluation.is_enabled("tenant-vip", "risky_feature") is True

        await flag_manager.kill(flag.id, ACTOR, "incident")
        result = await evaluation.evaluate("tenant-vip", "risky_feature")
        assert result.enabled is False
        assert result.reason is EvaluationReason.KILLED

    @pytest.mark.asyncio
    async def test_override_visible_immediately(self, flag_manager, override_manager, evaluation):
        flag = await flag_manager.create_flag("beta_reports", "Beta reports", ACTOR)
        assert await evaluation.is_enabled("tenant-a", "beta_reports") is False

        await override_manager.set_override(flag.id, "tenant-a", True, ACTOR)
        assert await evaluation.is_enabled("tenant-a", "beta_reports") is True

        await override_manager.remove_override(flag.id, "tenant-a", ACTOR)
        assert await evaluation.is_enabled("tenant-a", "beta_reports") is False

    @pytest.mark.asyncio
    async def test_kill_during_inflight_read_takes_effect(self):
        store = _SlowKeyReadStore()
        cache = FlagCache(max_size=100, ttl_seconds=60)
        manager = FlagManager(store, HistoryRecorder(store), on_change=cache.invalidate)
        evaluation = EvaluationService(store, cache, timeout_seconds=0.5)
        flag = await manager.create_flag(
            "slow_read", "Slow read", ACTOR, is_enabled=True, rollout_percentage=100
        )

        async def kill_mid_read():
            await asyncio.sleep(0.01)
            await manager.kill(flag.id, ACTOR, "incident")

        inflight, _ = await asyncio.gather(evaluation.evaluate("tenant-a", "slow_read"), kill_mid_read())
        assert inflight.reason is EvaluationReason.FULL_ROLLOUT

        result = await evaluation.evaluate("tenant-a", "slow_read")
        assert result.enabled is False
        assert result.reason is EvaluationReason.KILLED


class TestFlagsForTenant:
    @pytest.mark.asyncio
    async def test_map_excludes_archived(self, flag_manager, override_manager, evaluation):
        await flag_manager.create_flag("everyone", "Everyone", ACTOR, is_enabled=True, rollout_percentage=100)
        nobody = await flag_manager.create_flag("nobody", "Nobody", ACTOR)
        retired = await flag_manager.create_flag("retired", "Retired", ACTOR, is_enabled=True, rollout_percentage=100)
        await flag_manager.archive(retired.id, ACTOR)
        await override_manager.set_override(nobody.id, "tenant-a", True, ACTOR)

        assert await evaluation.flags_for_tenant("tenant-a") == {"everyone": True, "nobody": True}
        assert await evaluation.flags_for_tenant("tenant-b") == {"everyone": True, "nobody": False}

    @pytest.mark.asyncio
    async def test_unknown_key_is_false(self, evaluation):
        result = await evaluation.evaluate("tenant-a", "ghost_flag")
        assert result.enabled is False
        assert result.reason is EvaluationReason.NOT_FOUND


class TestDiagnose:
    @pytest.mark.asyncio
    async def test_reports_bucket_and_reason(self, flag_manager, evaluation):
        await flag_manager.create_flag("diag", "Diag", ACTOR, is_enabled=True, rollout_percentage=50)
        diagnostic = await evaluation.diagnose("tenant-a", "diag")
        assert diagnostic.bucket == bucket("diag", "tenant-a")
        assert diagnostic.reason is EvaluationReason.ROLLOUT
        assert diagnostic.enabled is (diagnostic.bucket < 50)

    @pytest.mark.asyncio
    async def test_bypasses_cache(self, flag_manager, evaluation, store):
        flag = await flag_manager.create_flag("diag_cache", "Diag", ACTOR)
        assert await evaluation.is_enabled("tenant-a", "diag_cache") is False

        # Write behind the managers' back so the cache is not invalidated
        await store.upsert_override(
            FeatureFlagOverride(flag_id=flag.id, tenant_id="tenant-a", is_enabled=True)
        )
        assert await evaluation.is_enabled("tenant-a", "diag_cache") is False

        diagnostic = await evaluation.diagnose("tenant-a", "diag_cache")
        assert diagnostic.enabled is True
        assert diagnostic.reason is EvaluationReason.OVERRIDE

    @pytest.mark.asyncio
    async def test_cache_stats_exposed(self, evaluation):
        await evaluation.evaluate("tenant-a", "anything")
        assert evaluation.cache.stats()["total_misses"] >= 1
