from __future__ import annotations

import os

import pytest

os.environ["TENANTFLAGS_ENV"] = "test"  # Prevents loading dev/staging/prod profile overlays
os.environ.pop("API_KEY", None)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    from tenantflags.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    from tenantflags.config import get_settings

    return get_settings()


@pytest.fixture
def store():
    from tenantflags.store.memory import InMemoryFlagStore

    return InMemoryFlagStore()


@pytest.fixture
def history(store):
    from tenantflags.admin.history import HistoryRecorder

    return HistoryRecorder(store)


@pytest.fixture
def cache():
    from tenantflags.evaluation.cache import FlagCache

    return FlagCache(max_size=100, ttl_seconds=60)


@pytest.fixture
def flag_manager(store, history, cache):
    from tenantflags.admin.flags import FlagManager

    return FlagManager(store, history, on_change=cache.invalidate)


@pytest.fixture
def tenant_directory():
    from tenantflags.directory.tenants import StaticTenantDirectory

    return StaticTenantDirectory(
        {
            "tenant-a": "Paws & Claws Pet Spa",
            "tenant-b": "Happy Tails Grooming",
        }
    )


@pytest.fixture
def override_manager(store, history, tenant_directory, cache):
    from tenantflags.admin.overrides import OverrideManager

    return OverrideManager(store, history, tenant_directory, on_change=cache.invalidate)


@pytest.fixture
def evaluation(store, cache):
    from tenantflags.evaluation.service import EvaluationService

    return EvaluationService(store, cache, timeout_seconds=0.5)
