"""Application resources and FastAPI dependency helpers.

All shared components (store, cache, managers, HTTP clients) are created once
per application by :class:`Resources` and reached through ``app.state``; no
module keeps its own singleton.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import httpx
import structlog
from fastapi import Request

from tenantflags.admin.flags import FlagManager
from tenantflags.admin.history import HistoryRecorder
from tenantflags.admin.overrides import OverrideManager
from tenantflags.admin.seed import load_seed
from tenantflags.config import PROJECT_ROOT, Settings, get_settings
from tenantflags.directory.tenants import HttpTenantDirectory, StaticTenantDirectory, TenantDirectory
from tenantflags.evaluation.cache import FlagCache
from tenantflags.evaluation.service import EvaluationService
from tenantflags.observability.audit import AuditLogger
from tenantflags.store.base import FlagStore
from tenantflags.store.memory import InMemoryFlagStore

logger = structlog.get_logger(__name__)


@dataclass
class Resources:
    """Container for application-level shared resources."""

    settings: Settings = field(default_factory=get_settings)
    store: FlagStore = field(default_factory=InMemoryFlagStore)
    directory: TenantDirectory | None = None
    audit: AuditLogger = field(default_factory=AuditLogger)
    http_client: httpx.AsyncClient | None = None
    cache: FlagCache = field(init=False)
    history: HistoryRecorder = field(init=False)
    flags: FlagManager = field(init=False)
    overrides: OverrideManager = field(init=False)
    evaluation: EvaluationService = field(init=False)

    def __post_init__(self) -> None:
        s = self.settings
        self.cache = FlagCache(max_size=s.cache.max_size, ttl_seconds=s.cache.ttl_seconds)
        self.history = HistoryRecorder(self.store)
        self.flags = FlagManager(self.store, self.history, on_change=self.cache.invalidate)
        self.overrides = OverrideManager(
            self.store,
            self.history,
            _LazyDirectory(self),
            on_change=self.cache.invalidate,
        )
        self.evaluation = EvaluationService(
            self.store, self.cache, timeout_seconds=s.evaluation.store_timeout_seconds
        )

    async def startup(self) -> None:
        s = self.settings
        logger.info("Initialising shared resources")

        if self.directory is None:
            if s.directory.base_url:
                self.http_client = httpx.AsyncClient(
                    timeout=httpx.Timeout(s.directory.timeout_seconds),
                    limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                )
                self.directory = HttpTenantDirectory(self.http_client, s.directory.base_url)
            else:
                self.directory = StaticTenantDirectory()

        if s.seed.path:
            seed_path = Path(s.seed.path)
            if not seed_path.is_absolute():
                seed_path = PROJECT_ROOT / seed_path
            if seed_path.exists():
                await load_seed(seed_path, self.store, self.flags, self.overrides, s.seed.actor)
            else:
                logger.warning("Seed file not found: %s", seed_path)

        logger.info("All shared resources initialised")

    async def shutdown(self) -> None:
        logger.info("Shutting down shared resources")
        if self.http_client is not None and not self.http_client.is_closed:
            await self.http_client.aclose()
        self.cache.invalidate()
        logger.info("All shared resources released")


class _LazyDirectory:
    """Defers to whichever directory ``Resources.startup`` selected."""

    def __init__(self, resources: Resources) -> None:
        self._resources = resources

    async def resolve_names(self, tenant_ids: list[str]) -> dict[str, str]:
        directory = self._resources.directory
        if directory is None:
            return {}
        return await directory.resolve_names(tenant_ids)


# ---------------------------------------------------------------------------
# FastAPI Depends() helpers
# ---------------------------------------------------------------------------


def get_resources(request: Request) -> Resources:
    return request.app.state.resources


def get_evaluation_dep(request: Request) -> EvaluationService:
    return get_resources(request).evaluation


def get_flag_manager_dep(request: Request) -> FlagManager:
    return get_resources(request).flags


def get_override_manager_dep(request: Request) -> OverrideManager:
    return get_resources(request).overrides


def get_audit_dep(request: Request) -> AuditLogger:
    return get_resources(request).audit
