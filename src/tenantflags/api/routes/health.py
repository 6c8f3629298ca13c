"""Health check reporting store reachability and evaluation cache stats."""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends

from tenantflags.dependencies import Resources, get_resources
from tenantflags.schemas import HealthResponse

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["ops"])

_VERSION = "0.1.0"


async def _check_store(resources: Resources) -> str:
    timeout = resources.settings.evaluation.store_timeout_seconds * 4
    try:
        ok = await asyncio.wait_for(resources.store.ping(), timeout=timeout)
    except Exception as exc:
        logger.warning("Store health check failed: %s", type(exc).__name__)
        return "unhealthy"
    return "healthy" if ok else "unhealthy"


@router.get("/health", response_model=HealthResponse)
async def health_check(resources: Resources = Depends(get_resources)) -> HealthResponse:
    services = {"store": await _check_store(resources)}
    status = "ok" if all(v == "healthy" for v in services.values()) else "degraded"
    return HealthResponse(
        status=status,
        version=_VERSION,
        services=services,
        cache=resources.cache.stats(),
    )
