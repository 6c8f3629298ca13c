"""Prometheus metrics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from tenantflags.security.auth import require_permission
from tenantflags.security.rbac import Permission

router = APIRouter(tags=["ops"])


@router.get("/metrics", dependencies=[Depends(require_permission(Permission.VIEW_METRICS))])
async def prometheus_metrics() -> Response:
    """Expose all registered Prometheus metrics in the standard exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
