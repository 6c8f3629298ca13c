"""Tenant-name resolution against the external tenant directory.

Names are decoration for admin listings only. Lookups never fail the calling
operation: a directory outage yields an empty mapping and a warning.
"""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


class TenantDirectory(Protocol):
    async def resolve_names(self, tenant_ids: list[str]) -> dict[str, str]: ...


class StaticTenantDirectory:
    """Fixed id -> name mapping (development, tests, or no directory configured)."""

    def __init__(self, names: dict[str, str] | None = None) -> None:
        self._names = dict(names or {})

    async def resolve_names(self, tenant_ids: list[str]) -> dict[str, str]:
        return {tid: self._names[tid] for tid in tenant_ids if tid in self._names}


class HttpTenantDirectory:
    """Client for ``GET {base_url}/tenants?ids=a,b`` returning
    ``{"tenants": [{"id": ..., "name": ...}, ...]}``.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def resolve_names(self, tenant_ids: list[str]) -> dict[str, str]:
        if not tenant_ids:
            return {}
        try:
            response = await self._client.get(
                f"{self._base_url}/tenants",
                params={"ids": ",".join(sorted(set(tenant_ids)))},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "tenant_directory_lookup_failed",
                error=str(exc),
                tenant_count=len(tenant_ids),
            )
            return {}

        names: dict[str, str] = {}
        for row in payload.get("tenants", []):
            tenant_id = row.get("id")
            name = row.get("name")
            if tenant_id and name:
                names[str(tenant_id)] = str(name)
        return names
