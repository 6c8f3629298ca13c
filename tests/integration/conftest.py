"""Integration test fixtures.

Each test gets a fresh application (in-memory store, lifespan started) behind
a Starlette ``TestClient``. No external services are needed.
"""
from __future__ import annotations

import pytest
from starlette.testclient import TestClient

ADMIN_KEY = "integration-admin-key"


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_KEY}"}


@pytest.fixture
def api_settings():
    from tenantflags.config import Settings

    return Settings(api_key=ADMIN_KEY)


@pytest.fixture
def resources(api_settings):
    from tenantflags.dependencies import Resources
    from tenantflags.directory.tenants import StaticTenantDirectory

    return Resources(
        settings=api_settings,
        directory=StaticTenantDirectory(
            {
                "tenant-a": "Paws & Claws Pet Spa",
                "tenant-b": "Happy Tails Grooming",
            }
        ),
    )


@pytest.fixture
def client(resources):
    from tenantflags.api.main import create_app

    with TestClient(create_app(resources=resources), raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def create_flag(client, admin_headers):
    def _create(key: str, **fields) -> dict:
        body = {"key": key, "name": key.replace("_", " ").title(), **fields}
        resp = client.post("/admin/flags", json=body, headers=admin_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create
