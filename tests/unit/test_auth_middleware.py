"""Tests for AuthMiddleware with RBAC resolution."""

from __future__ import annotations

import hashlib
from unittest.mock import MagicMock

import pytest
from starlette.testclient import TestClient

from tenantflags.api.main import create_app
from tenantflags.config import APIKeySettings, Settings
from tenantflags.errors import UnauthorizedError
from tenantflags.security.auth import is_public_path
from tenantflags.security.rbac import RBACRegistry, Role, hash_key


@pytest.fixture
def settings_with_key():
    return Settings(api_key="test-secret-key")


@pytest.fixture
def app_with_key(settings_with_key):
    return create_app(settings=settings_with_key)


@pytest.fixture
def client_with_key(app_with_key):
    return TestClient(app_with_key, raise_server_exceptions=False)


def _register(app, key: str, role: Role, actor: str) -> None:
    registry: RBACRegistry = app.state.rbac_registry
    registry.register_key(hashlib.sha256(key.encode()).hexdigest(), actor, role)


class TestPublicPaths:
    @pytest.mark.parametrize("path", ["/flags/tenant-a", "/flags/tenant-a/some_flag", "/health", "/openapi.json"])
    def test_public(self, path):
        assert is_public_path(path)

    @pytest.mark.parametrize("path", ["/admin/flags", "/metrics", "/flagsx"])
    def test_protected(self, path):
        assert not is_public_path(path)

    def test_evaluation_needs_no_auth(self, client_with_key):
        assert client_with_key.get("/flags/tenant-a").status_code == 200
        assert client_with_key.get("/flags/tenant-a/unknown").json() == {"enabled": False}

    def test_health_needs_no_auth(self, client_with_key):
        assert client_with_key.get("/health").status_code == 200


class TestMissingOrInvalidKey:
    def test_missing_key_returns_401(self, client_with_key):
        resp = client_with_key.get("/admin/flags")
        assert resp.status_code == UnauthorizedError.status_code
        assert resp.json()["error"]["code"] == UnauthorizedError.error_code

    def test_invalid_key_returns_401(self, client_with_key):
        resp = client_with_key.get("/admin/flags", headers={"Authorization": "Bearer wrong-key"})
        assert resp.status_code == UnauthorizedError.status_code
        assert resp.json()["error"]["code"] == UnauthorizedError.error_code

    def test_auth_failure_audited(self, app_with_key, client_with_key):
        audit = MagicMock()
        app_with_key.state.resources.audit = audit
        client_with_key.get("/admin/flags", headers={"Authorization": "Bearer bad-key"})
        audit.log_auth_failure.assert_called_once()
        assert audit.log_auth_failure.call_args.kwargs["reason"] == "invalid_key"


class TestLegacyKey:
    def test_legacy_key_grants_super_admin(self, client_with_key):
        headers = {"Authorization": "Bearer test-secret-key"}
        resp = client_with_key.post(
            "/admin/flags", json={"key": "legacy_created", "name": "Legacy"}, headers=headers
        )
        assert resp.status_code == 201

        flag_id = resp.json()["id"]
        history = client_with_key.get(f"/admin/flags/{flag_id}/history", headers=headers).json()
        assert history["data"][0]["actor"] == "api-key"


class TestRBACKeys:
    def test_support_can_read_but_not_write(self, app_with_key, client_with_key):
        _register(app_with_key, "support-key", Role.SUPPORT, "support@example.com")
        headers = {"Authorization": "Bearer support-key"}

        assert client_with_key.get("/admin/flags", headers=headers).status_code == 200
        resp = client_with_key.post("/admin/flags", json={"key": "nope", "name": "Nope"}, headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"

    def test_engineer_write_records_actor(self, app_with_key, client_with_key):
        _register(app_with_key, "eng-key", Role.ENGINEER, "eng@example.com")
        headers = {"Authorization": "Bearer eng-key"}

        resp = client_with_key.post("/admin/flags", json={"key": "eng_flag", "name": "Eng"}, headers=headers)
        assert resp.status_code == 201
        flag_id = resp.json()["id"]
        history = client_with_key.get(f"/admin/flags/{flag_id}/history", headers=headers).json()
        assert history["data"][0]["actor"] == "eng@example.com"

    def test_metrics_permission(self, app_with_key, client_with_key):
        _register(app_with_key, "lead-key", Role.SUPPORT_LEAD, "lead@example.com")
        _register(app_with_key, "support-key", Role.SUPPORT, "support@example.com")

        assert client_with_key.get("/metrics", headers={"Authorization": "Bearer lead-key"}).status_code == 200
        assert client_with_key.get("/metrics", headers={"Authorization": "Bearer support-key"}).status_code == 403

    def test_deactivated_key_rejected(self, app_with_key, client_with_key):
        _register(app_with_key, "old-key", Role.ENGINEER, "old@example.com")
        app_with_key.state.rbac_registry.deactivate_key(hashlib.sha256(b"old-key").hexdigest())
        resp = client_with_key.get("/admin/flags", headers={"Authorization": "Bearer old-key"})
        assert resp.status_code == 401


class TestConfiguredKeys:
    def test_keys_from_settings_resolve_roles(self):
        settings = Settings(
            api_key="",
            rbac_keys=[
                APIKeySettings(key_hash=hash_key("support-key"), actor="support@example.com", role=Role.SUPPORT),
                APIKeySettings(key_hash=hash_key("eng-key"), actor="eng@example.com", role="engineer"),
            ],
        )
        app = create_app(settings=settings)
        assert {r.role for r in app.state.rbac_registry.list_keys()} == {Role.SUPPORT, Role.ENGINEER}
        client = TestClient(app, raise_server_exceptions=False)

        support = {"Authorization": "Bearer support-key"}
        assert client.get("/admin/flags", headers=support).status_code == 200
        assert client.post("/admin/flags", json={"key": "nope", "name": "Nope"}, headers=support).status_code == 403

        resp = client.post(
            "/admin/flags", json={"key": "configured", "name": "Configured"}, headers={"Authorization": "Bearer eng-key"}
        )
        assert resp.status_code == 201

    def test_configured_keys_close_dev_mode(self):
        settings = Settings(
            api_key="",
            rbac_keys=[APIKeySettings(key_hash=hash_key("k"), actor="lead@example.com", role=Role.SUPPORT_LEAD)],
        )
        client = TestClient(create_app(settings=settings), raise_server_exceptions=False)
        assert client.get("/admin/flags").status_code == 401


class TestDevMode:
    def test_no_key_configured_is_open_outside_production(self):
        client = TestClient(create_app(settings=Settings(api_key="")), raise_server_exceptions=False)
        resp = client.post("/admin/flags", json={"key": "dev_flag", "name": "Dev"})
        assert resp.status_code == 201

    def test_production_without_key_rejects(self):
        settings = Settings(api_key="", environment="production")
        client = TestClient(create_app(settings=settings), raise_server_exceptions=False)
        assert client.get("/admin/flags").status_code == 401

    def test_registered_keys_close_dev_mode(self):
        app = create_app(settings=Settings(api_key=""))
        _register(app, "some-key", Role.SUPPORT, "support@example.com")
        client = TestClient(app, raise_server_exceptions=False)
        assert client.get("/admin/flags").status_code == 401


class TestTimingSafe:
    def test_timing_safe_comparison_used(self):
        import inspect

        from tenantflags.security.auth import AuthMiddleware

        source = inspect.getsource(AuthMiddleware)
        assert "hmac.compare_digest" in source
        assert "provided != settings.api_key" not in source
        assert "provided == settings.api_key" not in source
