"""API-key authentication middleware and route-level permission checks."""

from __future__ import annotations

import hmac
from collections.abc import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from tenantflags.errors import ForbiddenError, UnauthorizedError, error_response
from tenantflags.security.rbac import Permission, RBACRegistry, Role, hash_key

logger = structlog.get_logger(__name__)

_DEV_ACTOR = "dev:anonymous"
_LEGACY_ACTOR = "api-key"


def is_public_path(path: str) -> bool:
    return path == "/flags" or path.startswith("/flags/") or path in {"/health", "/openapi.json"}


class AuthMiddleware(BaseHTTPMiddleware):
    """Authenticate admin requests via API key -> RBAC resolution.

    Supports two modes:
    1. RBAC mode: key hash looked up in RBACRegistry for role/actor
    2. Legacy mode: key compared against settings.api_key (treated as super_admin)

    The tenant-scoped read path and health checks bypass authentication.
    """

    def __init__(self, app, registry: RBACRegistry):  # type: ignore[no-untyped-def]
        super().__init__(app)
        self._registry = registry

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        path = request.url.path
        if is_public_path(path):
            return await call_next(request)

        settings = request.app.state.resources.settings

        if path in {"/docs", "/redoc"} and not settings.is_production:
            return await call_next(request)

        provided = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()

        if provided:
            record = self._registry.resolve(hash_key(provided))
            if record is not None:
                request.state.role = record.role
                request.state.actor = record.actor
                return await call_next(request)

            if settings.api_key and hmac.compare_digest(provided.encode(), settings.api_key.encode()):
                request.state.role = Role.SUPER_ADMIN
                request.state.actor = _LEGACY_ACTOR
                return await call_next(request)

            self._log_auth_failure(request, "invalid_key")
            return self._unauthorized_response(request)

        # No key: only dev/test deployments without a configured key are open
        if not settings.api_key and not settings.is_production and not self._registry.list_keys():
            request.state.role = Role.SUPER_ADMIN
            request.state.actor = _DEV_ACTOR
            return await call_next(request)

        self._log_auth_failure(request, "missing_key")
        return self._unauthorized_response(request)

    def _log_auth_failure(self, request: Request, reason: str) -> None:
        client_ip = request.client.host if request.client else "unknown"
        request_id = getattr(request.state, "request_id", "")
        request.app.state.resources.audit.log_auth_failure(
            client_ip=client_ip, request_id=request_id, reason=reason
        )
        logger.warning("auth_failed", reason=reason, client_ip=client_ip, path=request.url.path)

    @staticmethod
    def _unauthorized_response(request: Request) -> Response:
        return error_response(
            UnauthorizedError("Invalid or missing API key"),
            getattr(request.state, "request_id", ""),
        )


def require_permission(permission: Permission) -> Callable[[Request], str]:
    """FastAPI dependency factory: enforce *permission*, return the caller's actor."""

    def _check(request: Request) -> str:
        role: Role | None = getattr(request.state, "role", None)
        if role is None or permission not in RBACRegistry.get_permissions(role):
            logger.warning(
                "permission_denied",
                permission=permission.value,
                role=role.value if role else None,
                path=request.url.path,
            )
            raise ForbiddenError(
                f"Missing permission: {permission.value}",
                details={"permission": permission.value},
            )
        return getattr(request.state, "actor", "unknown")

    return _check
