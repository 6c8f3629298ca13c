"""tenantflags API application factory.

Creates a fully configured FastAPI application with:
- Lifespan management (resource startup/shutdown, optional flag seed)
- Request logging middleware with request_id propagation
- API key authentication with RBAC roles for the admin surface
- Sliding-window rate limiter on admin paths with bounded memory
- Structured error handling
- CORS configuration
- Prometheus-compatible /metrics endpoint
"""

from __future__ import annotations

import time
import uuid as uuid_mod
from collections import OrderedDict
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from tenantflags.config import Settings, get_settings
from tenantflags.dependencies import Resources
from tenantflags.errors import (
    PayloadTooLargeError,
    RateLimitError,
    error_response,
    register_exception_handlers,
)
from tenantflags.observability.logging_config import configure_logging
from tenantflags.observability.metrics import REQUEST_DURATION
from tenantflags.security.auth import AuthMiddleware
from tenantflags.security.rbac import RBACRegistry

logger = structlog.get_logger(__name__)

# Maximum number of unique client IPs tracked by the rate limiter
_RATE_LIMIT_MAX_CLIENTS = 10_000


# ---------------------------------------------------------------------------
# Lifespan: initialise shared resources on startup, release on shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    resources: Resources = app.state.resources
    settings = resources.settings

    configure_logging(
        json_output=settings.use_json_logs,
        log_level=settings.log_level,
        environment=settings.environment,
    )

    logger.info(
        "tenantflags API starting (env=%s, cache_ttl=%.1fs, store_timeout=%.2fs)",
        settings.environment,
        settings.cache.ttl_seconds,
        settings.evaluation.store_timeout_seconds,
    )

    await resources.startup()

    yield  # ---- application is running ----

    logger.info("tenantflags API shutting down")
    await resources.shutdown()


# ---------------------------------------------------------------------------
# Middleware: request logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID", str(uuid_mod.uuid4())[:8])
        request.state.request_id = request_id

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = time.perf_counter() - start

        route = request.scope.get("route")
        route_path = getattr(route, "path", "unmatched")
        REQUEST_DURATION.labels(
            method=request.method, route=route_path, status=str(response.status_code)
        ).observe(elapsed)

        # The evaluation path is hot; only log it at debug level
        log = logger.debug if route_path.startswith("/flags") else logger.info
        log(
            "%s %s %d %.1fms request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed * 1000,
            request_id,
        )
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# Middleware: sliding-window rate limiter with bounded memory
# ---------------------------------------------------------------------------


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client-IP sliding-window rate limiter for paths under ``prefix``.

    Uses an ``OrderedDict`` bounded to ``max_clients`` entries so that memory
    usage stays predictable even under traffic from many unique IPs.
    """

    def __init__(  # type: ignore[no-untyped-def]
        self,
        app,
        rpm: int = 120,
        prefix: str = "/admin",
        max_clients: int = _RATE_LIMIT_MAX_CLIENTS,
    ):
        super().__init__(app)
        self._rpm = rpm
        self._prefix = prefix
        self._max_clients = max_clients
        self._window: OrderedDict[str, list[float]] = OrderedDict()

    def _evict_stale(self) -> None:
        while len(self._window) > self._max_clients:
            self._window.popitem(last=False)

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if self._rpm <= 0 or not request.url.path.startswith(self._prefix):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()

        if client_ip in self._window:
            self._window.move_to_end(client_ip)
        else:
            self._window[client_ip] = []
            self._evict_stale()

        window = self._window[client_ip]
        window[:] = [t for t in window if now - t < 60]

        if len(window) >= self._rpm:
            request_id = getattr(request.state, "request_id", "")
            request.app.state.resources.audit.log_rate_limit(client_ip, request_id)
            return error_response(RateLimitError("Rate limit exceeded"), request_id)

        window.append(now)
        return await call_next(request)


# ---------------------------------------------------------------------------
# Middleware: request body size limit
# ---------------------------------------------------------------------------


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose Content-Length exceeds a configurable limit."""

    def __init__(self, app, max_bytes: int = 64 * 1024):  # type: ignore[no-untyped-def]
        super().__init__(app)
        self._max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self._max_bytes:
            return error_response(
                PayloadTooLargeError(
                    "Request body exceeds size limit",
                    details={"maxBytes": self._max_bytes},
                ),
                getattr(request.state, "request_id", ""),
            )
        return await call_next(request)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None, resources: Resources | None = None) -> FastAPI:
    """Create a fully configured FastAPI application.

    Parameters
    ----------
    settings:
        Optional settings override. If *None*, ``get_settings()`` is used.
    resources:
        Optional pre-built resources (custom store, tenant directory).
    """
    settings = settings or (resources.settings if resources else get_settings())

    app = FastAPI(
        title="tenantflags API",
        description="Per-tenant feature flag evaluation and administration",
        version="0.1.0",
        lifespan=_lifespan,
    )

    app.state.resources = resources or Resources(settings=settings)

    register_exception_handlers(app, debug=settings.debug)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    # --- Middleware stack (last added runs first) ---
    rbac_registry = RBACRegistry()
    for entry in settings.rbac_keys:
        rbac_registry.register_key(entry.key_hash, entry.actor, entry.role, entry.description)
    app.state.rbac_registry = rbac_registry

    app.add_middleware(AuthMiddleware, registry=rbac_registry)
    app.add_middleware(RateLimitMiddleware, rpm=settings.admin_rate_limit_rpm)
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    app.add_middleware(RequestLoggingMiddleware)

    # --- Routes ---
    from tenantflags.api.routes.admin import router as admin_router
    from tenantflags.api.routes.flags import router as flags_router
    from tenantflags.api.routes.health import router as health_router
    from tenantflags.api.routes.metrics import router as metrics_router

    app.include_router(health_router)
    app.include_router(flags_router)
    app.include_router(admin_router)
    app.include_router(metrics_router)

    return app


def run() -> None:
    uvicorn.run("tenantflags.api.main:create_app", factory=True, host="0.0.0.0", port=8000)
