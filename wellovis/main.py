"""ASGI entrypoint: ``uvicorn wellovis.main:app``."""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from wellovis.api.v1 import (
    accounting,
    consents,
    feedback,
    integrations,
    invitations,
    licenses,
    patients,
    scheduling,
    tenants,
    video,
    waitlist,
    webhooks,
)
from wellovis.core.config import settings
from wellovis.core.exceptions import DomainError
from wellovis.logging_utils import configure_logging, get_current_tenant, request_context

configure_logging()

logger = logging.getLogger(__name__)

ROUTERS = (
    tenants,
    webhooks,
    patients,
    scheduling,
    invitations,
    licenses,
    consents,
    accounting,
    feedback,
    waitlist,
    video,
    integrations,
)

# Probes and Stripe retries must never be throttled.
RATE_LIMIT_EXEMPT_PATHS = frozenset({"/health", "/metrics", "/api/v1/webhooks/stripe"})

REQUEST_COUNTER = Counter(
    "wellovis_api_requests_total",
    "Total number of processed HTTP requests.",
    ["method", "path", "status", "tenant"],
)
REQUEST_LATENCY = Histogram(
    "wellovis_api_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
)


def _tenant_hint(request: Request) -> str | None:
    """Return the ``X-Tenant-ID`` header when it is a well formed UUID."""

    raw = request.headers.get("X-Tenant-ID")
    if not raw:
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        return None


def _route_template(request: Request) -> str:
    # Metrics use the route template, never the raw path.
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class FixedWindowRateLimiter:
    """In-memory request budget per client IP and tenant."""

    def __init__(self, limit: int, window_seconds: int) -> None:
        self.limit = max(1, limit)
        self.window_seconds = max(1, window_seconds)
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str) -> float | None:
        """Count a request. Returns the seconds to wait when over budget."""

        now = time.monotonic()
        async with self._lock:
            count, started = self._windows.get(key, (0, now))
            elapsed = now - started
            if elapsed >= self.window_seconds:
                self._windows[key] = (1, now)
                return None
            if count >= self.limit:
                return self.window_seconds - elapsed
            self._windows[key] = (count + 1, started)
            return None

    def reset(self) -> None:
        self._windows.clear()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind the request id and tenant hint for logging, echo ``X-Request-ID``."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        with request_context(request_id, _tenant_hint(request)):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, limiter: FixedWindowRateLimiter) -> None:  # type: ignore[override]
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.method == "OPTIONS" or request.url.path in RATE_LIMIT_EXEMPT_PATHS:
            return await call_next(request)

        client_host = request.client.host if request.client else "unknown"
        tenant = get_current_tenant()
        retry_after = await self.limiter.hit(f"{client_host}:{tenant}")
        if retry_after is None:
            return await call_next(request)

        logger.warning("rate limit exceeded", extra={"client_ip": client_host, "tenant": tenant})
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Rate limit exceeded"},
            headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
        )


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Structured access log line and Prometheus samples for every request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._observe(request, 500, started, failed=True)
            raise
        self._observe(request, response.status_code, started)
        return response

    @staticmethod
    def _observe(request: Request, status_code: int, started: float, failed: bool = False) -> None:
        elapsed = time.perf_counter() - started
        method = request.method
        path = _route_template(request)
        REQUEST_COUNTER.labels(
            method=method, path=path, status=str(status_code), tenant=get_current_tenant()
        ).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)

        details = {
            "method": method,
            "path": request.url.path,
            "route": path,
            "status_code": status_code,
            "duration_ms": round(elapsed * 1000, 2),
        }
        if failed:
            logger.exception("request failed", extra=details)
        else:
            logger.info("request completed", extra=details)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Translate service-layer errors into their HTTP status."""

    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "domain error",
        extra={"path": request.url.path, "status_code": exc.status_code, "detail": exc.detail},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def health() -> dict[str, str]:
    return {"status": "ok"}


rate_limiter = FixedWindowRateLimiter(
    settings.rate_limit_requests, settings.rate_limit_window_seconds
)


def create_app() -> FastAPI:
    application = FastAPI(title=settings.app_name, version="0.1.0")

    # The last middleware added runs first: request context, access log,
    # CORS, then the rate limiter.
    application.add_middleware(RateLimitMiddleware, limiter=rate_limiter)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(AccessLogMiddleware)
    application.add_middleware(RequestContextMiddleware)

    application.add_exception_handler(DomainError, domain_error_handler)
    application.add_api_route("/metrics", metrics, methods=["GET"])
    application.add_api_route("/health", health, methods=["GET"])
    for module in ROUTERS:
        application.include_router(module.router)
    return application


app = create_app()
