"""
Throttle Middleware — applies the adaptive rate limiter at the HTTP edge.

Each request path maps to a route class (longest prefix wins). Requests past
the delay threshold are slowed down; requests past the ceiling get 429 with
Retry-After. Health and docs paths are never throttled.
"""

import asyncio
import json
from typing import Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from trustwatch.service import TrustService

logger = structlog.get_logger(__name__)

EXEMPT_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})

DEFAULT_ROUTE_MAP: dict[str, str] = {
    "/api/auth/login": "auth",
    "/api/auth/register": "auth",
    "/api/auth/forgot-password": "password_reset",
    "/api/auth/reset-password": "password_reset",
    "/api/email": "email",
    "/api/upload": "upload",
    "/api/reviews": "review",
    "/api": "api",
}


def resolve_route_class(path: str, route_map: dict[str, str]) -> Optional[str]:
    best = None
    for prefix in route_map:
        if (path == prefix or path.startswith(prefix.rstrip("/") + "/")) and \
                (best is None or len(prefix) > len(best)):
            best = prefix
    return route_map[best] if best is not None else None


class ThrottleMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        service: TrustService,
        route_map: Optional[dict[str, str]] = None,
        sleep=asyncio.sleep,
    ):
        super().__init__(app)
        self.service = service
        self.route_map = dict(route_map or DEFAULT_ROUTE_MAP)
        self._sleep = sleep

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if path in EXEMPT_PATHS:
            return await call_next(request)

        route_class = resolve_route_class(path, self.route_map)
        if route_class is None:
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        decision = await self.service.check_rate_limit(route_class, client)

        if not decision.allowed:
            return Response(
                status_code=429,
                content=json.dumps({
                    "error": "Too many requests. Please retry later.",
                    "retry_after": decision.retry_after_sec,
                    "status": 429,
                }),
                media_type="application/json",
                headers=decision.to_headers(),
            )

        if decision.delay_ms:
            logger.info("request_slowed", route_class=route_class, delay_ms=decision.delay_ms)
            await self._sleep(decision.delay_ms / 1000)

        response = await call_next(request)
        for name, value in decision.to_headers().items():
            response.headers[name] = value
        return response
