"""
TrustWatch HTTP surface.

Run: uvicorn trustwatch.api:app --host 0.0.0.0 --port 8002

  - GET  /health                     ← health check (audited)
  - POST /compliance/run             ← run the check battery now
  - GET  /compliance/report?period=  ← 1h | 24h | 7d | 30d
  - GET  /audit/events               ← newest audit events
  - GET  /audit/analytics?period=
  - GET  /accounts/{identity}/lock   ← lockout status
  - POST /accounts/{identity}/unlock ← administrative unlock
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request

from trustwatch.audit import AuditCategory
from trustwatch.config import settings
from trustwatch.middleware.error_handler import ErrorHandlerMiddleware
from trustwatch.middleware.throttle import ThrottleMiddleware
from trustwatch.observability import configure_logging
from trustwatch.service import TrustService

logger = structlog.get_logger(__name__)


def create_app(service: Optional[TrustService] = None, schedule: bool = True) -> FastAPI:
    """Create the FastAPI app around one TrustService."""
    service = service or TrustService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("trustwatch_api_starting", version=service.settings.app_version)
        await service.start(schedule=schedule)
        yield
        await service.shutdown()
        logger.info("trustwatch_api_shutdown")

    app = FastAPI(
        title="TrustWatch",
        version=service.settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if service.settings.debug else None,
        redoc_url=None,
    )
    app.state.trust = service

    # ── Middleware (last added = outermost) ──
    app.add_middleware(ThrottleMiddleware, service=service)
    app.add_middleware(ErrorHandlerMiddleware, debug=service.settings.debug)

    # ── Routes ──

    @app.get("/health", tags=["health"])
    async def health(request: Request):
        return await request.app.state.trust.health_check()

    @app.post("/compliance/run", tags=["compliance"])
    async def run_compliance(request: Request):
        run = await request.app.state.trust.run_checks()
        return run.model_dump(mode="json")

    @app.get("/compliance/report", tags=["compliance"])
    async def compliance_report(request: Request, period: str = "24h"):
        report = request.app.state.trust.generate_report(period)
        return report.model_dump(mode="json")

    @app.get("/audit/events", tags=["audit"])
    async def audit_events(
        request: Request, category: Optional[AuditCategory] = None, limit: int = 50
    ):
        events = await request.app.state.trust.recent_events(category, limit=limit)
        return [e.model_dump(mode="json") for e in events]

    @app.get("/audit/analytics", tags=["audit"])
    async def analytics(request: Request, period: str = "24h"):
        return await request.app.state.trust.audit_analytics(period)

    @app.get("/accounts/{identity}/lock", tags=["accounts"])
    async def lock_status(request: Request, identity: str):
        return request.app.state.trust.is_locked(identity).to_dict()

    @app.post("/accounts/{identity}/unlock", tags=["accounts"])
    async def unlock(request: Request, identity: str):
        removed = await request.app.state.trust.unlock_account(identity)
        return {"identity": identity.lower(), "unlocked": removed}

    return app


def _build_default_app() -> FastAPI:
    configure_logging(settings.log_level, settings.log_format)
    return create_app()


app = _build_default_app()
