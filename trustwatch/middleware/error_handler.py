"""
Global Error Handler Middleware.

Turns unhandled exceptions into structured JSON. Stack traces stay in the
server log, keyed by an error_id the client can quote back.
"""

import traceback
import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from trustwatch.errors import TrustWatchError, ValidationError

logger = structlog.get_logger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Outermost middleware.

    ValidationError → 400 with the error body; anything else → 500 with a
    generic message. Neither ever includes a traceback.
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)

        except ValidationError as exc:
            logger.info("request_rejected", path=request.url.path, error=exc.message)
            return JSONResponse(status_code=400, content={**exc.to_dict(), "status": 400})

        except Exception as exc:
            error_id = str(uuid.uuid4())
            logger.error(
                "unhandled_exception",
                error_id=error_id,
                path=request.url.path,
                method=request.method,
                error=str(exc),
                traceback=traceback.format_exc(),
            )

            body: dict = {
                "error": "An internal error occurred. Please try again later.",
                "error_id": error_id,
                "status": 500,
            }
            if isinstance(exc, TrustWatchError):
                body["error_code"] = exc.error_code.value
            if self.debug:
                body["debug_hint"] = type(exc).__name__
            return JSONResponse(status_code=500, content=body)
