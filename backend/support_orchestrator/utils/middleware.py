"""
HTTP middleware: request correlation, timing and a last-resort error body.
"""
import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Correlation id for every request.

    A caller-supplied ``X-Request-ID`` is kept; otherwise a uuid4 is issued.
    The id lands on ``request.state.request_id`` and is echoed back.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Reports handling time in ``X-Process-Time`` and logs slow requests."""

    def __init__(self, app, slow_threshold: float = 1.0):
        super().__init__(app)
        self.slow_threshold = slow_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        if elapsed > self.slow_threshold:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} took {elapsed:.2f}s",
                extra={"request_id": getattr(request.state, "request_id", None)}
            )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Turns exceptions that escaped every exception handler into a JSON 500
    with the usual ``{error, message, request_id}`` body.
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.error(
                f"Unhandled {type(e).__name__} on {request.method} {request.url.path}: {e}",
                exc_info=True,
                extra={"request_id": request_id}
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(e) if self.debug else "An unexpected error occurred",
                    "request_id": request_id
                }
            )


__all__ = ['RequestIDMiddleware', 'TimingMiddleware', 'ErrorHandlingMiddleware', 'REQUEST_ID_HEADER']
