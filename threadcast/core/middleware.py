"""HTTP middleware binding request ids to the logging context."""

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from threadcast.core.context import (
    clear_context,
    set_correlation_id,
    set_request_id,
    set_trace_id,
)


logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
TRACE_ID_HEADER = "X-Trace-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"
TRACEPARENT_HEADER = "traceparent"


def _traceparent_id(traceparent: str | None) -> str | None:
    """Trace id field of a W3C ``traceparent`` header."""
    if not traceparent:
        return None
    parts = traceparent.split("-")
    return parts[1] if len(parts) >= 2 else None


def bind_request_context(request: Request) -> str:
    """Copy tracing headers into the context; returns the request id."""
    headers = request.headers
    request_id = set_request_id(headers.get(REQUEST_ID_HEADER))

    trace_id = headers.get(TRACE_ID_HEADER) or _traceparent_id(
        headers.get(TRACEPARENT_HEADER)
    )
    if trace_id:
        set_trace_id(trace_id)
    if correlation_id := headers.get(CORRELATION_ID_HEADER):
        set_correlation_id(correlation_id)

    request.state.request_id = request_id
    return request_id


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id propagation and timing logs for every HTTP request.

    The id comes from ``X-Request-ID`` when present and is echoed on the
    response. Paths under ``exclude_paths`` are served without timing logs.
    """

    def __init__(
        self,
        app: ASGIApp,
        log_requests: bool = True,
        exclude_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.log_requests = log_requests
        self.exclude_paths = tuple(exclude_paths or ["/health"])

    def _logged(self, path: str) -> bool:
        return self.log_requests and not path.startswith(self.exclude_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        started = time.perf_counter()
        request_id = bind_request_context(request)
        path = request.url.path
        logged = self._logged(path)

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        if logged:
            logger.info(
                "request_started",
                method=request.method,
                path=path,
                query=str(request.query_params) or None,
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "request_failed",
                method=request.method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=elapsed_ms(),
            )
            raise
        else:
            if logged:
                log = logger.warning if response.status_code >= 400 else logger.info
                log(
                    "request_completed",
                    method=request.method,
                    path=path,
                    status_code=response.status_code,
                    duration_ms=elapsed_ms(),
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()
