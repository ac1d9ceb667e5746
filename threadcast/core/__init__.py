# Core infrastructure
from threadcast.core.context import (
    RequestContext,
    clear_context,
    get_context,
    get_request_id,
    get_user_id,
    set_request_id,
    set_user_id,
)
from threadcast.core.logging import configure_structlog, get_logger
from threadcast.core.middleware import RequestContextMiddleware


__all__ = [
    "RequestContext",
    "RequestContextMiddleware",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_logger",
    "get_request_id",
    "get_user_id",
    "set_request_id",
    "set_user_id",
]
