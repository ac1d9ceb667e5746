"""Request-scoped context carried through contextvars.

Every HTTP request and WebSocket session gets a request id, plus the
authenticated user id once auth has run. Log processors read these values so
service code never has to pass them explicitly.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar] = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "trace_id": trace_id_var,
    "correlation_id": correlation_id_var,
}


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID, generating one when not provided.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    """Get the current user ID."""
    return user_id_var.get()


def set_user_id(user_id: str | UUID | None) -> None:
    """Set the user ID for the current context."""
    user_id_var.set(str(user_id) if user_id is not None else None)


def set_trace_id(trace_id: str | None) -> None:
    """Set the distributed trace ID."""
    trace_id_var.set(trace_id)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID."""
    correlation_id_var.set(correlation_id)


def get_context() -> dict[str, Any]:
    """Return the non-empty context values as a dictionary."""
    return {name: var.get() for name, var in _CONTEXT_VARS.items() if var.get()}


def clear_context() -> None:
    """Reset every context variable.

    Called at the end of each request so values never leak into the next one.
    """
    request_id_var.set("")
    user_id_var.set(None)
    trace_id_var.set(None)
    correlation_id_var.set(None)


class RequestContext:
    """Context manager that scopes context values to a block.

    Used by the WebSocket endpoint, which lives outside the HTTP middleware:

        with RequestContext(user_id=user_id):
            logger.info("post_joined")  # includes request_id and user_id
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | UUID | None = None,
        trace_id: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self._values: dict[str, str | None] = {
            "request_id": request_id or generate_request_id(),
            "user_id": str(user_id) if user_id is not None else None,
            "trace_id": trace_id,
            "correlation_id": correlation_id,
        }
        self._tokens: dict[str, Token] = {}

    @property
    def request_id(self) -> str:
        return self._values["request_id"] or ""

    def __enter__(self) -> "RequestContext":
        for name, value in self._values.items():
            if value is not None:
                self._tokens[name] = _CONTEXT_VARS[name].set(value)
        return self

    def __exit__(self, *_: object) -> None:
        for name, token in self._tokens.items():
            _CONTEXT_VARS[name].reset(token)
        self._tokens.clear()
