"""Client-side errors and user-facing error categories."""

from enum import Enum

import httpx


class ErrorCategory(str, Enum):
    """What the user should be told about a failed request."""

    LOGIN_REQUIRED = "login_required"
    CONTENT_TOO_LONG = "content_too_long"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    NETWORK = "network"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.LOGIN_REQUIRED: "Please log in to continue.",
    ErrorCategory.CONTENT_TOO_LONG: "Comment is too long.",
    ErrorCategory.NOT_FOUND: "This comment is no longer available.",
    ErrorCategory.FORBIDDEN: "You can't do that to this comment.",
    ErrorCategory.CONFLICT: "This comment changed. Refresh and try again.",
    ErrorCategory.NETWORK: "Connection problem. Try again.",
    ErrorCategory.UNKNOWN: "Something went wrong.",
}


class SyncError(Exception):
    """Base client sync error."""

    def __init__(self, message: str, code: str = "sync_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class SessionExpiredError(SyncError):
    """The access token was rejected; the user has to sign in again."""

    def __init__(self, message: str = "Session expired"):
        super().__init__(message, "session_expired")


class ApiError(SyncError):
    """Non-success response from the comment API."""

    def __init__(self, status_code: int, message: str, code: str = "api_error"):
        self.status_code = status_code
        super().__init__(message, code)


class PendingCommentError(SyncError):
    """Mutation attempted on an optimistic entry the server has not confirmed."""

    def __init__(self, message: str = "Comment is being posted"):
        super().__init__(message, "comment_pending")


def categorize_error(error: BaseException) -> ErrorCategory:
    """Map an exception raised by a sync operation to a user-facing category."""
    if isinstance(error, SessionExpiredError):
        return ErrorCategory.LOGIN_REQUIRED
    if isinstance(error, httpx.TransportError):
        return ErrorCategory.NETWORK
    if isinstance(error, ApiError):
        if error.status_code == 401:
            return ErrorCategory.LOGIN_REQUIRED
        if error.status_code == 400 and "exceed" in error.message.lower():
            return ErrorCategory.CONTENT_TOO_LONG
        if error.status_code == 404:
            return ErrorCategory.NOT_FOUND
        if error.status_code == 403:
            return ErrorCategory.FORBIDDEN
        if error.status_code == 409:
            return ErrorCategory.CONFLICT
        if error.code == "network_error":
            return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


def user_message(error: BaseException) -> str:
    return USER_MESSAGES[categorize_error(error)]
