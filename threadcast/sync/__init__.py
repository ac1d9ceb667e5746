"""Client-side synchronization of a post's comment tree.

Merges HTTP pages, realtime events and optimistic writes into one view.
"""

from .api_client import CommentsApiClient
from .engine import ClientSyncEngine
from .errors import (
    ApiError,
    ErrorCategory,
    PendingCommentError,
    SessionExpiredError,
    SyncError,
    categorize_error,
)
from .expansion import (
    DEFAULT_REPLY_WINDOW,
    expansion_from_url,
    expansion_to_url,
    parse_expansion,
    serialize_expansion,
)
from .realtime_client import CommentsRealtimeClient
from .tree import CommentNode


__all__ = [
    "DEFAULT_REPLY_WINDOW",
    "ApiError",
    "ClientSyncEngine",
    "CommentNode",
    "CommentsApiClient",
    "CommentsRealtimeClient",
    "ErrorCategory",
    "PendingCommentError",
    "SessionExpiredError",
    "SyncError",
    "categorize_error",
    "expansion_from_url",
    "expansion_to_url",
    "parse_expansion",
    "serialize_expansion",
]
