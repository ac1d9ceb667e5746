"""Threaded comment module.

Provides:
- Comments and replies with soft delete and edit history
- Two-phase @mention resolution
- Batched thread assembly
- Append-only reports

Note: Router is not exported here to avoid circular imports.
Import directly from threadcast.comments.router when needed.
"""

from .models import (
    COMMENTS_TABLES_CQL,
    Comment,
    EditRecord,
    Report,
    ReportReason,
    SortField,
    SortOrder,
)
from .repository import (
    CassandraCommentRepository,
    CommentRepository,
    InMemoryCommentRepository,
)
from .service import CommentService


__all__ = [
    "COMMENTS_TABLES_CQL",
    "CassandraCommentRepository",
    "Comment",
    "CommentRepository",
    "CommentService",
    "EditRecord",
    "InMemoryCommentRepository",
    "Report",
    "ReportReason",
    "SortField",
    "SortOrder",
]
