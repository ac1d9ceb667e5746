"""Database models for threaded comments.

Cassandra table definitions for:
- comments: one partition per post, newest first, full record per row
- comments_by_id: pointer from comment id to its row in ``comments``
- comments_by_author: pointer index for per-author listings

Architecture: adjacency list (``parent_id``) with soft delete. Likes live in a
per-user map so a like is a single keyed write and toggles are idempotent.
Edit history and reports are append-only lists of frozen maps.
"""

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class ReportReason(str, Enum):
    """Reasons for reporting a comment."""

    SPAM = "spam"
    HARASSMENT = "harassment"
    HATE_SPEECH = "hate-speech"
    MISINFORMATION = "misinformation"
    INAPPROPRIATE = "inappropriate"
    OTHER = "other"


class SortField(str, Enum):
    """Orderings supported for top-level listings."""

    CREATED_AT = "createdAt"
    LIKE_COUNT = "likeCount"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Partition by post so a post's whole discussion is one partition read
COMMENT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments (
    post_id UUID,
    created_at TIMESTAMP,
    comment_id UUID,
    parent_id UUID,
    author_id UUID,
    content TEXT,
    likes MAP<UUID, TIMESTAMP>,
    is_active BOOLEAN,
    is_edited BOOLEAN,
    edit_history LIST<FROZEN<MAP<TEXT, TEXT>>>,
    mentions SET<UUID>,
    reports LIST<FROZEN<MAP<TEXT, TEXT>>>,
    version INT,
    deleted_at TIMESTAMP,
    deleted_by UUID,
    updated_at TIMESTAMP,
    PRIMARY KEY ((post_id), created_at, comment_id)
) WITH CLUSTERING ORDER BY (created_at DESC, comment_id ASC)
"""

# O(1) lookup of the full primary key from a comment id
COMMENTS_BY_ID_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_id (
    comment_id UUID PRIMARY KEY,
    post_id UUID,
    created_at TIMESTAMP
)
"""

COMMENTS_BY_AUTHOR_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_author (
    author_id UUID,
    created_at TIMESTAMP,
    comment_id UUID,
    post_id UUID,
    PRIMARY KEY ((author_id), created_at, comment_id)
) WITH CLUSTERING ORDER BY (created_at DESC, comment_id ASC)
"""

COMMENTS_TABLES_CQL = [
    COMMENT_TABLE_CQL,
    COMMENTS_BY_ID_TABLE_CQL,
    COMMENTS_BY_AUTHOR_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


def _as_utc(value: datetime | None) -> datetime | None:
    """Cassandra returns naive UTC timestamps."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@dataclass
class EditRecord:
    """Prior content of an edited comment."""

    content: str
    edited_at: datetime

    @classmethod
    def from_map(cls, data: dict[str, str]) -> "EditRecord":
        return cls(
            content=data["content"],
            edited_at=datetime.fromisoformat(data["edited_at"]),
        )

    def to_map(self) -> dict[str, str]:
        return {"content": self.content, "edited_at": self.edited_at.isoformat()}


@dataclass
class Report:
    """A single moderation report."""

    reporter_id: UUID
    reason: ReportReason
    reported_at: datetime
    description: str | None = None

    @classmethod
    def from_map(cls, data: dict[str, str]) -> "Report":
        return cls(
            reporter_id=UUID(data["reporter_id"]),
            reason=ReportReason(data["reason"]),
            reported_at=datetime.fromisoformat(data["reported_at"]),
            description=data.get("description") or None,
        )

    def to_map(self) -> dict[str, str]:
        data = {
            "reporter_id": str(self.reporter_id),
            "reason": self.reason.value,
            "reported_at": self.reported_at.isoformat(),
        }
        if self.description:
            data["description"] = self.description
        return data


@dataclass
class Comment:
    """Comment entity with full details."""

    comment_id: UUID
    post_id: UUID
    author_id: UUID
    content: str
    created_at: datetime
    updated_at: datetime
    parent_id: UUID | None = None
    likes: dict[UUID, datetime] = field(default_factory=dict)
    is_active: bool = True
    is_edited: bool = False
    edit_history: list[EditRecord] = field(default_factory=list)
    mentions: set[UUID] = field(default_factory=set)
    reports: list[Report] = field(default_factory=list)
    version: int = 1
    deleted_at: datetime | None = None
    deleted_by: UUID | None = None
    # Raw @handles found at write time, resolved into ``mentions`` afterwards
    pending_mentions: list[str] = field(default_factory=list, compare=False)

    @property
    def like_count(self) -> int:
        return len(self.likes)

    @property
    def is_top_level(self) -> bool:
        return self.parent_id is None

    def is_liked_by(self, user_id: UUID | None) -> bool:
        return user_id is not None and user_id in self.likes

    def clone(self) -> "Comment":
        """Detached deep copy, so callers never share mutable state."""
        return copy.deepcopy(self)

    @classmethod
    def from_row(cls, row: Any) -> "Comment":
        """Create Comment from Cassandra row."""
        return cls(
            comment_id=row.comment_id,
            post_id=row.post_id,
            author_id=row.author_id,
            content=row.content,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at or row.created_at),
            parent_id=row.parent_id,
            likes={k: _as_utc(v) for k, v in (row.likes or {}).items()},
            is_active=row.is_active if row.is_active is not None else True,
            is_edited=row.is_edited or False,
            edit_history=[EditRecord.from_map(e) for e in row.edit_history or []],
            mentions=set(row.mentions or ()),
            reports=[Report.from_map(r) for r in row.reports or []],
            version=row.version or 1,
            deleted_at=_as_utc(row.deleted_at),
            deleted_by=row.deleted_by,
        )


# ==============================================================================
# Factory Functions
# ==============================================================================


def create_comment(
    post_id: UUID,
    author_id: UUID,
    content: str,
    parent_id: UUID | None = None,
    pending_mentions: list[str] | None = None,
) -> Comment:
    """Create a new comment with default values."""
    now = datetime.now(UTC)
    return Comment(
        comment_id=uuid4(),
        post_id=post_id,
        author_id=author_id,
        content=content,
        created_at=now,
        updated_at=now,
        parent_id=parent_id,
        pending_mentions=list(pending_mentions or []),
    )


def create_report(
    reporter_id: UUID,
    reason: ReportReason,
    description: str | None = None,
) -> Report:
    """Create a new comment report."""
    return Report(
        reporter_id=reporter_id,
        reason=reason,
        reported_at=datetime.now(UTC),
        description=description,
    )
