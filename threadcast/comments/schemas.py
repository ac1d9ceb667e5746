"""Pydantic schemas for the comment API.

Request/Response models for:
- Comment CRUD and threaded views
- Likes
- Reports
- Page/limit pagination
"""

import math
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Comment, Report, ReportReason


if TYPE_CHECKING:
    from .threads import ThreadNode


# Content shown in place of a soft-deleted comment
DELETED_PLACEHOLDER = "[deleted]"

REPORT_DESCRIPTION_MAX_LENGTH = 500

# ==============================================================================
# Request Schemas
# ==============================================================================


class CreateCommentRequest(BaseModel):
    """Request to create a new comment.

    Length limits are enforced by the service so the error carries the
    configured maximum.
    """

    post_id: UUID
    content: str
    parent_id: UUID | None = None


class UpdateCommentRequest(BaseModel):
    """Request to edit a comment."""

    content: str
    expected_version: int | None = Field(
        None, ge=1, description="Reject the edit if the comment changed since"
    )


class CreateReportRequest(BaseModel):
    """Request to report a comment."""

    reason: ReportReason
    description: str | None = Field(None, max_length=REPORT_DESCRIPTION_MAX_LENGTH)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str | None) -> str | None:
        """Collapse blank descriptions to None."""
        if v is None:
            return None
        return v.strip() or None


# ==============================================================================
# Response Schemas
# ==============================================================================


class CommentResponse(BaseModel):
    """A comment as seen by one viewer."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    post_id: UUID
    parent_id: UUID | None = None
    author_id: UUID
    content: str
    like_count: int = 0
    is_liked: bool = False
    is_active: bool = True
    is_edited: bool = False
    edit_count: int = 0
    mentions: list[UUID] = Field(default_factory=list)
    version: int = 1
    level: int = 0
    reply_count: int = 0
    replies: list["CommentResponse"] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_comment(
        cls,
        comment: Comment,
        viewer_id: UUID | None = None,
        level: int = 0,
        reply_count: int = 0,
    ) -> "CommentResponse":
        """Create a response from a Comment entity.

        Soft-deleted comments keep their id and position but hide content.
        """
        return cls(
            id=comment.comment_id,
            post_id=comment.post_id,
            parent_id=comment.parent_id,
            author_id=comment.author_id,
            content=comment.content if comment.is_active else DELETED_PLACEHOLDER,
            like_count=comment.like_count,
            is_liked=comment.is_liked_by(viewer_id),
            is_active=comment.is_active,
            is_edited=comment.is_edited,
            edit_count=len(comment.edit_history),
            mentions=sorted(comment.mentions, key=str),
            version=comment.version,
            level=level,
            reply_count=reply_count,
            created_at=comment.created_at,
            updated_at=comment.updated_at,
        )

    @classmethod
    def from_node(
        cls, node: "ThreadNode", viewer_id: UUID | None = None
    ) -> "CommentResponse":
        """Convert a thread node and its subtree."""
        response = cls.from_comment(
            node.comment,
            viewer_id=viewer_id,
            level=node.level,
            reply_count=node.reply_count,
        )
        response.replies = [cls.from_node(r, viewer_id) for r in node.replies]
        return response


class PaginationResponse(BaseModel):
    """Page/limit pagination block."""

    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationResponse":
        return cls(
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit) if limit else 0,
        )


class CommentListResponse(BaseModel):
    """A page of comments."""

    comments: list[CommentResponse]
    pagination: PaginationResponse


class ThreadResponse(BaseModel):
    """A single comment with its nested replies."""

    thread: CommentResponse


class LikeResponse(BaseModel):
    """Like state after a like or unlike."""

    likes: int
    is_liked: bool


class MessageResponse(BaseModel):
    """Simple acknowledgement."""

    success: bool = True
    message: str | None = None


class ReportResponse(BaseModel):
    """A single report entry."""

    reporter_id: UUID
    reason: ReportReason
    description: str | None = None
    reported_at: datetime

    @classmethod
    def from_report(cls, report: Report) -> "ReportResponse":
        return cls(
            reporter_id=report.reporter_id,
            reason=report.reason,
            description=report.description,
            reported_at=report.reported_at,
        )


class ReportListResponse(BaseModel):
    """Report log of one comment."""

    items: list[ReportResponse]
    total: int
