"""Comment API endpoints.

Provides routes for:
- Post listings with attached replies
- Deep thread views
- Create, edit and soft delete
- Likes
- Reports and moderation log
- Search and per-user listings
"""

from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Query, status

from threadcast.auth.dependencies import CurrentUser, ModeratorUser, OptionalUser
from threadcast.config import get_settings

from .dependencies import CommentServiceDep, handle_comment_error
from .models import SortField, SortOrder
from .schemas import (
    CommentListResponse,
    CommentResponse,
    CreateCommentRequest,
    CreateReportRequest,
    LikeResponse,
    MessageResponse,
    ReportListResponse,
    ReportResponse,
    ThreadResponse,
    UpdateCommentRequest,
)
from .service import CommentError


logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/v1/comments", tags=["comments"])

SORT_OPTIONS: dict[str, tuple[SortField, SortOrder]] = {
    "newest": (SortField.CREATED_AT, SortOrder.DESC),
    "oldest": (SortField.CREATED_AT, SortOrder.ASC),
    "popular": (SortField.LIKE_COUNT, SortOrder.DESC),
}

PageQuery = Query(default=1, ge=1)
LimitQuery = Query(
    default=settings.comment_default_page_size,
    ge=1,
    le=settings.comment_max_page_size,
)


# ==============================================================================
# Health
# ==============================================================================


@router.get("/health", summary="Comment service health")
async def comments_health(comment_service: CommentServiceDep) -> dict:
    """Liveness of the comment service and its realtime fan-out."""
    return {
        "status": "ok",
        "service": "comments",
        "realtime": comment_service.broadcaster is not None,
        "pending_mention_resolutions": comment_service.mentions.pending,
    }


# ==============================================================================
# Reads
# ==============================================================================


@router.get(
    "/post/{post_id}",
    response_model=CommentListResponse,
    summary="List post comments",
)
async def list_post_comments(
    post_id: UUID,
    comment_service: CommentServiceDep,
    user: OptionalUser,
    page: int = PageQuery,
    limit: int = LimitQuery,
    sort_by: Literal["newest", "oldest", "popular"] = "newest",
) -> CommentListResponse:
    """Get a page of top-level comments with their direct replies attached.

    Replies are oldest first; ``reply_count`` is the number of active
    direct replies.
    """
    field, order = SORT_OPTIONS[sort_by]
    return await comment_service.list_post_comments(
        post_id=post_id,
        page=page,
        limit=limit,
        sort_by=field,
        sort_order=order,
        viewer_id=user.id if user else None,
    )


@router.get(
    "/search",
    response_model=CommentListResponse,
    summary="Search comments",
)
async def search_comments(
    comment_service: CommentServiceDep,
    user: OptionalUser,
    q: str = Query(..., min_length=1, max_length=200),
    post_id: UUID | None = None,
    page: int = PageQuery,
    limit: int = LimitQuery,
) -> CommentListResponse:
    """Case-insensitive substring search, newest first."""
    try:
        return await comment_service.search(
            q,
            post_id=post_id,
            page=page,
            limit=limit,
            viewer_id=user.id if user else None,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e


@router.get(
    "/user/{author_id}",
    response_model=CommentListResponse,
    summary="List a user's comments",
)
async def list_user_comments(
    author_id: UUID,
    comment_service: CommentServiceDep,
    user: OptionalUser,
    page: int = PageQuery,
    limit: int = LimitQuery,
) -> CommentListResponse:
    return await comment_service.fetch_user_comments(
        author_id,
        page=page,
        limit=limit,
        viewer_id=user.id if user else None,
    )


@router.get(
    "/{comment_id}/thread",
    response_model=ThreadResponse,
    summary="Get comment thread",
)
async def get_thread(
    comment_id: UUID,
    comment_service: CommentServiceDep,
    user: OptionalUser,
    max_depth: int = Query(
        default=settings.comment_thread_default_depth,
        ge=0,
        le=settings.comment_thread_max_depth,
    ),
) -> ThreadResponse:
    """Get a comment with its nested replies down to ``max_depth`` levels.

    A soft-deleted root is returned with placeholder content so its replies
    stay reachable.
    """
    try:
        return await comment_service.get_thread(
            comment_id, max_depth, viewer_id=user.id if user else None
        )
    except CommentError as e:
        raise handle_comment_error(e) from e


# ==============================================================================
# Writes
# ==============================================================================


@router.post(
    "",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create comment",
)
async def create_comment(
    data: CreateCommentRequest,
    comment_service: CommentServiceDep,
    user: CurrentUser,
) -> CommentResponse:
    """Create a comment or a reply.

    ``mentions`` is filled in asynchronously after the comment is stored.
    """
    try:
        comment = await comment_service.create_comment(
            post_id=data.post_id,
            author_id=user.id,
            content=data.content,
            parent_id=data.parent_id,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    return CommentResponse.from_comment(
        comment, viewer_id=user.id, level=0 if comment.is_top_level else 1
    )


@router.put(
    "/{comment_id}",
    response_model=CommentResponse,
    summary="Edit comment",
)
async def update_comment(
    comment_id: UUID,
    data: UpdateCommentRequest,
    comment_service: CommentServiceDep,
    user: CurrentUser,
) -> CommentResponse:
    """Edit your own comment. The previous content is kept in the history."""
    try:
        comment = await comment_service.edit(
            comment_id,
            actor_id=user.id,
            content=data.content,
            expected_version=data.expected_version,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    return CommentResponse.from_comment(
        comment, viewer_id=user.id, level=0 if comment.is_top_level else 1
    )


@router.delete(
    "/{comment_id}",
    response_model=MessageResponse,
    summary="Delete comment",
)
async def delete_comment(
    comment_id: UUID,
    comment_service: CommentServiceDep,
    user: CurrentUser,
    expected_version: int | None = Query(default=None, ge=1),
) -> MessageResponse:
    """Soft delete a comment.

    Authors may delete their own comments; moderators and admins may delete
    any. Replies are not affected.
    """
    try:
        await comment_service.soft_delete(
            comment_id,
            actor_id=user.id,
            actor_role=user.role,
            expected_version=expected_version,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    return MessageResponse(message="Comment deleted")


# ==============================================================================
# Likes
# ==============================================================================


@router.post(
    "/{comment_id}/like",
    response_model=LikeResponse,
    summary="Like comment",
)
async def like_comment(
    comment_id: UUID,
    comment_service: CommentServiceDep,
    user: CurrentUser,
) -> LikeResponse:
    try:
        return await comment_service.like(comment_id, user.id)
    except CommentError as e:
        raise handle_comment_error(e) from e


@router.delete(
    "/{comment_id}/like",
    response_model=LikeResponse,
    summary="Unlike comment",
)
async def unlike_comment(
    comment_id: UUID,
    comment_service: CommentServiceDep,
    user: CurrentUser,
) -> LikeResponse:
    try:
        return await comment_service.unlike(comment_id, user.id)
    except CommentError as e:
        raise handle_comment_error(e) from e


# ==============================================================================
# Reports
# ==============================================================================


@router.post(
    "/{comment_id}/report",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Report comment",
)
async def report_comment(
    comment_id: UUID,
    data: CreateReportRequest,
    comment_service: CommentServiceDep,
    user: CurrentUser,
) -> MessageResponse:
    """Report a comment for moderation."""
    try:
        await comment_service.report(
            comment_id,
            reporter_id=user.id,
            reason=data.reason,
            description=data.description,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    return MessageResponse(message="Report submitted")


@router.get(
    "/{comment_id}/reports",
    response_model=ReportListResponse,
    summary="List comment reports (moderators)",
)
async def list_comment_reports(
    comment_id: UUID,
    comment_service: CommentServiceDep,
    _moderator: ModeratorUser,
) -> ReportListResponse:
    try:
        reports = await comment_service.list_reports(comment_id)
    except CommentError as e:
        raise handle_comment_error(e) from e

    return ReportListResponse(
        items=[ReportResponse.from_report(r) for r in reports],
        total=len(reports),
    )
