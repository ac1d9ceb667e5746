"""Comment system service layer.

Business logic for:
- Comment creation with validation and mention extraction
- Top-level listings with two-tier reply attachment
- Deep thread views
- Likes, edits with history, soft delete, reports
- Event emission to the post's realtime room

Mention resolution and event emission are secondary effects: their failures
are logged and never undo the primary write.
"""

from datetime import UTC, datetime
from uuid import UUID

import structlog

from threadcast.auth.permissions import UserRole, is_privileged
from threadcast.directory import Directory
from threadcast.realtime.broadcaster import Broadcaster
from threadcast.realtime.models import EventKind, UpdateAction, post_room

from .mentions import MentionResolver
from .models import (
    Comment,
    EditRecord,
    Report,
    ReportReason,
    SortField,
    SortOrder,
    create_comment,
    create_report,
)
from .repository import CommentRepository
from .schemas import (
    REPORT_DESCRIPTION_MAX_LENGTH,
    CommentListResponse,
    CommentResponse,
    LikeResponse,
    PaginationResponse,
    ThreadResponse,
)
from .threads import ThreadBuilder, ThreadNode


logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class CommentError(Exception):
    """Base comment error."""

    def __init__(self, message: str, code: str = "comment_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class CommentValidationError(CommentError):
    """Input rejected before anything was written."""

    def __init__(self, message: str):
        super().__init__(message, "validation_error")


class CommentNotFoundError(CommentError):
    """Comment not found."""

    def __init__(self, message: str = "Comment not found"):
        super().__init__(message, "comment_not_found")


class ParentNotFoundError(CommentError):
    """Reply target does not exist."""

    def __init__(self, message: str = "Parent comment not found"):
        super().__init__(message, "parent_not_found")


class PostNotFoundError(CommentError):
    """Post does not exist."""

    def __init__(self, message: str = "Post not found"):
        super().__init__(message, "post_not_found")


class PermissionDeniedError(CommentError):
    """Permission denied for operation."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, "permission_denied")


class VersionConflictError(CommentError):
    """The comment changed since the caller read it."""

    def __init__(self, message: str = "Comment was modified by someone else"):
        super().__init__(message, "version_conflict")


class DuplicateReportError(CommentError):
    """Same reporter already reported this comment."""

    def __init__(self, message: str = "You already reported this comment"):
        super().__init__(message, "duplicate_report")


# ==============================================================================
# Comment Service
# ==============================================================================


class CommentService:
    """Service for comment management.

    Constructed once per application with its collaborators; nothing here
    reads global state.
    """

    def __init__(
        self,
        repository: CommentRepository,
        directory: Directory,
        broadcaster: Broadcaster | None = None,
        *,
        max_length: int = 1000,
        dedupe_reports: bool = False,
        search_scan_limit: int = 2000,
    ):
        self.repository = repository
        self.directory = directory
        self.broadcaster = broadcaster
        self.max_length = max_length
        self.dedupe_reports = dedupe_reports
        self.search_scan_limit = search_scan_limit
        self.threads = ThreadBuilder(repository)
        self.mentions = MentionResolver(repository, directory)

    # --------------------------------------------------------------------------
    # Validation helpers
    # --------------------------------------------------------------------------

    def validate_content(self, content: str | None) -> str:
        """Trim and bound comment content."""
        text = (content or "").strip()
        if not text:
            msg = "Comment content is required"
            raise CommentValidationError(msg)
        if len(text) > self.max_length:
            msg = f"Comment cannot exceed {self.max_length} characters"
            raise CommentValidationError(msg)
        return text

    async def _get_active(self, comment_id: UUID) -> Comment:
        comment = await self.repository.get(comment_id)
        if comment is None or not comment.is_active:
            raise CommentNotFoundError
        return comment

    # --------------------------------------------------------------------------
    # Create
    # --------------------------------------------------------------------------

    async def create_comment(
        self,
        post_id: UUID,
        author_id: UUID,
        content: str,
        parent_id: UUID | None = None,
    ) -> Comment:
        """Create a comment or reply.

        Raw ``@handles`` are extracted before the write and resolved in the
        background after it, so ``mentions`` is usually empty on return.
        """
        text = self.validate_content(content)

        if not await self.directory.post_exists(post_id):
            raise PostNotFoundError

        if parent_id is not None:
            # Soft-deleted parents stay addressable for threading
            parent = await self.repository.get(parent_id)
            if parent is None:
                raise ParentNotFoundError
            if parent.post_id != post_id:
                msg = "Parent comment belongs to a different post"
                raise CommentValidationError(msg)

        comment = create_comment(
            post_id=post_id,
            author_id=author_id,
            content=text,
            parent_id=parent_id,
            pending_mentions=self.mentions.extract(text),
        )
        await self.repository.insert(comment)

        logger.info(
            "comment_created",
            comment_id=str(comment.comment_id),
            post_id=str(post_id),
            parent_id=str(parent_id) if parent_id else None,
            mention_count=len(comment.pending_mentions),
        )

        self.mentions.schedule(comment)
        await self._announce_new_comment(comment)
        return comment

    # --------------------------------------------------------------------------
    # Reads
    # --------------------------------------------------------------------------

    async def _sorted_top_level(
        self, post_id: UUID, sort_by: SortField, sort_order: SortOrder
    ) -> list[Comment]:
        comments = await self.repository.list_top_level(post_id)
        descending = sort_order == SortOrder.DESC
        if sort_by == SortField.LIKE_COUNT:
            # Ties on like count fall back to newest first
            comments.sort(key=lambda c: (c.created_at, str(c.comment_id)), reverse=True)
            comments.sort(key=lambda c: c.like_count, reverse=descending)
        else:
            comments.sort(
                key=lambda c: (c.created_at, str(c.comment_id)), reverse=descending
            )
        return comments

    async def fetch_top_level(
        self,
        post_id: UUID,
        limit: int = 20,
        skip: int = 0,
        sort_by: SortField = SortField.CREATED_AT,
        sort_order: SortOrder = SortOrder.DESC,
    ) -> list[Comment]:
        """Active top-level comments of a post, sorted and sliced."""
        ordered = await self._sorted_top_level(post_id, sort_by, sort_order)
        return ordered[skip : skip + limit]

    async def fetch_replies_for(
        self, parent_ids: list[UUID], post_id: UUID
    ) -> list[Comment]:
        """Active direct replies of ``parent_ids``, oldest first."""
        return await self.threads.fetch_replies_for(parent_ids, post_id)

    async def fetch_thread(self, comment_id: UUID, max_depth: int) -> ThreadNode:
        """A comment and its subtree down to ``max_depth`` levels.

        A soft-deleted root is returned as a tombstone so its replies stay
        reachable.
        """
        root = await self.repository.get(comment_id)
        if root is None:
            raise CommentNotFoundError
        return await self.threads.build_thread(root, max(0, max_depth))

    async def list_post_comments(
        self,
        post_id: UUID,
        page: int = 1,
        limit: int = 20,
        sort_by: SortField = SortField.CREATED_AT,
        sort_order: SortOrder = SortOrder.DESC,
        viewer_id: UUID | None = None,
    ) -> CommentListResponse:
        """One page of top-level comments with direct replies attached."""
        ordered = await self._sorted_top_level(post_id, sort_by, sort_order)
        skip = (page - 1) * limit
        nodes = await self.threads.attach_replies(post_id, ordered[skip : skip + limit])
        return CommentListResponse(
            comments=[CommentResponse.from_node(n, viewer_id) for n in nodes],
            pagination=PaginationResponse.build(page, limit, len(ordered)),
        )

    async def get_thread(
        self, comment_id: UUID, max_depth: int, viewer_id: UUID | None = None
    ) -> ThreadResponse:
        node = await self.fetch_thread(comment_id, max_depth)
        return ThreadResponse(thread=CommentResponse.from_node(node, viewer_id))

    async def search(
        self,
        query: str,
        post_id: UUID | None = None,
        page: int = 1,
        limit: int = 20,
        viewer_id: UUID | None = None,
    ) -> CommentListResponse:
        """Case-insensitive substring search over active comments.

        Scans at most ``search_scan_limit`` rows.
        """
        needle = query.strip().casefold()
        if not needle:
            msg = "Search query is required"
            raise CommentValidationError(msg)

        rows = await self.repository.scan(post_id, self.search_scan_limit)
        matches = [c for c in rows if needle in c.content.casefold()]
        return self._page(matches, page, limit, viewer_id)

    async def fetch_user_comments(
        self,
        author_id: UUID,
        page: int = 1,
        limit: int = 20,
        viewer_id: UUID | None = None,
    ) -> CommentListResponse:
        """Active comments written by ``author_id``, newest first."""
        rows = await self.repository.list_by_author(author_id, self.search_scan_limit)
        return self._page(rows, page, limit, viewer_id)

    @staticmethod
    def _page(
        comments: list[Comment], page: int, limit: int, viewer_id: UUID | None
    ) -> CommentListResponse:
        comments = sorted(comments, key=lambda c: c.created_at, reverse=True)
        skip = (page - 1) * limit
        return CommentListResponse(
            comments=[
                CommentResponse.from_comment(c, viewer_id, level=0 if c.is_top_level else 1)
                for c in comments[skip : skip + limit]
            ],
            pagination=PaginationResponse.build(page, limit, len(comments)),
        )

    # --------------------------------------------------------------------------
    # Likes
    # --------------------------------------------------------------------------

    async def like(self, comment_id: UUID, user_id: UUID) -> LikeResponse:
        """Add ``user_id`` to the likes. Liking twice changes nothing."""
        comment = await self._get_active(comment_id)
        if user_id not in comment.likes:
            liked_at = datetime.now(UTC)
            await self.repository.add_like(comment, user_id, liked_at)
            comment.likes[user_id] = liked_at
            await self._announce_update(comment, UpdateAction.LIKE, user_id)
        return LikeResponse(likes=comment.like_count, is_liked=True)

    async def unlike(self, comment_id: UUID, user_id: UUID) -> LikeResponse:
        """Remove ``user_id`` from the likes. Unliking twice changes nothing."""
        comment = await self._get_active(comment_id)
        if user_id in comment.likes:
            await self.repository.remove_like(comment, user_id)
            del comment.likes[user_id]
            await self._announce_update(comment, UpdateAction.UNLIKE, user_id)
        return LikeResponse(likes=comment.like_count, is_liked=False)

    # --------------------------------------------------------------------------
    # Edit / delete
    # --------------------------------------------------------------------------

    async def edit(
        self,
        comment_id: UUID,
        actor_id: UUID,
        content: str,
        expected_version: int | None = None,
    ) -> Comment:
        """Replace content, appending the previous content to the history.

        Only the author may edit. With ``expected_version`` the edit fails
        with :class:`VersionConflictError` if someone else wrote first;
        without it the last writer wins.
        """
        text = self.validate_content(content)
        comment = await self._get_active(comment_id)

        if comment.author_id != actor_id:
            msg = "You can only edit your own comments"
            raise PermissionDeniedError(msg)
        if expected_version is not None and comment.version != expected_version:
            raise VersionConflictError

        record = EditRecord(content=comment.content, edited_at=datetime.now(UTC))
        if not await self.repository.update_content(
            comment, text, record, expected_version
        ):
            raise VersionConflictError

        comment.edit_history.append(record)
        comment.content = text
        comment.is_edited = True
        comment.version += 1
        comment.updated_at = record.edited_at

        logger.info(
            "comment_edited",
            comment_id=str(comment_id),
            version=comment.version,
            edit_count=len(comment.edit_history),
        )

        comment.pending_mentions = self.mentions.extract(text)
        self.mentions.schedule(comment)
        await self._announce_update(comment, UpdateAction.EDIT, actor_id)
        return comment

    async def soft_delete(
        self,
        comment_id: UUID,
        actor_id: UUID,
        actor_role: UserRole | str = UserRole.USER,
        expected_version: int | None = None,
    ) -> None:
        """Hide a comment. Replies are left untouched.

        Allowed for the author and for privileged roles.
        """
        comment = await self._get_active(comment_id)

        if comment.author_id != actor_id and not is_privileged(actor_role):
            msg = "You can only delete your own comments"
            raise PermissionDeniedError(msg)
        if expected_version is not None and comment.version != expected_version:
            raise VersionConflictError

        if not await self.repository.soft_delete(comment, actor_id, expected_version):
            raise VersionConflictError

        logger.info(
            "comment_deleted",
            comment_id=str(comment_id),
            post_id=str(comment.post_id),
            by_moderator=comment.author_id != actor_id,
        )

        await self._publish(
            comment.post_id,
            EventKind.COMMENT_DELETED,
            {"comment_id": str(comment_id), "post_id": str(comment.post_id)},
        )

    # --------------------------------------------------------------------------
    # Reports
    # --------------------------------------------------------------------------

    async def report(
        self,
        comment_id: UUID,
        reporter_id: UUID,
        reason: ReportReason | str,
        description: str | None = None,
    ) -> Report:
        """Append a report to the comment's moderation log.

        Repeat reports by the same user are accepted unless
        ``dedupe_reports`` is enabled.
        """
        try:
            reason = ReportReason(reason)
        except ValueError as e:
            msg = f"Invalid report reason: {reason}"
            raise CommentValidationError(msg) from e

        if description is not None:
            description = description.strip() or None
        if description and len(description) > REPORT_DESCRIPTION_MAX_LENGTH:
            msg = (
                f"Report description cannot exceed "
                f"{REPORT_DESCRIPTION_MAX_LENGTH} characters"
            )
            raise CommentValidationError(msg)

        comment = await self._get_active(comment_id)

        if self.dedupe_reports and any(
            r.reporter_id == reporter_id for r in comment.reports
        ):
            raise DuplicateReportError

        report = create_report(reporter_id, reason, description)
        await self.repository.append_report(comment, report)

        logger.info(
            "comment_reported",
            comment_id=str(comment_id),
            reason=reason.value,
            report_count=len(comment.reports) + 1,
        )
        return report

    async def list_reports(self, comment_id: UUID) -> list[Report]:
        """Report log of a comment, including soft-deleted ones."""
        comment = await self.repository.get(comment_id)
        if comment is None:
            raise CommentNotFoundError
        return comment.reports

    # --------------------------------------------------------------------------
    # Realtime
    # --------------------------------------------------------------------------

    async def _publish(self, post_id: UUID, kind: EventKind, payload: dict) -> None:
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.publish(post_room(post_id), kind, payload)
        except Exception as e:
            logger.warning(
                "broadcast_failed",
                post_id=str(post_id),
                kind=kind.value,
                error=str(e),
            )

    async def _announce_new_comment(self, comment: Comment) -> None:
        try:
            comment_count = await self.repository.count_active(comment.post_id)
        except Exception as e:
            logger.warning("comment_count_failed", error=str(e))
            comment_count = None

        await self._publish(
            comment.post_id,
            EventKind.NEW_COMMENT,
            {
                "comment": CommentResponse.from_comment(
                    comment, level=0 if comment.is_top_level else 1
                ).model_dump(mode="json"),
                "post_id": str(comment.post_id),
                "comment_count": comment_count,
            },
        )

    async def _announce_update(
        self, comment: Comment, action: UpdateAction, actor_id: UUID
    ) -> None:
        payload = {
            "comment_id": str(comment.comment_id),
            "likes": comment.like_count,
            "is_liked": comment.is_liked_by(actor_id),
            "action": action.value,
            "actor_id": str(actor_id),
            "version": comment.version,
        }
        if action == UpdateAction.EDIT:
            payload["content"] = comment.content
            payload["is_edited"] = True
        await self._publish(comment.post_id, EventKind.COMMENT_UPDATED, payload)
