"""Two-phase ``@handle`` mention processing.

Phase 1 runs before the comment is written and only extracts raw handles.
Phase 2 runs after the write as a background task: it looks the handles up in
the directory in one batch and stores the resolved user ids with a second
write. Phase 2 failures are logged and never touch the comment itself, so
``mentions`` may be empty right after creation.
"""

import asyncio
import re
from uuid import UUID

import structlog

from threadcast.directory import Directory

from .models import Comment
from .repository import CommentRepository


logger = structlog.get_logger(__name__)

MENTION_PATTERN = re.compile(r"@(\w+)")


def extract_mentions(content: str) -> list[str]:
    """Return unique handles mentioned in ``content``, in first-seen order.

    >>> extract_mentions("hi @alice and @bob, @alice again")
    ['alice', 'bob']
    """
    return list(dict.fromkeys(MENTION_PATTERN.findall(content)))


class MentionResolutionError(Exception):
    """Directory lookup or mention write failed."""


class MentionResolver:
    """Resolves extracted handles into user ids after a comment is stored."""

    def __init__(self, repository: CommentRepository, directory: Directory):
        self.repository = repository
        self.directory = directory
        self._tasks: set[asyncio.Task] = set()

    def extract(self, content: str) -> list[str]:
        return extract_mentions(content)

    def schedule(self, comment: Comment) -> asyncio.Task | None:
        """Start phase 2 for a stored comment.

        No-op when there is nothing to add and nothing stale to clear.
        """
        if not comment.pending_mentions and not comment.mentions:
            return None
        task = asyncio.create_task(
            self.resolve(comment, list(comment.pending_mentions)),
            name=f"resolve-mentions-{comment.comment_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def resolve(self, comment: Comment, handles: list[str]) -> set[UUID]:
        """Look up ``handles`` and persist the matches.

        Returns the resolved ids; an empty set when resolution failed.
        """
        try:
            matches = await self._lookup(handles)
            resolved = set(matches.values())
            if resolved != comment.mentions:
                await self._store(comment, resolved)
        except MentionResolutionError as e:
            logger.warning(
                "mention_resolution_failed",
                comment_id=str(comment.comment_id),
                handles=handles,
                error=str(e),
            )
            return set()

        unresolved = set(handles) - set(matches)
        if unresolved:
            logger.info(
                "mentions_partially_resolved",
                comment_id=str(comment.comment_id),
                unresolved=sorted(unresolved),
            )
        return resolved

    async def _lookup(self, handles: list[str]) -> dict[str, UUID]:
        try:
            return await self.directory.resolve_usernames(handles)
        except Exception as e:
            raise MentionResolutionError(f"lookup failed: {e}") from e

    async def _store(self, comment: Comment, resolved: set[UUID]) -> None:
        try:
            await self.repository.set_mentions(comment, resolved)
        except Exception as e:
            raise MentionResolutionError(f"write failed: {e}") from e

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all in-flight resolutions (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
