"""Tests for two-phase @mention handling."""

from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

from threadcast.comments.mentions import extract_mentions
from threadcast.comments.repository import InMemoryCommentRepository
from threadcast.comments.service import CommentService
from threadcast.directory import InMemoryDirectory


class TestExtractMentions:
    """Tests for handle extraction."""

    def test_unique_in_order(self) -> None:
        """Handles are deduplicated and keep first-seen order."""
        assert extract_mentions("hi @bob and @alice, @bob again") == ["bob", "alice"]

    def test_word_characters_only(self) -> None:
        """Punctuation ends a handle."""
        assert extract_mentions("ping @carol! and @dave_2.") == ["carol", "dave_2"]

    def test_no_mentions(self) -> None:
        """Plain text has no handles."""
        assert extract_mentions("no handles here") == []


class TestMentionResolution:
    """Tests for background resolution after create."""

    @pytest.mark.asyncio
    async def test_mentions_resolved_after_create(
        self,
        comment_service: CommentService,
        repository: InMemoryCommentRepository,
        directory: InMemoryDirectory,
        post_id: UUID,
    ):
        """'Hello @alice' by bob gets alice's id once resolution finishes."""
        alice_id, bob_id = uuid4(), uuid4()
        directory.add_user("alice", alice_id)

        comment = await comment_service.create_comment(post_id, bob_id, "Hello @alice")
        assert comment.pending_mentions == ["alice"]
        assert comment.mentions == set()

        await comment_service.mentions.drain()

        stored = await repository.get(comment.comment_id)
        assert stored.mentions == {alice_id}

    @pytest.mark.asyncio
    async def test_partial_match_keeps_known_handles(
        self,
        comment_service: CommentService,
        repository: InMemoryCommentRepository,
        directory: InMemoryDirectory,
        post_id: UUID,
        user_id: UUID,
    ):
        """Unknown handles are dropped, known ones stored."""
        alice_id = uuid4()
        directory.add_user("alice", alice_id)

        comment = await comment_service.create_comment(
            post_id, user_id, "@alice meet @ghost"
        )
        await comment_service.mentions.drain()

        stored = await repository.get(comment.comment_id)
        assert stored.mentions == {alice_id}

    @pytest.mark.asyncio
    async def test_lookup_failure_keeps_comment(
        self,
        comment_service: CommentService,
        repository: InMemoryCommentRepository,
        directory: InMemoryDirectory,
        post_id: UUID,
        user_id: UUID,
    ):
        """A directory outage never fails or rolls back the comment."""
        directory.resolve_usernames = AsyncMock(side_effect=RuntimeError("down"))

        comment = await comment_service.create_comment(post_id, user_id, "hey @alice")
        await comment_service.mentions.drain()

        stored = await repository.get(comment.comment_id)
        assert stored is not None
        assert stored.is_active is True
        assert stored.mentions == set()

    @pytest.mark.asyncio
    async def test_write_failure_is_contained(
        self,
        comment_service: CommentService,
        repository: InMemoryCommentRepository,
        directory: InMemoryDirectory,
        post_id: UUID,
        user_id: UUID,
    ):
        """A failing mention write is logged and the resolver returns nothing."""
        directory.add_user("alice", uuid4())
        repository.set_mentions = AsyncMock(side_effect=RuntimeError("write failed"))

        comment = await comment_service.create_comment(post_id, user_id, "hi @alice")
        resolved = await comment_service.mentions.resolve(comment, ["alice"])
        assert resolved == set()
        await comment_service.mentions.drain()

    @pytest.mark.asyncio
    async def test_edit_clears_stale_mentions(
        self,
        comment_service: CommentService,
        repository: InMemoryCommentRepository,
        directory: InMemoryDirectory,
        post_id: UUID,
        user_id: UUID,
    ):
        """Removing a handle in an edit removes the resolved mention."""
        directory.add_user("alice", uuid4())
        comment = await comment_service.create_comment(post_id, user_id, "hi @alice")
        await comment_service.mentions.drain()

        await comment_service.edit(comment.comment_id, user_id, "hi everyone")
        await comment_service.mentions.drain()

        stored = await repository.get(comment.comment_id)
        assert stored.mentions == set()

    @pytest.mark.asyncio
    async def test_no_handles_schedules_nothing(
        self,
        comment_service: CommentService,
        post_id: UUID,
        user_id: UUID,
    ):
        """Comments without handles never start a resolution task."""
        await comment_service.create_comment(post_id, user_id, "plain")
        assert comment_service.mentions.pending == 0
