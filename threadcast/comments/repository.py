# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Comment persistence.

Two interchangeable backends implement :class:`CommentRepository`:

- :class:`CassandraCommentRepository` for deployments
- :class:`InMemoryCommentRepository` for development and tests

Repositories store and fetch; validation, ordering and pagination belong to
the service.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from .models import Comment, EditRecord, Report


if TYPE_CHECKING:
    from cassandra.cluster import Session


class CommentRepository(ABC):
    """Storage contract for comment records.

    Every ``list_*`` method returns active comments only; ``get`` returns
    soft-deleted comments too so they stay addressable by id.
    """

    @abstractmethod
    async def insert(self, comment: Comment) -> None: ...

    @abstractmethod
    async def get(self, comment_id: UUID) -> Comment | None: ...

    @abstractmethod
    async def list_top_level(self, post_id: UUID) -> list[Comment]: ...

    @abstractmethod
    async def list_replies(
        self, post_id: UUID, parent_ids: Iterable[UUID]
    ) -> list[Comment]:
        """Active direct replies to any of ``parent_ids``, in one round trip."""

    @abstractmethod
    async def count_active(self, post_id: UUID) -> int: ...

    @abstractmethod
    async def add_like(
        self, comment: Comment, user_id: UUID, liked_at: datetime
    ) -> None: ...

    @abstractmethod
    async def remove_like(self, comment: Comment, user_id: UUID) -> None: ...

    @abstractmethod
    async def update_content(
        self,
        comment: Comment,
        content: str,
        record: EditRecord,
        expected_version: int | None = None,
    ) -> bool:
        """Replace content and append ``record`` to the history.

        Returns False when ``expected_version`` no longer matches.
        """

    @abstractmethod
    async def soft_delete(
        self,
        comment: Comment,
        deleted_by: UUID,
        expected_version: int | None = None,
    ) -> bool:
        """Mark inactive. Returns False when ``expected_version`` is stale."""

    @abstractmethod
    async def append_report(self, comment: Comment, report: Report) -> None: ...

    @abstractmethod
    async def set_mentions(self, comment: Comment, user_ids: set[UUID]) -> None: ...

    @abstractmethod
    async def list_by_author(self, author_id: UUID, limit: int) -> list[Comment]:
        """Newest first, at most ``limit`` rows examined."""

    @abstractmethod
    async def scan(self, post_id: UUID | None, limit: int) -> list[Comment]:
        """Up to ``limit`` active comments, scoped to a post when given."""


# ==============================================================================
# Cassandra
# ==============================================================================


class CassandraCommentRepository(CommentRepository):
    """Repository on the ``comments`` partition-per-post table."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        self._insert_comment = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.comments
            (post_id, created_at, comment_id, parent_id, author_id, content, likes,
             is_active, is_edited, edit_history, mentions, reports, version,
             updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._insert_by_id = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.comments_by_id
            (comment_id, post_id, created_at) VALUES (?, ?, ?)
        """)

        self._insert_by_author = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.comments_by_author
            (author_id, created_at, comment_id, post_id) VALUES (?, ?, ?, ?)
        """)

        self._get_pointer = self.session.prepare(f"""
            SELECT post_id, created_at FROM {self.keyspace}.comments_by_id
            WHERE comment_id = ?
        """)

        self._get_comment = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.comments
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
        """)

        self._get_comments_by_post = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.comments
            WHERE post_id = ?
        """)

        self._get_comments_by_post_limited = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.comments
            WHERE post_id = ?
            LIMIT ?
        """)

        self._scan_comments = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.comments
            LIMIT ?
        """)

        self._count_flags = self.session.prepare(f"""
            SELECT is_active FROM {self.keyspace}.comments
            WHERE post_id = ?
        """)

        self._get_author_pointers = self.session.prepare(f"""
            SELECT comment_id FROM {self.keyspace}.comments_by_author
            WHERE author_id = ?
            LIMIT ?
        """)

        # Likes are keyed by user inside a map, so concurrent likes never collide
        self._add_like = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET likes[?] = ?
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
        """)

        self._remove_like = self.session.prepare(f"""
            DELETE likes[?] FROM {self.keyspace}.comments
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
        """)

        self._update_content = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET content = ?, is_edited = true, edit_history = edit_history + ?,
                version = ?, updated_at = ?
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
        """)

        self._update_content_if_version = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET content = ?, is_edited = true, edit_history = edit_history + ?,
                version = ?, updated_at = ?
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
            IF version = ?
        """)

        self._soft_delete = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET is_active = false, deleted_at = ?, deleted_by = ?, version = ?,
                updated_at = ?
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
        """)

        self._soft_delete_if_version = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET is_active = false, deleted_at = ?, deleted_by = ?, version = ?,
                updated_at = ?
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
            IF version = ?
        """)

        self._append_report = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET reports = reports + ?
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
        """)

        self._set_mentions = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET mentions = ?
            WHERE post_id = ? AND created_at = ? AND comment_id = ?
        """)

    @staticmethod
    def _key(comment: Comment) -> list:
        return [comment.post_id, comment.created_at, comment.comment_id]

    async def insert(self, comment: Comment) -> None:
        await self.session.aexecute(
            self._insert_comment,
            [
                comment.post_id,
                comment.created_at,
                comment.comment_id,
                comment.parent_id,
                comment.author_id,
                comment.content,
                comment.likes,
                comment.is_active,
                comment.is_edited,
                [e.to_map() for e in comment.edit_history],
                comment.mentions,
                [r.to_map() for r in comment.reports],
                comment.version,
                comment.updated_at,
            ],
        )
        await self.session.aexecute(
            self._insert_by_id,
            [comment.comment_id, comment.post_id, comment.created_at],
        )
        await self.session.aexecute(
            self._insert_by_author,
            [comment.author_id, comment.created_at, comment.comment_id, comment.post_id],
        )

    async def get(self, comment_id: UUID) -> Comment | None:
        pointer = (await self.session.aexecute(self._get_pointer, [comment_id])).one()
        if pointer is None:
            return None
        row = (
            await self.session.aexecute(
                self._get_comment, [pointer.post_id, pointer.created_at, comment_id]
            )
        ).one()
        return Comment.from_row(row) if row else None

    async def _active_rows(self, post_id: UUID) -> list[Comment]:
        rows = await self.session.aexecute(self._get_comments_by_post, [post_id])
        return [Comment.from_row(row) for row in rows if row.is_active is not False]

    async def list_top_level(self, post_id: UUID) -> list[Comment]:
        return [c for c in await self._active_rows(post_id) if c.parent_id is None]

    async def list_replies(
        self, post_id: UUID, parent_ids: Iterable[UUID]
    ) -> list[Comment]:
        wanted = set(parent_ids)
        if not wanted:
            return []
        return [c for c in await self._active_rows(post_id) if c.parent_id in wanted]

    async def count_active(self, post_id: UUID) -> int:
        rows = await self.session.aexecute(self._count_flags, [post_id])
        return sum(1 for row in rows if row.is_active is not False)

    async def add_like(
        self, comment: Comment, user_id: UUID, liked_at: datetime
    ) -> None:
        await self.session.aexecute(
            self._add_like, [user_id, liked_at, *self._key(comment)]
        )

    async def remove_like(self, comment: Comment, user_id: UUID) -> None:
        await self.session.aexecute(self._remove_like, [user_id, *self._key(comment)])

    async def update_content(
        self,
        comment: Comment,
        content: str,
        record: EditRecord,
        expected_version: int | None = None,
    ) -> bool:
        base = [content, [record.to_map()]]
        if expected_version is None:
            await self.session.aexecute(
                self._update_content,
                [*base, comment.version + 1, record.edited_at, *self._key(comment)],
            )
            return True
        result = await self.session.aexecute(
            self._update_content_if_version,
            [
                *base,
                expected_version + 1,
                record.edited_at,
                *self._key(comment),
                expected_version,
            ],
        )
        return bool(result.was_applied)

    async def soft_delete(
        self,
        comment: Comment,
        deleted_by: UUID,
        expected_version: int | None = None,
    ) -> bool:
        now = datetime.now(UTC)
        if expected_version is None:
            await self.session.aexecute(
                self._soft_delete,
                [now, deleted_by, comment.version + 1, now, *self._key(comment)],
            )
            return True
        result = await self.session.aexecute(
            self._soft_delete_if_version,
            [
                now,
                deleted_by,
                expected_version + 1,
                now,
                *self._key(comment),
                expected_version,
            ],
        )
        return bool(result.was_applied)

    async def append_report(self, comment: Comment, report: Report) -> None:
        await self.session.aexecute(
            self._append_report, [[report.to_map()], *self._key(comment)]
        )

    async def set_mentions(self, comment: Comment, user_ids: set[UUID]) -> None:
        await self.session.aexecute(
            self._set_mentions, [user_ids, *self._key(comment)]
        )

    async def list_by_author(self, author_id: UUID, limit: int) -> list[Comment]:
        rows = await self.session.aexecute(
            self._get_author_pointers, [author_id, limit]
        )
        comments = []
        for row in rows:
            comment = await self.get(row.comment_id)
            if comment and comment.is_active:
                comments.append(comment)
        return comments

    async def scan(self, post_id: UUID | None, limit: int) -> list[Comment]:
        if post_id is not None:
            rows = await self.session.aexecute(
                self._get_comments_by_post_limited, [post_id, limit]
            )
        else:
            rows = await self.session.aexecute(self._scan_comments, [limit])
        return [Comment.from_row(row) for row in rows if row.is_active is not False]


# ==============================================================================
# In-memory
# ==============================================================================


class InMemoryCommentRepository(CommentRepository):
    """Dictionary-backed repository.

    Records are copied on the way in and out so the service cannot mutate
    stored state except through repository calls, matching a real store.
    """

    def __init__(self) -> None:
        self._comments: dict[UUID, Comment] = {}
        self._lock = asyncio.Lock()

    async def insert(self, comment: Comment) -> None:
        stored = comment.clone()
        stored.pending_mentions = []
        self._comments[comment.comment_id] = stored

    async def get(self, comment_id: UUID) -> Comment | None:
        comment = self._comments.get(comment_id)
        return comment.clone() if comment else None

    def _active(self, post_id: UUID | None = None) -> list[Comment]:
        return [
            c.clone()
            for c in self._comments.values()
            if c.is_active and (post_id is None or c.post_id == post_id)
        ]

    async def list_top_level(self, post_id: UUID) -> list[Comment]:
        return [c for c in self._active(post_id) if c.parent_id is None]

    async def list_replies(
        self, post_id: UUID, parent_ids: Iterable[UUID]
    ) -> list[Comment]:
        wanted = set(parent_ids)
        return [c for c in self._active(post_id) if c.parent_id in wanted]

    async def count_active(self, post_id: UUID) -> int:
        return sum(
            1 for c in self._comments.values() if c.is_active and c.post_id == post_id
        )

    async def add_like(
        self, comment: Comment, user_id: UUID, liked_at: datetime
    ) -> None:
        self._comments[comment.comment_id].likes[user_id] = liked_at

    async def remove_like(self, comment: Comment, user_id: UUID) -> None:
        self._comments[comment.comment_id].likes.pop(user_id, None)

    async def update_content(
        self,
        comment: Comment,
        content: str,
        record: EditRecord,
        expected_version: int | None = None,
    ) -> bool:
        async with self._lock:
            stored = self._comments[comment.comment_id]
            if expected_version is not None and stored.version != expected_version:
                return False
            stored.edit_history.append(record)
            stored.content = content
            stored.is_edited = True
            stored.version += 1
            stored.updated_at = record.edited_at
            return True

    async def soft_delete(
        self,
        comment: Comment,
        deleted_by: UUID,
        expected_version: int | None = None,
    ) -> bool:
        async with self._lock:
            stored = self._comments[comment.comment_id]
            if expected_version is not None and stored.version != expected_version:
                return False
            now = datetime.now(UTC)
            stored.is_active = False
            stored.deleted_at = now
            stored.deleted_by = deleted_by
            stored.version += 1
            stored.updated_at = now
            return True

    async def append_report(self, comment: Comment, report: Report) -> None:
        self._comments[comment.comment_id].reports.append(report)

    async def set_mentions(self, comment: Comment, user_ids: set[UUID]) -> None:
        self._comments[comment.comment_id].mentions = set(user_ids)

    async def list_by_author(self, author_id: UUID, limit: int) -> list[Comment]:
        mine = sorted(
            (c for c in self._comments.values() if c.author_id == author_id),
            key=lambda c: c.created_at,
            reverse=True,
        )[:limit]
        return [c.clone() for c in mine if c.is_active]

    async def scan(self, post_id: UUID | None, limit: int) -> list[Comment]:
        return self._active(post_id)[:limit]
