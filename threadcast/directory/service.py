# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""User and post directory lookups."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING
from uuid import UUID


if TYPE_CHECKING:
    from cassandra.cluster import Session


class Directory(ABC):
    """Lookups the comment engine needs from other domains."""

    @abstractmethod
    async def resolve_usernames(self, usernames: Iterable[str]) -> dict[str, UUID]:
        """Map each known username to its user id; unknown names are omitted."""

    @abstractmethod
    async def post_exists(self, post_id: UUID) -> bool:
        """Whether comments may be attached to ``post_id``."""


class CassandraDirectory(Directory):
    """Directory backed by the shared Cassandra keyspace."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_users_by_username = self.session.prepare(f"""
            SELECT username, user_id FROM {self.keyspace}.users_by_username
            WHERE username IN ?
        """)

        self._get_post = self.session.prepare(f"""
            SELECT post_id FROM {self.keyspace}.posts
            WHERE post_id = ?
        """)

    async def resolve_usernames(self, usernames: Iterable[str]) -> dict[str, UUID]:
        names = sorted(set(usernames))
        if not names:
            return {}
        rows = await self.session.aexecute(self._get_users_by_username, [names])
        return {row.username: row.user_id for row in rows if row.user_id}

    async def post_exists(self, post_id: UUID) -> bool:
        result = await self.session.aexecute(self._get_post, [post_id])
        return result.one() is not None


class InMemoryDirectory(Directory):
    """Process-local directory for development and tests.

    When constructed without ``posts`` every post id is accepted, which keeps
    the memory backend usable without a post service.
    """

    def __init__(
        self,
        users: dict[str, UUID] | None = None,
        posts: Iterable[UUID] | None = None,
    ):
        self.users: dict[str, UUID] = dict(users or {})
        self.posts: set[UUID] | None = set(posts) if posts is not None else None

    def add_user(self, username: str, user_id: UUID) -> None:
        self.users[username] = user_id

    def add_post(self, post_id: UUID) -> None:
        if self.posts is None:
            self.posts = set()
        self.posts.add(post_id)

    async def resolve_usernames(self, usernames: Iterable[str]) -> dict[str, UUID]:
        return {name: self.users[name] for name in set(usernames) if name in self.users}

    async def post_exists(self, post_id: UUID) -> bool:
        return self.posts is None or post_id in self.posts
