"""Thread assembly from flat comment rows.

Two shapes are built:

- the two-tier listing page: top-level comments plus their direct replies,
  using one batched replies query for the whole page
- the deep thread view: a breadth-first walk that issues one query per depth
  level, so the cost is bounded by ``max_depth`` rather than by node count

Replies are always ordered oldest first.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

from .models import Comment
from .repository import CommentRepository


@dataclass
class ThreadNode:
    """A comment placed in a tree, with its depth and attached replies."""

    comment: Comment
    level: int = 0
    replies: list["ThreadNode"] = field(default_factory=list)
    reply_count: int = 0

    def walk(self) -> Iterable["ThreadNode"]:
        yield self
        for reply in self.replies:
            yield from reply.walk()


def reply_order(comment: Comment) -> tuple:
    return (comment.created_at, str(comment.comment_id))


def group_by_parent(replies: Iterable[Comment]) -> dict[UUID, list[Comment]]:
    """Group replies under their parent id, each group oldest first."""
    grouped: dict[UUID, list[Comment]] = defaultdict(list)
    for reply in replies:
        if reply.parent_id is not None:
            grouped[reply.parent_id].append(reply)
    for group in grouped.values():
        group.sort(key=reply_order)
    return dict(grouped)


class ThreadBuilder:
    """Builds trees on top of a :class:`CommentRepository`."""

    def __init__(self, repository: CommentRepository):
        self.repository = repository

    async def fetch_replies_for(
        self, parent_ids: Iterable[UUID], post_id: UUID
    ) -> list[Comment]:
        """All active direct replies of ``parent_ids`` in a single query."""
        ids = list(dict.fromkeys(parent_ids))
        if not ids:
            return []
        replies = await self.repository.list_replies(post_id, ids)
        return sorted(replies, key=reply_order)

    async def attach_replies(
        self, post_id: UUID, top_level: list[Comment]
    ) -> list[ThreadNode]:
        """Attach direct replies to a page of top-level comments."""
        replies = await self.fetch_replies_for(
            (c.comment_id for c in top_level), post_id
        )
        grouped = group_by_parent(replies)

        nodes = []
        for comment in top_level:
            children = grouped.get(comment.comment_id, [])
            nodes.append(
                ThreadNode(
                    comment=comment,
                    level=0,
                    replies=[ThreadNode(comment=c, level=1) for c in children],
                    reply_count=len(children),
                )
            )
        return nodes

    async def build_thread(self, root: Comment, max_depth: int) -> ThreadNode:
        """Resolve the subtree under ``root`` down to ``max_depth`` levels.

        Nodes on the deepest level carry a ``reply_count`` but no ``replies``
        so clients can tell when a deeper fetch would return more.
        """
        root_node = ThreadNode(comment=root, level=0)
        frontier = [root_node]
        depth = 0

        while frontier and depth < max_depth:
            by_id = {node.comment.comment_id: node for node in frontier}
            grouped = group_by_parent(
                await self.repository.list_replies(root.post_id, by_id)
            )
            depth += 1
            frontier = []
            for parent_id, children in grouped.items():
                parent = by_id[parent_id]
                parent.replies = [ThreadNode(comment=c, level=depth) for c in children]
                parent.reply_count = len(children)
                frontier.extend(parent.replies)

        if frontier:
            by_id = {node.comment.comment_id: node for node in frontier}
            grouped = group_by_parent(
                await self.repository.list_replies(root.post_id, by_id)
            )
            for parent_id, children in grouped.items():
                by_id[parent_id].reply_count = len(children)

        return root_node
