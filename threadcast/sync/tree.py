"""In-memory comment tree kept by a client.

Nodes are addressed by id. Every operation walks the tree recursively and
touches only the matching node; siblings and unrelated subtrees keep their
identity and position.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field, fields
from typing import Any


TEMP_PREFIX = "temp-"


@dataclass
class CommentNode:
    """A comment as rendered by the client."""

    id: str
    post_id: str
    author_id: str
    content: str
    parent_id: str | None = None
    like_count: int = 0
    is_liked: bool = False
    is_active: bool = True
    is_edited: bool = False
    version: int = 1
    level: int = 0
    reply_count: int = 0
    created_at: str | None = None
    replies: list["CommentNode"] = field(default_factory=list)
    # Optimistic entry not yet confirmed by the server
    pending: bool = False

    @property
    def is_temp(self) -> bool:
        return is_temp_id(self.id)


# Fields taken from server data when reconciling an existing node
SERVER_FIELDS = tuple(
    f.name for f in fields(CommentNode) if f.name not in ("replies", "pending")
)
# Only listing and thread payloads count replies; single comments report 0
COUNT_FIELDS = ("reply_count",)


def is_temp_id(comment_id: str) -> bool:
    return comment_id.startswith(TEMP_PREFIX)


def node_from_payload(data: dict[str, Any], level: int | None = None) -> CommentNode:
    """Build a node (and its replies) from a comment JSON object."""
    node_level = data.get("level", 0) if level is None else level
    return CommentNode(
        id=str(data["id"]),
        post_id=str(data["post_id"]),
        author_id=str(data["author_id"]),
        content=data.get("content", ""),
        parent_id=str(data["parent_id"]) if data.get("parent_id") else None,
        like_count=int(data.get("like_count", 0)),
        is_liked=bool(data.get("is_liked", False)),
        is_active=bool(data.get("is_active", True)),
        is_edited=bool(data.get("is_edited", False)),
        version=int(data.get("version", 1)),
        level=node_level,
        reply_count=int(data.get("reply_count", 0)),
        created_at=data.get("created_at"),
        replies=[
            node_from_payload(r, node_level + 1) for r in data.get("replies") or []
        ],
    )


def walk(nodes: list[CommentNode]) -> Iterator[CommentNode]:
    """Depth-first over ``nodes`` and all their replies."""
    for node in nodes:
        yield node
        yield from walk(node.replies)


def find_node(nodes: list[CommentNode], comment_id: str) -> CommentNode | None:
    for node in walk(nodes):
        if node.id == comment_id:
            return node
    return None


def find_parent(nodes: list[CommentNode], comment_id: str) -> CommentNode | None:
    """Node whose ``replies`` contains ``comment_id``; None for top level."""
    for node in walk(nodes):
        if any(r.id == comment_id for r in node.replies):
            return node
    return None


def update_node(nodes: list[CommentNode], comment_id: str, **changes: Any) -> bool:
    """Set ``changes`` on the node with ``comment_id``.

    Returns False when the id is not in the tree.
    """
    node = find_node(nodes, comment_id)
    if node is None:
        return False
    for name, value in changes.items():
        setattr(node, name, value)
    return True


def remove_node(nodes: list[CommentNode], comment_id: str) -> CommentNode | None:
    """Detach a node with its subtree and return it.

    Only the direct parent loses a reply from its count.
    """
    parent = find_parent(nodes, comment_id)
    siblings = nodes if parent is None else parent.replies
    for index, node in enumerate(siblings):
        if node.id == comment_id:
            if parent is not None:
                parent.reply_count = max(0, parent.reply_count - 1)
            return siblings.pop(index)
    return None


def apply_server_fields(
    target: CommentNode, source: CommentNode, *, keep_counts: bool = False
) -> None:
    """Copy server-owned fields from ``source``; ``target`` keeps its replies.

    ``keep_counts`` leaves ``reply_count`` alone, for payloads describing a
    single comment rather than a listing or thread.
    """
    for name in SERVER_FIELDS:
        if keep_counts and name in COUNT_FIELDS:
            continue
        setattr(target, name, getattr(source, name))
    target.pending = False


def merge_replies(
    existing: list[CommentNode], incoming: list[CommentNode]
) -> list[CommentNode]:
    """Merge a freshly fetched reply list into the one already shown.

    Existing entries keep their place and take the incoming fields; new
    entries are appended in incoming order. Nested replies merge the same way.
    """
    by_id = {node.id: node for node in existing}
    merged = list(existing)
    for node in incoming:
        current = by_id.get(node.id)
        if current is None:
            merged.append(node)
            by_id[node.id] = node
            continue
        apply_server_fields(current, node)
        if node.replies:
            current.replies = merge_replies(current.replies, node.replies)
    return merged
