"""Comment lifecycle events and room naming."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID


class EventKind(str, Enum):
    """Events emitted to a post's room."""

    NEW_COMMENT = "new-comment"
    COMMENT_UPDATED = "comment-updated"
    COMMENT_DELETED = "comment-deleted"


class UpdateAction(str, Enum):
    """What changed in a ``comment-updated`` event."""

    LIKE = "like"
    UNLIKE = "unlike"
    EDIT = "edit"


ROOM_PREFIX = "post:"


def post_room(post_id: UUID | str) -> str:
    """Room carrying every event of one post."""
    return f"{ROOM_PREFIX}{post_id}"


def post_id_from_room(room: str) -> str | None:
    if not room.startswith(ROOM_PREFIX):
        return None
    return room[len(ROOM_PREFIX) :]


@dataclass(frozen=True)
class RealtimeEvent:
    """One event as delivered to subscribers.

    ``sequence`` increases per room in publish order within one publisher.
    """

    room: str
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)
    sequence: int = 0

    def to_message(self) -> dict[str, Any]:
        """Wire frame sent to WebSocket clients."""
        return {
            "type": self.kind.value,
            "post_id": post_id_from_room(self.room),
            "seq": self.sequence,
            "data": self.payload,
        }

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "RealtimeEvent":
        """Inverse of :meth:`to_message`.

        Raises:
            ValueError: If the frame is not a comment event.
        """
        try:
            kind = EventKind(message["type"])
            post_id = message["post_id"]
        except (KeyError, ValueError) as e:
            msg = f"not a comment event: {message!r}"
            raise ValueError(msg) from e
        return cls(
            room=post_room(post_id),
            kind=kind,
            payload=dict(message.get("data") or {}),
            sequence=int(message.get("seq", 0)),
        )
