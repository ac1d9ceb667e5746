"""Realtime fan-out of comment events to post rooms.

Note: the WebSocket router is not exported here to avoid circular imports.
Import it from threadcast.realtime.websocket_router.
"""

from .broadcaster import (
    Broadcaster,
    BroadcastError,
    LocalBroadcaster,
    RedisBroadcaster,
    Subscription,
)
from .models import EventKind, RealtimeEvent, UpdateAction, post_room


__all__ = [
    "BroadcastError",
    "Broadcaster",
    "EventKind",
    "LocalBroadcaster",
    "RealtimeEvent",
    "RedisBroadcaster",
    "Subscription",
    "UpdateAction",
    "post_room",
]
