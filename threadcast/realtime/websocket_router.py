"""WebSocket API for realtime comment updates.

Provides:
- WS /ws/comments - Join/leave post rooms and receive comment events
"""

import asyncio
import contextlib
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from jose import JWTError

from threadcast.auth.security import decode_access_token
from threadcast.config import get_settings
from threadcast.core.context import RequestContext
from threadcast.core.logging import get_logger

from .broadcaster import Broadcaster, BroadcastError, Subscription
from .models import post_room


logger = get_logger(__name__)

router = APIRouter(tags=["comments-ws"])


def authenticate_websocket(token: str) -> UUID | None:
    """Authenticate a WebSocket connection using a JWT token.

    Returns user_id if valid, None otherwise.
    """
    try:
        payload = decode_access_token(token)
        user_id_str = payload.get("sub")
        if user_id_str:
            return UUID(user_id_str)
    except JWTError as e:
        logger.warning("websocket_auth_failed", error=str(e))
    except ValueError as e:
        logger.warning("websocket_auth_invalid_uuid", error=str(e))
    return None


def parse_post_id(value: Any) -> str | None:
    """Canonical post id from a client frame, None if it is not a UUID."""
    try:
        return str(UUID(str(value)))
    except ValueError:
        return None


class RoomConnection:
    """Room memberships of a single WebSocket connection.

    Each joined room owns a subscription and a task forwarding its events to
    the socket. Writes to the socket are serialized.
    """

    def __init__(
        self,
        websocket: WebSocket,
        broadcaster: Broadcaster,
        user_id: UUID | None = None,
    ):
        self.websocket = websocket
        self.broadcaster = broadcaster
        self.user_id = user_id
        self._rooms: dict[str, tuple[Subscription, asyncio.Task]] = {}
        self._send_lock = asyncio.Lock()

    @property
    def rooms(self) -> list[str]:
        return list(self._rooms)

    async def send(self, message: dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def join(self, post_id: str) -> None:
        room = post_room(post_id)
        if room not in self._rooms:
            subscription = await self.broadcaster.subscribe(room)
            task = asyncio.create_task(self._forward(subscription))
            self._rooms[room] = (subscription, task)
            logger.info(
                "post_room_joined",
                room=room,
                user_id=str(self.user_id) if self.user_id else None,
            )
        await self.send({"type": "post-joined", "post_id": post_id})

    async def leave(self, post_id: str) -> None:
        room = post_room(post_id)
        await self._drop(room)
        await self.send({"type": "post-left", "post_id": post_id})

    async def _forward(self, subscription: Subscription) -> None:
        try:
            async for event in subscription:
                await self.send(event.to_message())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "websocket_forward_failed", room=subscription.room, error=str(e)
            )

    async def _drop(self, room: str) -> None:
        entry = self._rooms.pop(room, None)
        if entry is None:
            return
        subscription, task = entry
        await subscription.close()
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("post_room_left", room=room)

    async def close(self) -> None:
        for room in list(self._rooms):
            await self._drop(room)

    async def handle(self, message: Any) -> None:
        """Dispatch one client frame."""
        if not isinstance(message, dict):
            await self.send({"type": "error", "message": "Invalid message"})
            return

        message_type = message.get("type")
        if message_type == "ping":
            await self.send({"type": "pong"})
        elif message_type == "pong":
            pass
        elif message_type in ("join-post", "leave-post"):
            post_id = parse_post_id(message.get("post_id"))
            if post_id is None:
                await self.send({"type": "error", "message": "Invalid post_id"})
            elif message_type == "join-post":
                try:
                    await self.join(post_id)
                except BroadcastError as e:
                    logger.warning("post_room_join_failed", error=str(e))
                    await self.send(
                        {"type": "error", "message": "Realtime unavailable"}
                    )
            else:
                await self.leave(post_id)
        else:
            await self.send(
                {"type": "error", "message": f"Unknown message type: {message_type}"}
            )


@router.websocket("/ws/comments")
async def comments_websocket(
    websocket: WebSocket,
    token: str | None = Query(None, description="Optional JWT access token"),
) -> None:
    """WebSocket endpoint for realtime comment events.

    Connect with: ws://host/ws/comments[?token=<jwt_token>]

    Messages you can send:
    - {"type": "join-post", "post_id": "..."}
    - {"type": "leave-post", "post_id": "..."}
    - {"type": "ping"}

    Messages received:
    - {"type": "connected"}
    - {"type": "post-joined" | "post-left", "post_id": "..."}
    - {"type": "new-comment" | "comment-updated" | "comment-deleted",
       "post_id": "...", "seq": N, "data": {...}}
    - {"type": "ping"} - Keep-alive ping
    - {"type": "error", "message": "..."}
    """
    user_id = None
    if token:
        user_id = authenticate_websocket(token)
        if not user_id:
            await websocket.close(code=4001, reason="Authentication failed")
            return

    broadcaster = getattr(websocket.app.state, "broadcaster", None)
    if broadcaster is None:
        await websocket.close(code=1013, reason="Realtime unavailable")
        return

    await websocket.accept()
    connection = RoomConnection(websocket, broadcaster, user_id)
    with RequestContext(user_id=user_id):
        await _serve(websocket, connection)


async def _serve(websocket: WebSocket, connection: RoomConnection) -> None:
    user_id_str = str(connection.user_id) if connection.user_id else None
    logger.info("websocket_connected", user_id=user_id_str)

    try:
        await connection.send(
            {
                "type": "connected",
                "user_id": user_id_str,
                "message": "Connected to comments stream",
            }
        )

        # Keep-alive ping loop
        ping_interval = get_settings().realtime_ping_interval
        last_ping = asyncio.get_running_loop().time()

        while True:
            try:
                message = await asyncio.wait_for(
                    websocket.receive_json(),
                    timeout=ping_interval,
                )
            except TimeoutError:
                current_time = asyncio.get_running_loop().time()
                if current_time - last_ping >= ping_interval:
                    await connection.send({"type": "ping"})
                    last_ping = current_time
                continue
            except ValueError:
                await connection.send({"type": "error", "message": "Invalid JSON"})
                continue

            await connection.handle(message)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning("websocket_error", user_id=user_id_str, error=str(e))
    finally:
        await connection.close()
        logger.info("websocket_disconnected", user_id=user_id_str)
