"""WebSocket client for ``/ws/comments``."""

from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlencode

import orjson
import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from threadcast.realtime.models import EventKind


logger = structlog.get_logger(__name__)

COMMENT_EVENTS = frozenset(kind.value for kind in EventKind)


class CommentsRealtimeClient:
    """Joins post rooms and yields comment events.

    Control frames (``connected``, ``post-joined``, ``ping``...) are handled
    here; :meth:`events` only yields the three comment event kinds.
    """

    def __init__(self, url: str, token: str | None = None):
        self.url = f"{url}?{urlencode({'token': token})}" if token else url
        self._ws: ClientConnection | None = None
        self.joined: set[str] = set()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        if self._ws is None:
            self._ws = await connect(self.url)
            logger.info("realtime_connected")

    async def _send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            msg = "Realtime client is not connected"
            raise RuntimeError(msg)
        await self._ws.send(orjson.dumps(message).decode())

    async def join(self, post_id: str) -> None:
        await self.connect()
        await self._send({"type": "join-post", "post_id": post_id})
        self.joined.add(post_id)

    async def leave(self, post_id: str) -> None:
        self.joined.discard(post_id)
        if self._ws is not None:
            await self._send({"type": "leave-post", "post_id": post_id})

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Comment events until the connection closes.

        A closed connection is dropped, so the next :meth:`join` reconnects.
        """
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                try:
                    frame = orjson.loads(raw)
                except orjson.JSONDecodeError:
                    logger.warning("realtime_frame_invalid")
                    continue
                frame_type = frame.get("type")
                if frame_type in COMMENT_EVENTS:
                    yield frame
                elif frame_type == "ping":
                    await self._send({"type": "pong"})
                elif frame_type == "error":
                    logger.warning("realtime_server_error", message=frame.get("message"))
        except ConnectionClosed as e:
            logger.info("realtime_connection_closed", code=e.rcvd.code if e.rcvd else None)
        else:
            logger.info("realtime_connection_closed", code=ws.close_code)
        if self._ws is ws:
            self._ws = None
            self.joined.clear()

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
            self.joined.clear()
