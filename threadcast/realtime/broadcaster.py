"""Publish/subscribe fan-out of comment events.

A :class:`Broadcaster` exposes ``publish(room, kind, payload)`` and
``subscribe(room)``; a subscription is an async iterator of events.

Delivery is at-most-once and non-durable. Each subscriber owns a bounded
queue; when it is full the event is dropped for that subscriber and a warning
is logged. Clients that miss events rejoin and refetch. Events for one room
reach each subscriber in publish order.
"""

import asyncio
import contextlib
import itertools
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import orjson
import structlog

from threadcast.core.redis import comment_channel

from .models import EventKind, RealtimeEvent


if TYPE_CHECKING:
    from redis.asyncio import Redis


logger = structlog.get_logger(__name__)

_CLOSED = object()


class BroadcastError(Exception):
    """An event could not be handed to the fan-out backend."""


class Subscription:
    """Bounded event stream for one room.

    Iterate with ``async for``; iteration ends once :meth:`close` is called.
    Usable as an async context manager.
    """

    def __init__(
        self,
        room: str,
        maxsize: int,
        on_close: Callable[["Subscription"], None] | None = None,
    ):
        self.room = room
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: RealtimeEvent) -> bool:
        """Enqueue without waiting; False if closed or full."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> RealtimeEvent:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a consumer blocked on an empty queue
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_CLOSED)
        if self._on_close:
            self._on_close(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()


class Broadcaster(ABC):
    """Room-scoped publish/subscribe."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._sequences: dict[str, itertools.count] = defaultdict(
            lambda: itertools.count(1)
        )

    def _event(
        self, room: str, kind: EventKind | str, payload: dict[str, Any]
    ) -> RealtimeEvent:
        return RealtimeEvent(
            room=room,
            kind=EventKind(kind),
            payload=payload,
            sequence=next(self._sequences[room]),
        )

    def _deliver(self, subscription: Subscription, event: RealtimeEvent) -> None:
        if not subscription.offer(event) and not subscription.closed:
            logger.warning(
                "realtime_event_dropped",
                room=event.room,
                kind=event.kind.value,
                sequence=event.sequence,
                dropped_total=subscription.dropped,
            )

    @abstractmethod
    async def publish(
        self, room: str, kind: EventKind | str, payload: dict[str, Any]
    ) -> RealtimeEvent:
        """Emit one event to every current member of ``room``.

        Raises:
            BroadcastError: If the backend rejected the event.
        """

    @abstractmethod
    async def subscribe(self, room: str) -> Subscription: ...

    @abstractmethod
    async def close(self) -> None: ...


class LocalBroadcaster(Broadcaster):
    """In-process fan-out for a single API worker."""

    def __init__(self, queue_size: int = 256):
        super().__init__(queue_size)
        self._rooms: dict[str, set[Subscription]] = defaultdict(set)

    async def publish(
        self, room: str, kind: EventKind | str, payload: dict[str, Any]
    ) -> RealtimeEvent:
        event = self._event(room, kind, payload)
        for subscription in list(self._rooms.get(room, ())):
            self._deliver(subscription, event)
        return event

    async def subscribe(self, room: str) -> Subscription:
        subscription = Subscription(room, self.queue_size, on_close=self._remove)
        self._rooms[room].add(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        members = self._rooms.get(subscription.room)
        if members is None:
            return
        members.discard(subscription)
        if not members:
            del self._rooms[subscription.room]

    def subscriber_count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def close(self) -> None:
        for members in list(self._rooms.values()):
            for subscription in list(members):
                await subscription.close()


class RedisBroadcaster(Broadcaster):
    """Fan-out across API workers over Redis pub/sub.

    Each subscription holds its own pub/sub connection and a pump task that
    moves messages into the subscription queue.
    """

    def __init__(self, redis: "Redis", queue_size: int = 256):
        super().__init__(queue_size)
        self.redis = redis
        self._pumps: dict[Subscription, asyncio.Task] = {}

    async def publish(
        self, room: str, kind: EventKind | str, payload: dict[str, Any]
    ) -> RealtimeEvent:
        event = self._event(room, kind, payload)
        try:
            await self.redis.publish(
                comment_channel(room), orjson.dumps(event.to_message()).decode()
            )
        except Exception as e:
            raise BroadcastError(str(e)) from e
        return event

    async def subscribe(self, room: str) -> Subscription:
        pubsub = self.redis.pubsub()
        channel = comment_channel(room)
        try:
            await pubsub.subscribe(channel)
        except Exception as e:
            await pubsub.aclose()
            raise BroadcastError(str(e)) from e

        subscription = Subscription(room, self.queue_size, on_close=self._stop_pump)
        self._pumps[subscription] = asyncio.create_task(
            self._pump(pubsub, channel, subscription)
        )
        logger.debug("subscribed_to_channel", channel=channel)
        return subscription

    async def _pump(self, pubsub, channel: str, subscription: Subscription) -> None:
        try:
            while not subscription.closed:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if not message or message["type"] != "message":
                    continue
                try:
                    event = RealtimeEvent.from_message(orjson.loads(message["data"]))
                except (orjson.JSONDecodeError, ValueError) as e:
                    logger.warning(
                        "realtime_message_invalid", channel=channel, error=str(e)
                    )
                    continue
                self._deliver(subscription, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("redis_subscriber_error", channel=channel, error=str(e))
            await subscription.close()
        finally:
            with contextlib.suppress(Exception):
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            logger.debug("unsubscribed_from_channel", channel=channel)

    def _stop_pump(self, subscription: Subscription) -> None:
        task = self._pumps.pop(subscription, None)
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def close(self) -> None:
        for subscription in list(self._pumps):
            await subscription.close()
