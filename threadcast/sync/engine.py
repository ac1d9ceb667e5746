"""Client-side view of one post's comments.

The view is built from three sources:
- pages fetched over HTTP
- realtime events from the post's room
- optimistic entries for writes still in flight

Server data always wins. Events update nodes by id and leave the rest of
the tree alone. Results that arrive after :meth:`ClientSyncEngine.close`
or after a refresh started are discarded.
"""

import asyncio
import contextlib
import itertools
import time
from collections.abc import Callable
from typing import Any, Protocol

import structlog

from threadcast.realtime.models import EventKind

from .errors import (
    ErrorCategory,
    PendingCommentError,
    SessionExpiredError,
    categorize_error,
)
from .expansion import DEFAULT_REPLY_WINDOW, parse_expansion, serialize_expansion
from .tree import (
    TEMP_PREFIX,
    CommentNode,
    apply_server_fields,
    find_node,
    is_temp_id,
    merge_replies,
    node_from_payload,
    remove_node,
    update_node,
)


logger = structlog.get_logger(__name__)


class CommentsApi(Protocol):
    async def fetch_top_level(
        self, post_id: str, page: int, limit: int, sort_by: str
    ) -> dict[str, Any]: ...

    async def fetch_thread(self, comment_id: str, max_depth: int) -> dict[str, Any]: ...

    async def create(
        self, post_id: str, content: str, parent_id: str | None = None
    ) -> dict[str, Any]: ...

    async def like(self, comment_id: str) -> dict[str, Any]: ...

    async def unlike(self, comment_id: str) -> dict[str, Any]: ...

    async def edit(
        self, comment_id: str, content: str, expected_version: int | None = None
    ) -> dict[str, Any]: ...

    async def delete(
        self, comment_id: str, expected_version: int | None = None
    ) -> dict[str, Any]: ...

    async def report(
        self, comment_id: str, reason: str, description: str | None = None
    ) -> dict[str, Any]: ...


class RealtimeSource(Protocol):
    async def join(self, post_id: str) -> None: ...

    async def leave(self, post_id: str) -> None: ...

    def events(self) -> Any: ...


ErrorCallback = Callable[[BaseException, ErrorCategory], None]


class ClientSyncEngine:
    """Keeps one post's comment tree consistent on the client."""

    def __init__(
        self,
        post_id: str,
        api: CommentsApi,
        realtime: RealtimeSource | None = None,
        *,
        user_id: str | None = None,
        page_size: int = 20,
        sort_by: str = "newest",
        reply_window: int = DEFAULT_REPLY_WINDOW,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
        on_error: ErrorCallback | None = None,
        on_session_expired: Callable[[], None] | None = None,
    ):
        self.post_id = str(post_id)
        self.api = api
        self.realtime = realtime
        self.user_id = str(user_id) if user_id else None
        self.page_size = page_size
        self.sort_by = sort_by
        self.reply_window = reply_window
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.on_error = on_error
        self.on_session_expired = on_session_expired

        self.comments: list[CommentNode] = []
        self.page = 0
        self.pages: int | None = None
        self.total = 0
        self.comment_count: int | None = None
        self.loading = False
        self.expansion: dict[str, int] = {}
        self.last_error: BaseException | None = None

        self._pending: dict[str, CommentNode] = {}
        self._temp_ids = itertools.count(1)
        self._generation = 0
        self._closed = False
        self._listener: asyncio.Task | None = None

    # --------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_more(self) -> bool:
        return self.pages is None or self.page < self.pages

    async def open(self) -> None:
        """Join the post's room, then load the first page."""
        if self.realtime is not None:
            try:
                await self.realtime.join(self.post_id)
            except Exception as e:
                logger.warning("realtime_join_failed", post_id=self.post_id, error=str(e))
            else:
                self._listener = asyncio.create_task(self._listen())
        await self.load_more()

    async def close(self) -> None:
        """Leave the room and drop anything still in flight."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        self._pending.clear()
        if self.realtime is not None:
            try:
                await self.realtime.leave(self.post_id)
            except Exception as e:
                logger.warning("realtime_leave_failed", post_id=self.post_id, error=str(e))
        if self._listener is not None and not self._listener.done():
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener

    async def _listen(self) -> None:
        """Apply room events; after a disconnect, rejoin and refetch.

        Delivery is at-most-once, so events missed while disconnected are
        only recovered by reloading the first page.
        """
        delay = self.reconnect_delay
        while not self._closed:
            try:
                async for frame in self.realtime.events():
                    delay = self.reconnect_delay
                    self.apply_event(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "realtime_listener_stopped", post_id=self.post_id, error=str(e)
                )
            if self._closed:
                return

            logger.info("realtime_reconnecting", post_id=self.post_id, delay=delay)
            await asyncio.sleep(delay)
            delay = min(max(delay * 2, self.reconnect_delay), self.max_reconnect_delay)
            if await self._rejoin():
                await self.refresh()

    async def _rejoin(self) -> bool:
        if self._closed:
            return False
        try:
            await self.realtime.join(self.post_id)
        except Exception as e:
            logger.warning("realtime_join_failed", post_id=self.post_id, error=str(e))
            return False
        return True

    def _stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _report(self, error: BaseException) -> None:
        self.last_error = error
        category = categorize_error(error)
        logger.info(
            "comment_sync_failed",
            post_id=self.post_id,
            category=category.value,
            error=str(error),
        )
        if isinstance(error, SessionExpiredError) and self.on_session_expired:
            self.on_session_expired()
        elif self.on_error:
            self.on_error(error, category)

    # --------------------------------------------------------------------------
    # Pages
    # --------------------------------------------------------------------------

    async def load_more(self) -> bool:
        """Fetch the next top-level page. No-op while a fetch is in flight."""
        if self.loading or self._closed or not self.has_more:
            return False
        self.loading = True
        generation = self._generation
        try:
            data = await self.api.fetch_top_level(
                self.post_id, self.page + 1, self.page_size, self.sort_by
            )
        except Exception as e:
            self._report(e)
            return False
        finally:
            self.loading = False

        if self._stale(generation):
            return False
        self._merge_page(data)
        return True

    async def refresh(self) -> bool:
        """Reload the first page. Unconfirmed optimistic entries stay on top."""
        if self._closed:
            return False
        self._generation += 1
        generation = self._generation
        try:
            data = await self.api.fetch_top_level(
                self.post_id, 1, self.page_size, self.sort_by
            )
        except Exception as e:
            self._report(e)
            return False
        if self._stale(generation):
            return False

        pending_top = [n for n in self.comments if n.pending and n.parent_id is None]
        self.comments = pending_top
        self.page = 0
        self.pages = None
        self._merge_page(data)
        return True

    def _merge_page(self, data: dict[str, Any]) -> None:
        for node in (node_from_payload(c) for c in data.get("comments", [])):
            existing = find_node(self.comments, node.id)
            if existing is None:
                self.comments.append(node)
                continue
            apply_server_fields(existing, node)
            existing.replies = merge_replies(existing.replies, node.replies)

        pagination = data.get("pagination") or {}
        self.page = int(pagination.get("page", self.page + 1))
        self.pages = int(pagination.get("pages", self.page))
        self.total = int(pagination.get("total", len(self.comments)))

    # --------------------------------------------------------------------------
    # Create
    # --------------------------------------------------------------------------

    def _temp_id(self) -> str:
        temp_id = f"{TEMP_PREFIX}{int(time.time() * 1000)}"
        while temp_id in self._pending:
            temp_id = f"{TEMP_PREFIX}{int(time.time() * 1000)}-{next(self._temp_ids)}"
        return temp_id

    async def create(
        self, content: str, parent_id: str | None = None
    ) -> CommentNode | None:
        """Post a comment, showing it immediately as a pending entry.

        The pending entry becomes the confirmed comment in place, whichever
        of the response or the ``new-comment`` echo arrives first.
        """
        if self._closed:
            return None
        text = content.strip()
        parent = find_node(self.comments, parent_id) if parent_id else None
        if parent_id and parent is None:
            self._report(PendingCommentError("Parent comment is not loaded"))
            return None
        if parent is not None and parent.is_temp:
            self._report(PendingCommentError())
            return None

        temp = CommentNode(
            id=self._temp_id(),
            post_id=self.post_id,
            author_id=self.user_id or "",
            content=text,
            parent_id=parent_id,
            level=parent.level + 1 if parent else 0,
            pending=True,
        )
        self._pending[temp.id] = temp
        if parent is None:
            self.comments.insert(0, temp)
        else:
            parent.replies.append(temp)
            parent.reply_count += 1

        try:
            data = await self.api.create(self.post_id, content, parent_id)
        except Exception as e:
            if not self._closed:
                self._evict(temp)
            self._report(e)
            return None

        if self._closed:
            return None
        return self._confirm(temp, node_from_payload(data, level=temp.level))

    def _evict(self, temp: CommentNode) -> None:
        self._pending.pop(temp.id, None)
        if remove_node(self.comments, temp.id) is not None:
            logger.debug("optimistic_comment_evicted", temp_id=temp.id)

    def _confirm(self, temp: CommentNode, confirmed: CommentNode) -> CommentNode:
        """Turn a pending entry into the server's comment, keeping one copy."""
        pending = self._pending.pop(temp.id, None)
        existing = find_node(self.comments, confirmed.id)

        if pending is None:
            # Already swapped in by the realtime echo
            if existing is not None:
                apply_server_fields(existing, confirmed, keep_counts=True)
            return existing or confirmed

        if existing is not None:
            remove_node(self.comments, temp.id)
            apply_server_fields(existing, confirmed, keep_counts=True)
            return existing

        apply_server_fields(temp, confirmed, keep_counts=True)
        if temp.parent_id is None:
            self.total += 1
        return temp

    def _match_pending(self, node: CommentNode) -> CommentNode | None:
        for temp in self._pending.values():
            if (
                temp.author_id == node.author_id
                and temp.content == node.content
                and temp.parent_id == node.parent_id
            ):
                return temp
        return None

    # --------------------------------------------------------------------------
    # Likes / edit / delete
    # --------------------------------------------------------------------------

    def _mutable(self, comment_id: str) -> CommentNode | None:
        if is_temp_id(comment_id):
            self._report(PendingCommentError())
            return None
        return find_node(self.comments, comment_id)

    async def toggle_like(self, comment_id: str) -> bool | None:
        """Flip the like immediately; restore it if the request fails.

        Returns the confirmed ``is_liked``, or None on failure.
        """
        node = self._mutable(comment_id)
        if node is None:
            return None

        before = (node.is_liked, node.like_count)
        liking = not node.is_liked
        node.is_liked = liking
        node.like_count = max(0, node.like_count + (1 if liking else -1))

        generation = self._generation
        try:
            if liking:
                data = await self.api.like(comment_id)
            else:
                data = await self.api.unlike(comment_id)
        except Exception as e:
            if not self._stale(generation):
                update_node(
                    self.comments,
                    comment_id,
                    is_liked=before[0],
                    like_count=before[1],
                )
            self._report(e)
            return None

        if self._stale(generation):
            return None
        update_node(
            self.comments,
            comment_id,
            like_count=int(data["likes"]),
            is_liked=bool(data["is_liked"]),
        )
        return bool(data["is_liked"])

    async def edit(self, comment_id: str, content: str) -> CommentNode | None:
        """Replace content immediately; restore it if the request fails."""
        node = self._mutable(comment_id)
        if node is None:
            return None

        before = {"content": node.content, "is_edited": node.is_edited}
        expected_version = node.version
        node.content = content.strip()
        node.is_edited = True

        generation = self._generation
        try:
            data = await self.api.edit(comment_id, content, expected_version)
        except Exception as e:
            if not self._stale(generation):
                update_node(self.comments, comment_id, **before)
            self._report(e)
            return None

        if self._stale(generation):
            return None
        node = find_node(self.comments, comment_id)
        if node is not None:
            apply_server_fields(
                node, node_from_payload(data, level=node.level), keep_counts=True
            )
        return node

    async def delete(self, comment_id: str) -> bool:
        node = self._mutable(comment_id)
        if node is None:
            return False

        generation = self._generation
        try:
            await self.api.delete(comment_id)
        except Exception as e:
            self._report(e)
            return False

        if not self._stale(generation):
            self._remove(comment_id)
        return True

    async def report(
        self, comment_id: str, reason: str, description: str | None = None
    ) -> bool:
        if self._mutable(comment_id) is None:
            return False
        try:
            await self.api.report(comment_id, reason, description)
        except Exception as e:
            self._report(e)
            return False
        return True

    def _remove(self, comment_id: str) -> None:
        removed = remove_node(self.comments, comment_id)
        if removed is None:
            return
        if removed.parent_id is None:
            self.total = max(0, self.total - 1)
        self.expansion.pop(comment_id, None)

    # --------------------------------------------------------------------------
    # Reply windows
    # --------------------------------------------------------------------------

    def window(self, comment_id: str) -> int:
        return self.expansion.get(comment_id, self.reply_window)

    def visible_replies(self, comment_id: str) -> list[CommentNode]:
        """Replies currently shown under a comment.

        Pending replies are always shown, even past the window.
        """
        node = find_node(self.comments, comment_id)
        if node is None:
            return []
        limit = self.window(comment_id)
        return node.replies[:limit] + [r for r in node.replies[limit:] if r.pending]

    def can_show_more(self, comment_id: str) -> bool:
        node = find_node(self.comments, comment_id)
        if node is None:
            return False
        limit = self.window(comment_id)
        return limit < len(node.replies) or len(node.replies) < node.reply_count

    async def show_more(self, comment_id: str) -> list[CommentNode]:
        """Widen the reply window, fetching the thread once local replies run out."""
        node = find_node(self.comments, comment_id)
        if node is None:
            return []

        target = self.window(comment_id) + self.reply_window
        if target > len(node.replies) and len(node.replies) < node.reply_count:
            generation = self._generation
            try:
                data = await self.api.fetch_thread(comment_id, 1)
            except Exception as e:
                self._report(e)
                return self.visible_replies(comment_id)
            if self._stale(generation):
                return []
            node = find_node(self.comments, comment_id)
            if node is None:
                return []
            thread = node_from_payload(data["thread"], level=node.level)
            apply_server_fields(node, thread)
            node.replies = merge_replies(node.replies, thread.replies)

        self.expansion[comment_id] = max(
            self.reply_window, min(target, len(node.replies))
        )
        return self.visible_replies(comment_id)

    def expansion_state(self) -> str:
        return serialize_expansion(self.expansion, self.reply_window)

    def restore_expansion(self, value: str | None) -> None:
        self.expansion = parse_expansion(value)

    # --------------------------------------------------------------------------
    # Realtime
    # --------------------------------------------------------------------------

    def apply_event(self, frame: dict[str, Any]) -> None:
        """Apply one room event to the tree."""
        if self._closed or str(frame.get("post_id")) != self.post_id:
            return
        data = frame.get("data") or {}
        try:
            kind = EventKind(frame.get("type"))
        except ValueError:
            return

        if kind == EventKind.NEW_COMMENT:
            self._apply_new_comment(data)
        elif kind == EventKind.COMMENT_UPDATED:
            self._apply_update(data)
        elif kind == EventKind.COMMENT_DELETED:
            self._remove(str(data.get("comment_id")))

    def _apply_new_comment(self, data: dict[str, Any]) -> None:
        if data.get("comment_count") is not None:
            self.comment_count = int(data["comment_count"])
        if not data.get("comment"):
            return
        node = node_from_payload(data["comment"])
        # The echo has no viewer context
        node.is_liked = False

        existing = find_node(self.comments, node.id)
        if existing is not None:
            node.is_liked = existing.is_liked
            apply_server_fields(existing, node, keep_counts=True)
            return

        temp = self._match_pending(node)
        if temp is not None:
            del self._pending[temp.id]
            node.level = temp.level
            apply_server_fields(temp, node, keep_counts=True)
            if temp.parent_id is None:
                self.total += 1
            return

        if node.parent_id is None:
            if self.sort_by == "newest":
                self.comments.insert(0, node)
            else:
                self.comments.append(node)
            self.total += 1
            return

        parent = find_node(self.comments, node.parent_id)
        if parent is not None:
            node.level = parent.level + 1
            parent.replies.append(node)
            parent.reply_count += 1

    def _apply_update(self, data: dict[str, Any]) -> None:
        comment_id = str(data.get("comment_id"))
        changes: dict[str, Any] = {}
        if "likes" in data:
            changes["like_count"] = int(data["likes"])
        # is_liked describes the actor, not this viewer
        if self.user_id and data.get("actor_id") == self.user_id and "is_liked" in data:
            changes["is_liked"] = bool(data["is_liked"])
        if data.get("content") is not None:
            changes["content"] = data["content"]
            changes["is_edited"] = True
        if data.get("version") is not None:
            changes["version"] = int(data["version"])
        update_node(self.comments, comment_id, **changes)
