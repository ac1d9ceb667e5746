"""Tests for the client sync engine."""

import asyncio
from typing import Any
from uuid import uuid4

import pytest

from threadcast.sync.engine import ClientSyncEngine
from threadcast.sync.errors import (
    ApiError,
    ErrorCategory,
    PendingCommentError,
    SessionExpiredError,
)
from threadcast.sync.tree import find_node, walk


POST_ID = str(uuid4())
ME = str(uuid4())


def payload(
    comment_id: str | None = None,
    content: str = "hello",
    *,
    author_id: str = ME,
    parent_id: str | None = None,
    like_count: int = 0,
    reply_count: int = 0,
    replies: list[dict] | None = None,
    version: int = 1,
) -> dict[str, Any]:
    return {
        "id": comment_id or str(uuid4()),
        "post_id": POST_ID,
        "author_id": author_id,
        "content": content,
        "parent_id": parent_id,
        "like_count": like_count,
        "is_liked": False,
        "version": version,
        "reply_count": reply_count,
        "replies": replies or [],
    }


def page(*comments: dict, page_no: int = 1, pages: int = 1) -> dict[str, Any]:
    return {
        "comments": list(comments),
        "pagination": {
            "page": page_no,
            "limit": 20,
            "total": len(comments),
            "pages": pages,
        },
    }


def new_comment_event(comment: dict, count: int | None = None) -> dict[str, Any]:
    return {
        "type": "new-comment",
        "post_id": POST_ID,
        "seq": 1,
        "data": {"comment": comment, "post_id": POST_ID, "comment_count": count},
    }


class FakeApi:
    """Scripted CommentsApi.

    ``responses[name]`` is a list consumed in order; an exception instance is
    raised instead of returned. ``gates[name]`` holds an Event the call waits
    on before answering.
    """

    def __init__(self):
        self.responses: dict[str, list[Any]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, tuple]] = []

    def script(self, name: str, *results: Any) -> None:
        self.responses.setdefault(name, []).extend(results)

    async def _answer(self, name: str, *args: Any) -> Any:
        self.calls.append((name, args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        result = self.responses[name].pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    async def fetch_top_level(self, post_id, page, limit, sort_by):
        return await self._answer("fetch_top_level", post_id, page, limit, sort_by)

    async def fetch_thread(self, comment_id, max_depth):
        return await self._answer("fetch_thread", comment_id, max_depth)

    async def create(self, post_id, content, parent_id=None):
        return await self._answer("create", post_id, content, parent_id)

    async def like(self, comment_id):
        return await self._answer("like", comment_id)

    async def unlike(self, comment_id):
        return await self._answer("unlike", comment_id)

    async def edit(self, comment_id, content, expected_version=None):
        return await self._answer("edit", comment_id, content, expected_version)

    async def delete(self, comment_id, expected_version=None):
        return await self._answer("delete", comment_id, expected_version)

    async def report(self, comment_id, reason, description=None):
        return await self._answer("report", comment_id, reason, description)


class FakeRealtime:
    def __init__(self):
        self.joined: list[str] = []
        self.left: list[str] = []
        self.queue: asyncio.Queue = asyncio.Queue()

    async def join(self, post_id):
        self.joined.append(post_id)

    async def leave(self, post_id):
        self.left.append(post_id)

    async def events(self):
        """Queued frames; a None frame ends the stream like a dropped socket."""
        while True:
            frame = await self.queue.get()
            if frame is None:
                return
            yield frame


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def errors() -> list[tuple[BaseException, ErrorCategory]]:
    return []


@pytest.fixture
def engine(api, errors) -> ClientSyncEngine:
    return ClientSyncEngine(
        POST_ID,
        api,
        user_id=ME,
        on_error=lambda e, c: errors.append((e, c)),
    )


async def settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


class TestPages:
    @pytest.mark.asyncio
    async def test_load_more_appends_pages(self, engine, api):
        first, second = payload(content="one"), payload(content="two")
        api.script(
            "fetch_top_level",
            page(first, pages=2),
            page(second, page_no=2, pages=2),
        )

        assert await engine.load_more() is True
        assert await engine.load_more() is True
        assert await engine.load_more() is False

        assert [n.content for n in engine.comments] == ["one", "two"]
        assert [c[1][1] for c in api.calls] == [1, 2]

    @pytest.mark.asyncio
    async def test_load_more_is_noop_while_loading(self, engine, api):
        """A second call during an in-flight fetch does nothing."""
        api.gates["fetch_top_level"] = asyncio.Event()
        api.script("fetch_top_level", page(payload()))

        first = asyncio.create_task(engine.load_more())
        await settle()
        assert engine.loading is True
        assert await engine.load_more() is False

        api.gates["fetch_top_level"].set()
        assert await first is True
        assert len(api.calls) == 1

    @pytest.mark.asyncio
    async def test_refresh_keeps_pending_entries(self, engine, api):
        """Unconfirmed comments survive a refresh."""
        api.script("fetch_top_level", page(payload(content="old")))
        await engine.load_more()

        api.gates["create"] = asyncio.Event()
        api.script("create", payload(content="mine"))
        creating = asyncio.create_task(engine.create("mine"))
        await settle()

        api.script("fetch_top_level", page(payload(content="fresh")))
        await engine.refresh()

        assert [n.content for n in engine.comments] == ["mine", "fresh"]
        assert engine.comments[0].pending is True

        api.gates["create"].set()
        await creating
        assert engine.comments[0].pending is False

    @pytest.mark.asyncio
    async def test_fetch_failure_reported(self, engine, api, errors):
        api.script("fetch_top_level", ApiError(0, "down", "network_error"))
        assert await engine.load_more() is False
        assert errors[0][1] == ErrorCategory.NETWORK
        assert engine.loading is False


class TestOptimisticCreate:
    @pytest.mark.asyncio
    async def test_pending_entry_shown_immediately(self, engine, api):
        api.gates["create"] = asyncio.Event()
        api.script("create", payload(content="hi"))

        task = asyncio.create_task(engine.create("hi"))
        await settle()

        temp = engine.comments[0]
        assert temp.pending is True
        assert temp.is_temp
        assert temp.author_id == ME

        api.gates["create"].set()
        confirmed = await task
        assert confirmed is temp
        assert not temp.is_temp
        assert temp.pending is False

    @pytest.mark.asyncio
    async def test_event_then_response_leaves_one_entry(self, engine, api):
        """The realtime echo arriving first replaces the pending entry."""
        server = payload(content="Great product!")
        api.gates["create"] = asyncio.Event()
        api.script("create", server)

        task = asyncio.create_task(engine.create("Great product!"))
        await settle()
        engine.apply_event(new_comment_event(server, count=1))
        api.gates["create"].set()
        await task

        nodes = list(walk(engine.comments))
        assert [n.id for n in nodes] == [server["id"]]
        assert engine.comment_count == 1
        assert engine.total == 1

    @pytest.mark.asyncio
    async def test_response_then_event_leaves_one_entry(self, engine, api):
        """The echo arriving after the response updates the confirmed entry."""
        server = payload(content="Great product!")
        api.script("create", server)

        await engine.create("Great product!")
        engine.apply_event(new_comment_event(server, count=1))

        assert [n.id for n in walk(engine.comments)] == [server["id"]]
        assert engine.total == 1

    @pytest.mark.asyncio
    async def test_failure_evicts_pending(self, engine, api, errors):
        """Failed writes disappear and the error is categorized."""
        api.script("create", ApiError(400, "Comment cannot exceed 1000 characters"))

        assert await engine.create("x" * 1001) is None
        assert engine.comments == []
        assert errors[0][1] == ErrorCategory.CONTENT_TOO_LONG

    @pytest.mark.asyncio
    async def test_reply_goes_under_parent(self, engine, api):
        parent = payload(content="parent")
        api.script("fetch_top_level", page(parent))
        await engine.load_more()
        reply = payload(content="reply", parent_id=parent["id"])
        api.script("create", reply)

        created = await engine.create("reply", parent_id=parent["id"])

        root = engine.comments[0]
        assert root.reply_count == 1
        assert root.replies == [created]
        assert created.level == 1

    @pytest.mark.asyncio
    async def test_close_discards_late_response(self, engine, api):
        """A response that lands after close is ignored."""
        api.gates["create"] = asyncio.Event()
        api.script("create", payload(content="late"))

        task = asyncio.create_task(engine.create("late"))
        await settle()
        await engine.close()
        api.gates["create"].set()

        assert await task is None
        assert engine.closed


class TestMutations:
    async def loaded(self, engine, api, **fields) -> str:
        comment = payload(**fields)
        api.script("fetch_top_level", page(comment))
        await engine.load_more()
        return comment["id"]

    @pytest.mark.asyncio
    async def test_like_confirms_server_state(self, engine, api):
        comment_id = await self.loaded(engine, api, like_count=2)
        api.script("like", {"likes": 5, "is_liked": True})

        assert await engine.toggle_like(comment_id) is True
        node = find_node(engine.comments, comment_id)
        assert (node.like_count, node.is_liked) == (5, True)

    @pytest.mark.asyncio
    async def test_like_failure_reverts(self, engine, api):
        comment_id = await self.loaded(engine, api, like_count=2)
        api.gates["like"] = asyncio.Event()
        api.script("like", ApiError(500, "boom"))

        task = asyncio.create_task(engine.toggle_like(comment_id))
        await settle()
        node = find_node(engine.comments, comment_id)
        assert (node.like_count, node.is_liked) == (3, True)

        api.gates["like"].set()
        assert await task is None
        assert (node.like_count, node.is_liked) == (2, False)

    @pytest.mark.asyncio
    async def test_edit_failure_reverts(self, engine, api, errors):
        comment_id = await self.loaded(engine, api, content="before", version=3)
        api.script("edit", ApiError(409, "Comment was changed"))

        assert await engine.edit(comment_id, "after") is None

        node = find_node(engine.comments, comment_id)
        assert node.content == "before"
        assert node.is_edited is False
        assert api.calls[-1] == ("edit", (comment_id, "after", 3))
        assert errors[0][1] == ErrorCategory.CONFLICT

    @pytest.mark.asyncio
    async def test_edit_success_takes_server_version(self, engine, api):
        comment_id = await self.loaded(engine, api, content="before")
        edited = payload(comment_id, "after", version=2)
        edited["is_edited"] = True
        api.script("edit", edited)

        node = await engine.edit(comment_id, "after")
        assert node.version == 2
        assert node.is_edited is True

    @pytest.mark.asyncio
    async def test_edit_keeps_reply_count(self, engine, api):
        """The edit response carries no reply count; more replies stay reachable."""
        reply = payload(content="r1")
        parent = payload(content="before", replies=[reply], reply_count=5)
        reply["parent_id"] = parent["id"]
        api.script("fetch_top_level", page(parent))
        await engine.load_more()
        api.script("edit", payload(parent["id"], "changed", version=2))

        node = await engine.edit(parent["id"], "changed")

        assert node.content == "changed"
        assert node.version == 2
        assert node.reply_count == 5
        assert [r.content for r in node.replies] == ["r1"]
        assert engine.can_show_more(parent["id"])

    @pytest.mark.asyncio
    async def test_delete_removes_node(self, engine, api):
        comment_id = await self.loaded(engine, api)
        api.script("delete", {"success": True})

        assert await engine.delete(comment_id) is True
        assert engine.comments == []

    @pytest.mark.asyncio
    async def test_pending_entry_cannot_be_mutated(self, engine, api, errors):
        """Likes on an unconfirmed comment are refused without a request."""
        api.gates["create"] = asyncio.Event()
        api.script("create", payload(content="wait"))
        task = asyncio.create_task(engine.create("wait"))
        await settle()

        temp_id = engine.comments[0].id
        assert await engine.toggle_like(temp_id) is None
        assert isinstance(errors[0][0], PendingCommentError)
        assert [c[0] for c in api.calls] == ["create"]

        api.gates["create"].set()
        await task

    @pytest.mark.asyncio
    async def test_session_expired_callback(self, api):
        expired = []
        engine = ClientSyncEngine(
            POST_ID, api, user_id=ME, on_session_expired=lambda: expired.append(1)
        )
        api.script("fetch_top_level", SessionExpiredError())

        await engine.load_more()

        assert expired == [1]
        assert isinstance(engine.last_error, SessionExpiredError)


class TestRealtimeEvents:
    @pytest.mark.asyncio
    async def test_like_from_other_user_keeps_my_state(self, engine, api):
        """Counts update from anyone; is_liked only from my own actions."""
        comment = payload(like_count=1)
        comment["is_liked"] = True
        api.script("fetch_top_level", page(comment))
        await engine.load_more()

        engine.apply_event(
            {
                "type": "comment-updated",
                "post_id": POST_ID,
                "data": {
                    "comment_id": comment["id"],
                    "likes": 2,
                    "is_liked": True,
                    "action": "like",
                    "actor_id": str(uuid4()),
                },
            }
        )
        engine.apply_event(
            {
                "type": "comment-updated",
                "post_id": POST_ID,
                "data": {
                    "comment_id": comment["id"],
                    "likes": 1,
                    "is_liked": False,
                    "action": "unlike",
                    "actor_id": str(uuid4()),
                },
            }
        )

        node = engine.comments[0]
        assert node.like_count == 1
        assert node.is_liked is True

    @pytest.mark.asyncio
    async def test_own_like_event_sets_is_liked(self, engine, api):
        comment = payload()
        api.script("fetch_top_level", page(comment))
        await engine.load_more()

        engine.apply_event(
            {
                "type": "comment-updated",
                "post_id": POST_ID,
                "data": {
                    "comment_id": comment["id"],
                    "likes": 1,
                    "is_liked": True,
                    "actor_id": ME,
                },
            }
        )
        assert engine.comments[0].is_liked is True

    @pytest.mark.asyncio
    async def test_edit_event_updates_content_only(self, engine, api):
        """Updates touch the target node; siblings are untouched."""
        first, second = payload(content="a"), payload(content="b")
        api.script("fetch_top_level", page(first, second))
        await engine.load_more()
        sibling = engine.comments[1]

        engine.apply_event(
            {
                "type": "comment-updated",
                "post_id": POST_ID,
                "data": {
                    "comment_id": first["id"],
                    "likes": 0,
                    "content": "a (edited)",
                    "version": 2,
                },
            }
        )

        assert engine.comments[0].content == "a (edited)"
        assert engine.comments[0].is_edited is True
        assert engine.comments[1] is sibling
        assert sibling.content == "b"

    @pytest.mark.asyncio
    async def test_delete_event_removes_reply(self, engine, api):
        reply = payload(content="reply")
        parent = payload(content="parent", replies=[reply], reply_count=1)
        reply["parent_id"] = parent["id"]
        api.script("fetch_top_level", page(parent))
        await engine.load_more()

        engine.apply_event(
            {
                "type": "comment-deleted",
                "post_id": POST_ID,
                "data": {"comment_id": reply["id"]},
            }
        )

        assert engine.comments[0].replies == []
        assert engine.comments[0].reply_count == 0

    @pytest.mark.asyncio
    async def test_delete_event_for_nested_reply(self, engine, api):
        """Only the direct parent of a removed reply loses a count."""
        deep = payload(content="deep")
        reply = payload(content="reply", replies=[deep], reply_count=1)
        parent = payload(content="parent", replies=[reply], reply_count=4)
        deep["parent_id"] = reply["id"]
        reply["parent_id"] = parent["id"]
        api.script("fetch_top_level", page(parent))
        await engine.load_more()

        engine.apply_event(
            {
                "type": "comment-deleted",
                "post_id": POST_ID,
                "data": {"comment_id": deep["id"]},
            }
        )

        top = engine.comments[0]
        assert top.reply_count == 4
        assert top.replies[0].reply_count == 0
        assert top.replies[0].replies == []

    @pytest.mark.asyncio
    async def test_echo_of_loaded_comment_keeps_reply_count(self, engine, api):
        parent = payload(content="parent", reply_count=7)
        api.script("fetch_top_level", page(parent))
        await engine.load_more()

        engine.apply_event(new_comment_event(payload(parent["id"], "parent")))

        assert len(engine.comments) == 1
        assert engine.comments[0].reply_count == 7

    @pytest.mark.asyncio
    async def test_foreign_new_comment_inserted(self, engine, api):
        """Other users' comments go on top for newest-first views."""
        api.script("fetch_top_level", page(payload(content="existing")))
        await engine.load_more()

        other = payload(content="someone else", author_id=str(uuid4()))
        engine.apply_event(new_comment_event(other, count=2))

        assert [n.content for n in engine.comments] == ["someone else", "existing"]
        assert engine.comment_count == 2

    @pytest.mark.asyncio
    async def test_other_post_ignored(self, engine):
        frame = new_comment_event(payload())
        frame["post_id"] = str(uuid4())
        engine.apply_event(frame)
        assert engine.comments == []

    @pytest.mark.asyncio
    async def test_listener_applies_events(self, api):
        realtime = FakeRealtime()
        engine = ClientSyncEngine(POST_ID, api, realtime, user_id=ME)
        api.script("fetch_top_level", page())

        await engine.open()
        assert realtime.joined == [POST_ID]

        await realtime.queue.put(new_comment_event(payload(content="pushed")))
        await settle()
        assert [n.content for n in engine.comments] == ["pushed"]

        await engine.close()
        assert realtime.left == [POST_ID]

    @pytest.mark.asyncio
    async def test_dropped_stream_rejoins_and_refetches(self, api):
        """Events missed while disconnected come back through a first-page reload."""
        realtime = FakeRealtime()
        engine = ClientSyncEngine(
            POST_ID, api, realtime, user_id=ME, reconnect_delay=0
        )
        api.script("fetch_top_level", page(payload(content="old")))
        await engine.open()

        api.script(
            "fetch_top_level",
            page(payload(content="missed"), payload(content="old")),
        )
        await realtime.queue.put(None)
        for _ in range(20):
            if len(api.calls) == 2:
                break
            await asyncio.sleep(0)
        await settle()

        assert realtime.joined == [POST_ID, POST_ID]
        assert [name for name, _ in api.calls] == ["fetch_top_level"] * 2
        assert api.calls[1][1][1] == 1
        assert [n.content for n in engine.comments] == ["missed", "old"]

        await realtime.queue.put(new_comment_event(payload(content="live")))
        await settle()
        assert engine.comments[0].content == "live"

        await engine.close()
        assert realtime.joined == [POST_ID, POST_ID]


class TestReplyWindows:
    @pytest.mark.asyncio
    async def test_show_more_fetches_thread_when_exhausted(self, engine, api):
        """Local replies are shown first; the thread is fetched past them."""
        replies = [payload(content=f"r{i}") for i in range(3)]
        parent = payload(content="parent", replies=replies, reply_count=5)
        for r in replies:
            r["parent_id"] = parent["id"]
        api.script("fetch_top_level", page(parent))
        await engine.load_more()

        assert len(engine.visible_replies(parent["id"])) == 3
        assert engine.can_show_more(parent["id"])

        extra = [payload(content=f"r{i}", parent_id=parent["id"]) for i in (3, 4)]
        thread = dict(parent, replies=replies + extra)
        api.script("fetch_thread", {"thread": thread})

        visible = await engine.show_more(parent["id"])

        assert [n.content for n in visible] == ["r0", "r1", "r2", "r3", "r4"]
        assert api.calls[-1] == ("fetch_thread", (parent["id"], 1))
        assert engine.expansion[parent["id"]] == 5
        assert not engine.can_show_more(parent["id"])
        assert engine.expansion_state() == f"{parent['id']}:5"

    @pytest.mark.asyncio
    async def test_pending_reply_visible_past_window(self, engine, api):
        replies = [payload(content=f"r{i}") for i in range(3)]
        parent = payload(content="parent", replies=replies, reply_count=3)
        api.script("fetch_top_level", page(parent))
        await engine.load_more()

        api.gates["create"] = asyncio.Event()
        api.script("create", payload(content="mine", parent_id=parent["id"]))
        task = asyncio.create_task(engine.create("mine", parent_id=parent["id"]))
        await settle()

        visible = engine.visible_replies(parent["id"])
        assert [n.content for n in visible] == ["r0", "r1", "r2", "mine"]

        api.gates["create"].set()
        await task

    def test_restore_expansion(self, engine):
        comment_id = str(uuid4())
        engine.restore_expansion(f"{comment_id}:9,garbage")
        assert engine.window(comment_id) == 9
        assert engine.window(str(uuid4())) == 3
