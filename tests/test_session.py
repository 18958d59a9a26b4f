"""Tests for the bridge websocket session."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import USER_JID
from y2beta.errors import BridgeError
from y2beta.events import Closed, CredentialsChanged, DisconnectReason, MessageReceived, Open
from y2beta.session import BridgeSession, MessageCache


@pytest.fixture
def ws():
    ws = MagicMock()
    ws.closed = False
    ws.send_str = AsyncMock()
    ws.close = AsyncMock()
    ws.__aiter__.return_value = []
    return ws


@pytest.fixture
def http():
    http = MagicMock()
    http.closed = False
    http.close = AsyncMock()
    return http


@pytest.fixture
def session(ws, http):
    return BridgeSession(ws, http, MessageCache(10), request_timeout_s=1)


def frame(type_, **data):
    return json.dumps({"type": type_, "data": data})


def sent_frames(ws):
    return [json.loads(c.args[0]) for c in ws.send_str.await_args_list]


async def wait_for_send(ws, count=1):
    while ws.send_str.await_count < count:
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_connection_frames_become_events(session):
    await session.handle_text(frame("connection", state="open"))
    await session.handle_text(frame("connection", state="close", reason=401, detail="logged out"))

    assert session._queue.get_nowait() == Open()
    assert session._queue.get_nowait() == Closed(DisconnectReason.LOGGED_OUT, "logged out")


@pytest.mark.asyncio
async def test_creds_frame_passed_through_unmodified(session):
    creds = {"noiseKey": {"private": "abc"}, "registered": True}

    await session.handle_text(frame("creds", credentials=creds))

    assert session._queue.get_nowait() == CredentialsChanged(creds)


@pytest.mark.asyncio
async def test_message_frame_queued_and_cached(session):
    body = {"conversation": "Hello"}

    await session.handle_text(frame("message", key={"remote_jid": USER_JID, "id": "M1"}, message=body))

    event = session._queue.get_nowait()
    assert isinstance(event, MessageReceived)
    assert event.message.body_text == "Hello"
    assert session.lookup_cached_message({"remote_jid": USER_JID, "id": "M1"}) == body


@pytest.mark.asyncio
async def test_get_message_answered_from_cache(session, ws):
    body = {"conversation": "Hello"}
    await session.handle_text(frame("message", key={"remote_jid": USER_JID, "id": "M1"}, message=body))

    await session.handle_text(frame("get_message", request_id="r1", key={"remote_jid": USER_JID, "id": "M1"}))
    await session.handle_text(frame("get_message", request_id="r2", key={"remote_jid": USER_JID, "id": "nope"}))

    assert sent_frames(ws) == [
        {"type": "message_lookup", "data": {"request_id": "r1", "message": body}},
        {"type": "message_lookup", "data": {"request_id": "r2", "message": {}}},
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["not json", json.dumps({"data": {}}), frame("message", key={})])
async def test_bad_frames_dropped(session, raw):
    await session.handle_text(raw)

    assert session._queue.empty()


@pytest.mark.asyncio
async def test_send_reply_waits_for_ack(session, ws):
    task = asyncio.create_task(session.send_reply(USER_JID, "Hi there"))
    await wait_for_send(ws)

    sent = sent_frames(ws)[0]
    assert sent["type"] == "send"
    assert sent["data"]["to"] == USER_JID
    assert sent["data"]["text"] == "Hi there"
    assert not task.done()

    await session.handle_text(frame("ack", request_id=sent["data"]["request_id"], ok=True))
    await task


@pytest.mark.asyncio
async def test_rejected_pairing_code_raises(session, ws):
    task = asyncio.create_task(session.submit_pairing_code("123456"))
    await wait_for_send(ws)
    sent = sent_frames(ws)[0]
    assert sent["type"] == "pair"
    assert sent["data"]["code"] == "123456"

    await session.handle_text(frame("ack", request_id=sent["data"]["request_id"], ok=False, error="invalid code"))

    with pytest.raises(BridgeError, match="invalid code"):
        await task


@pytest.mark.asyncio
async def test_unacknowledged_request_times_out(ws, http):
    session = BridgeSession(ws, http, MessageCache(), request_timeout_s=0.01)

    with pytest.raises(BridgeError, match="did not acknowledge"):
        await session.send_reply(USER_JID, "hi")


@pytest.mark.asyncio
async def test_send_on_closed_socket_raises(session, ws):
    ws.closed = True

    with pytest.raises(BridgeError):
        await session.send_reply(USER_JID, "hi")


@pytest.mark.asyncio
async def test_socket_end_closes_event_stream(session):
    session.start()

    events = [event async for event in session.events()]

    assert events == [Closed(DisconnectReason.CONNECTION_LOST, "bridge websocket closed")]


@pytest.mark.asyncio
async def test_explicit_close_frame_not_duplicated(session, ws):
    await session.handle_text(frame("connection", state="close", reason=515))
    session.start()

    events = [event async for event in session.events()]

    assert events == [Closed(DisconnectReason.RESTART_REQUIRED)]


@pytest.mark.asyncio
async def test_close_releases_socket_and_pending_requests(session, ws, http):
    task = asyncio.create_task(session.send_reply(USER_JID, "hi"))
    await wait_for_send(ws)

    await session.close()

    with pytest.raises(BridgeError):
        await task
    ws.close.assert_awaited_once()
    http.close.assert_awaited_once()


def test_message_cache_evicts_oldest():
    cache = MessageCache(max_size=2)
    cache.put(USER_JID, "1", {"conversation": "a"})
    cache.put(USER_JID, "2", {"conversation": "b"})
    cache.put(USER_JID, "3", {"conversation": "c"})

    assert len(cache) == 2
    assert cache.get(USER_JID, "1") is None
    assert cache.get(USER_JID, "3") == {"conversation": "c"}


def test_message_cache_disabled():
    cache = MessageCache(max_size=0)
    cache.put(USER_JID, "1", {"conversation": "a"})

    assert len(cache) == 0
