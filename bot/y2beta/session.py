"""WhatsApp session over the bridge websocket.

The bridge process owns the WhatsApp multi-device protocol. We exchange
JSON frames ``{"type": ..., "data": {...}}`` with it: it pushes connection
updates, credential changes, inbound messages and message lookups; we send
the hello handshake, pairing codes, replies and lookup answers.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from typing import Any, AsyncIterator, Protocol

import aiohttp
from pydantic import BaseModel, ValidationError

from y2beta.errors import BridgeError
from y2beta.events import (
    Closed,
    CredentialsChanged,
    DisconnectReason,
    MessageReceived,
    SessionEvent,
    parse_connection_update,
    parse_inbound_message,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_S = 30
HEARTBEAT_S = 30

_END = object()


class Session(Protocol):
    """What the controller needs from a live chat-network session."""

    def events(self) -> AsyncIterator[SessionEvent]: ...

    async def submit_pairing_code(self, code: str) -> None: ...

    async def send_reply(self, address: str, text: str) -> None: ...

    def lookup_cached_message(self, key: dict[str, Any]) -> dict[str, Any]: ...

    async def close(self) -> None: ...


class BridgeFrame(BaseModel):
    """Envelope for every websocket frame, in both directions."""

    type: str
    data: dict[str, Any] = {}


class MessageCache:
    """Bounded LRU of recent raw message bodies, keyed by (chat, message id).

    The bridge asks for these when WhatsApp needs a message re-sent or
    re-decrypted. Shared across reconnects.
    """

    def __init__(self, max_size: int = 500):
        self.max_size = max_size
        self._items: OrderedDict[tuple[str, str], dict[str, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def put(self, remote_jid: str, message_id: str, message: dict[str, Any]) -> None:
        if self.max_size <= 0:
            return
        key = (remote_jid, message_id)
        self._items[key] = message
        self._items.move_to_end(key)
        while len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def get(self, remote_jid: str, message_id: str) -> dict[str, Any] | None:
        return self._items.get((remote_jid, message_id))


class BridgeSession:
    """One websocket connection to the bridge, i.e. one WhatsApp session.

    A background task reads frames and queues events; ``events()`` drains
    the queue. Requests (pairing, replies) wait for the bridge's ``ack``.
    """

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        http: aiohttp.ClientSession,
        cache: MessageCache,
        request_timeout_s: float = REQUEST_TIMEOUT_S,
    ):
        self._ws = ws
        self._http = http
        self.cache = cache
        self.request_timeout_s = request_timeout_s
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: dict[str, asyncio.Future] = {}
        self._saw_close = False
        self._reader: asyncio.Task | None = None

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        phone_number: str,
        client_name: str,
        credentials: dict[str, Any] | None,
        cache: MessageCache,
    ) -> BridgeSession:
        """Open the websocket, send the hello frame and start reading."""
        http = aiohttp.ClientSession()
        try:
            ws = await http.ws_connect(url, heartbeat=HEARTBEAT_S)
        except (aiohttp.ClientError, OSError) as e:
            await http.close()
            raise BridgeError(f"Cannot reach bridge at {url}: {e}") from e

        session = cls(ws, http, cache)
        try:
            await session._send(
                "hello",
                {
                    "phone_number": phone_number,
                    "client_name": client_name,
                    "credentials": credentials,
                },
            )
        except BridgeError:
            await session.close()
            raise
        session.start()
        logger.info("Connected to bridge at %s", url)
        return session

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop(), name="bridge-reader")

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self._queue.get()
            if event is _END:
                return
            yield event

    async def submit_pairing_code(self, code: str) -> None:
        await self._request("pair", {"code": code})

    async def send_reply(self, address: str, text: str) -> None:
        await self._request("send", {"to": address, "text": text})

    def lookup_cached_message(self, key: dict[str, Any]) -> dict[str, Any]:
        found = self.cache.get(str(key.get("remote_jid", "")), str(key.get("id", "")))
        return found or {}

    async def close(self) -> None:
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._fail_pending(BridgeError("Session closed"))
        if not self._ws.closed:
            await self._ws.close()
        if not self._http.closed:
            await self._http.close()

    # -- frame handling -----------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Bridge websocket error: %s", self._ws.exception())
                    break
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.warning("Bridge websocket failed: %s", e)
        finally:
            self._fail_pending(BridgeError("Bridge connection lost"))
            if not self._saw_close:
                self._queue.put_nowait(
                    Closed(DisconnectReason.CONNECTION_LOST, "bridge websocket closed")
                )
            self._queue.put_nowait(_END)

    async def handle_text(self, raw: str) -> None:
        """Process one text frame from the bridge."""
        try:
            frame = BridgeFrame.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Dropping malformed bridge frame: %s", e)
            return

        data = frame.data
        if frame.type == "connection":
            event = parse_connection_update(data)
            if event is None:
                return
            if isinstance(event, Closed):
                self._saw_close = True
            self._queue.put_nowait(event)
        elif frame.type == "creds":
            credentials = data.get("credentials")
            if isinstance(credentials, dict):
                self._queue.put_nowait(CredentialsChanged(credentials))
            else:
                logger.warning("creds frame without a credentials object")
        elif frame.type == "message":
            try:
                message = parse_inbound_message(data)
            except ValueError as e:
                logger.warning("Dropping message frame: %s", e)
                return
            if isinstance(data.get("message"), dict):
                self.cache.put(message.conversation_address, message.message_id, data["message"])
            self._queue.put_nowait(MessageReceived(message))
        elif frame.type == "get_message":
            key = data.get("key")
            found = self.lookup_cached_message(key if isinstance(key, dict) else {})
            try:
                await self._send(
                    "message_lookup",
                    {"request_id": data.get("request_id"), "message": found},
                )
            except BridgeError as e:
                logger.warning("Could not answer message lookup: %s", e)
        elif frame.type == "ack":
            self._resolve(data)
        else:
            logger.debug("Ignoring bridge frame type %r", frame.type)

    def _resolve(self, data: dict[str, Any]) -> None:
        future = self._pending.get(str(data.get("request_id")))
        if future is None or future.done():
            logger.debug("Ack for unknown request %r", data.get("request_id"))
            return
        if data.get("ok"):
            future.set_result(None)
        else:
            future.set_exception(BridgeError(str(data.get("error") or "request rejected by bridge")))

    def _fail_pending(self, error: BridgeError) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _request(self, type_: str, data: dict[str, Any]) -> None:
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(type_, {"request_id": request_id, **data})
            await asyncio.wait_for(future, self.request_timeout_s)
        except asyncio.TimeoutError as e:
            raise BridgeError(f"Bridge did not acknowledge {type_} in time") from e
        finally:
            self._pending.pop(request_id, None)

    async def _send(self, type_: str, data: dict[str, Any]) -> None:
        if self._ws.closed:
            raise BridgeError("Bridge websocket is closed")
        frame = BridgeFrame(type=type_, data=data)
        try:
            await self._ws.send_str(frame.model_dump_json())
        except (aiohttp.ClientError, ConnectionError) as e:
            raise BridgeError(f"Failed to send {type_} frame: {e}") from e
