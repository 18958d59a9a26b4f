"""Connection lifecycle and message dispatch.

The controller drives one WhatsApp session at a time:

    STARTING -> PAIRING? -> OPEN -> CLOSED -> RESTARTING -> STARTING ...
                                          \\-> FAILED (logout, terminal)

Connection events are handled one at a time, in arrival order. Each inbound
message is dispatched in its own task so a slow completion never holds up
connection handling or other messages.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from y2beta.completion import CompletionResult
from y2beta.config import Settings
from y2beta.credentials import CredentialStore
from y2beta.errors import (
    CredentialStoreError,
    FatalError,
    LoggedOut,
    PairingSubmissionError,
)
from y2beta.events import (
    Closed,
    Connecting,
    CredentialsChanged,
    DisconnectReason,
    InboundMessage,
    MessageReceived,
    Open,
    PairingRequested,
    SessionEvent,
)
from y2beta.pairing import read_in_daemon_thread, validate_pairing_code
from y2beta.session import Session

logger = logging.getLogger(__name__)

SessionFactory = Callable[[dict[str, Any] | None], Awaitable[Session]]


class State(Enum):
    STARTING = "starting"
    PAIRING = "pairing"
    OPEN = "open"
    CLOSED = "closed"
    RESTARTING = "restarting"
    FAILED = "failed"


class DispatchOutcome(Enum):
    IGNORED_SELF = "ignored_self"
    IGNORED_EMPTY = "ignored_empty"
    IGNORED_GROUP = "ignored_group"
    REPLIED = "replied"
    APOLOGIZED = "apologized"
    STALE = "stale"


class Controller:
    """Owns pairing, reconnection and per-message forwarding."""

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        prompt,
        completion,
        session_factory: SessionFactory,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.store = store
        self.prompt = prompt
        self.completion = completion
        self.session_factory = session_factory
        self._sleep = sleep

        self.state = State.STARTING
        self.session: Session | None = None
        self.generation = 0
        self._prompt_released = False
        self._reconnect_delay = settings.reconnect_initial_delay_s
        self._dispatches: set[asyncio.Task] = set()

    # -- lifecycle ----------------------------------------------------------

    async def run(self) -> None:
        """Keep a session alive until WhatsApp logs us out.

        Never returns normally: raises LoggedOut on logout and other
        FatalError subclasses on startup or pairing failures.
        """
        try:
            await self.start_session()
            while True:
                closed = await self._pump(self.session)
                if closed.is_logout:
                    raise LoggedOut(f"Logged out by WhatsApp ({closed.detail or 'no detail'})")
                await self._restart()
        finally:
            await self._shutdown()

    async def start_session(self) -> Session:
        """Load credentials and construct a fresh session.

        Raises CredentialStoreError if stored credentials are unreadable and
        FatalError if the session cannot be constructed.
        """
        self.state = State.STARTING
        credentials = self.store.load()
        try:
            session = await self.session_factory(credentials)
        except Exception as e:
            raise FatalError(f"Could not start WhatsApp session: {e}") from e

        self.session = session
        self.generation += 1
        logger.debug("Session generation %d started", self.generation)
        return session

    async def _pump(self, session: Session) -> Closed:
        async for event in session.events():
            await self.handle_event(event)
            if isinstance(event, Closed):
                return event

        closed = Closed(DisconnectReason.CONNECTION_LOST, "event stream ended")
        await self.handle_event(closed)
        return closed

    async def _restart(self) -> None:
        self.state = State.RESTARTING
        await self._close_session()

        delay = self._reconnect_delay
        if delay > 0:
            logger.info("Reconnecting in %.1fs", delay)
            await self._sleep(delay)
            self._reconnect_delay = min(delay * 2, self.settings.reconnect_max_delay_s)

        while True:
            try:
                await self.start_session()
                return
            except CredentialStoreError:
                raise
            except FatalError as e:
                # Retry unless logged out: a bridge that is briefly down is
                # not a reason to give up after the first successful start.
                logger.warning("%s", e)
                delay = self._reconnect_delay
                await self._sleep(delay)
                self._reconnect_delay = min(
                    max(delay * 2, self.settings.reconnect_initial_delay_s),
                    self.settings.reconnect_max_delay_s,
                )

    async def _close_session(self) -> None:
        session, self.session = self.session, None
        if session is None:
            return
        try:
            await session.close()
        except Exception as e:
            logger.warning("Error while closing session: %s", e)

    async def _shutdown(self) -> None:
        for task in list(self._dispatches):
            task.cancel()
        if self._dispatches:
            await asyncio.gather(*self._dispatches, return_exceptions=True)
        await self._close_session()
        self.prompt.close()

    # -- event handling -----------------------------------------------------

    async def handle_event(self, event: SessionEvent) -> None:
        """Apply one session event. Every SessionEvent variant is handled."""
        if isinstance(event, Connecting):
            logger.info("Connecting to WhatsApp...")
        elif isinstance(event, PairingRequested):
            await self._pair()
        elif isinstance(event, Open):
            self._on_open()
        elif isinstance(event, Closed):
            self._on_closed(event)
        elif isinstance(event, CredentialsChanged):
            self._on_credentials(event)
        elif isinstance(event, MessageReceived):
            self._spawn(self.handle_message(event.message, self.generation))
        else:
            raise TypeError(f"Unhandled session event: {event!r}")

    async def _pair(self) -> None:
        if self.state is not State.STARTING:
            logger.warning("Ignoring pairing request while %s", self.state.value)
            return
        if self._prompt_released:
            raise FatalError("WhatsApp requested pairing after the pairing prompt was released")

        self.state = State.PAIRING
        logger.info("WhatsApp is requesting a pairing code")
        code = await read_in_daemon_thread(self.prompt.request_code)
        validate_pairing_code(code)

        try:
            await self.session.submit_pairing_code(code)
        except Exception as e:
            raise PairingSubmissionError(f"Pairing failed: {e}") from e
        logger.info("Pairing code submitted successfully!")

    def _on_open(self) -> None:
        self.state = State.OPEN
        self._reconnect_delay = self.settings.reconnect_initial_delay_s
        if not self._prompt_released:
            self.prompt.close()
            self._prompt_released = True
        logger.info("Successfully connected!")

    def _on_closed(self, event: Closed) -> None:
        if self.state is State.FAILED:
            return
        reconnect = not event.is_logout
        logger.warning(
            "Connection closed due to %s%s | reconnecting %s",
            event.reason.name,
            f" ({event.detail})" if event.detail else "",
            reconnect,
        )
        if reconnect:
            self.state = State.CLOSED
            return

        self.state = State.FAILED
        logger.error("Logged out. Stored credentials are no longer valid; pair again on next start.")
        try:
            self.store.clear()
        except OSError as e:
            logger.warning("Could not remove stored credentials: %s", e)

    def _on_credentials(self, event: CredentialsChanged) -> None:
        if self.state is State.FAILED:
            return
        try:
            self.store.save(event.snapshot)
        except CredentialStoreError as e:
            logger.error("%s", e)

    # -- message dispatch ---------------------------------------------------

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)

    async def wait_for_dispatches(self) -> None:
        """Wait until every in-flight message dispatch has finished."""
        while self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    async def handle_message(
        self, message: InboundMessage, generation: int | None = None
    ) -> DispatchOutcome:
        """Filter one message, ask the completion endpoint, reply.

        Never raises: completion and send failures are logged and the sender
        gets the apology text instead.
        """
        if message.is_from_self:
            return DispatchOutcome.IGNORED_SELF
        if not message.has_content:
            return DispatchOutcome.IGNORED_EMPTY

        logger.info("Received message from %s: %s", message.sender_number, message.body_text)

        if message.is_group:
            logger.warning("Message from group ignored")
            return DispatchOutcome.IGNORED_GROUP

        try:
            result = await self.completion.complete(message.body_text)
        except Exception as e:
            logger.error("Completion request failed: %s", e)
            result = CompletionResult(ok=False)

        if result.ok and result.text:
            reply, outcome = result.text, DispatchOutcome.REPLIED
        else:
            reply, outcome = self.settings.apology_text, DispatchOutcome.APOLOGIZED

        if generation is not None and generation != self.generation:
            logger.warning(
                "Session replaced while answering %s; dropping reply", message.sender_number
            )
            return DispatchOutcome.STALE
        if self.session is None:
            logger.warning("No open session; dropping reply to %s", message.sender_number)
            return DispatchOutcome.STALE

        try:
            await self.session.send_reply(message.conversation_address, reply)
        except Exception as e:
            logger.error("Failed to send reply to %s: %s", message.sender_number, e)
            return outcome

        if outcome is DispatchOutcome.REPLIED:
            logger.info("AI response sent to %s", message.sender_number)
        return outcome
