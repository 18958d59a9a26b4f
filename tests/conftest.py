"""Shared test fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from y2beta.config import Settings
from y2beta.events import InboundMessage

USER_JID = "6281234567890@s.whatsapp.net"
GROUP_JID = "120363025246125486@g.us"


class FakeSession:
    """Scripted session: yields the given events, then ends the stream."""

    def __init__(self, script=()):
        self.script = list(script)
        self.replies = []
        self.submitted_codes = []
        self.submit_error = None
        self.send_error = None
        self.closed = False

    async def events(self):
        for event in self.script:
            yield event

    async def submit_pairing_code(self, code):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted_codes.append(code)

    async def send_reply(self, address, text):
        if self.send_error is not None:
            raise self.send_error
        self.replies.append((address, text))

    def lookup_cached_message(self, key):
        return {}

    async def close(self):
        self.closed = True


class FakeSessionFactory:
    """Hands out one FakeSession per call, each with the next script."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.sessions = []
        self.credentials_seen = []

    async def __call__(self, credentials):
        self.credentials_seen.append(credentials)
        session = FakeSession(self.scripts.pop(0) if self.scripts else ())
        self.sessions.append(session)
        return session


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        bridge_url="ws://bridge.test/ws",
        phone_number="+6281234567890",
        completion_url="https://ai.test/api/complete",
        reconnect_initial_delay_s=0,
        reconnect_max_delay_s=0,
    )


@pytest.fixture
def store():
    store = MagicMock()
    store.load.return_value = {"me": {"id": "6281234567890:1@s.whatsapp.net"}}
    return store


@pytest.fixture
def prompt():
    prompt = MagicMock()
    prompt.request_code.return_value = "123456"
    return prompt


@pytest.fixture
def completion():
    return AsyncMock()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def make_message():
    """Factory for inbound direct messages."""

    def _make(text="Hello", *, conversation=USER_JID, sender=None, from_self=False, has_content=True):
        return InboundMessage(
            message_id="3EB0C431C26A1916B8F4",
            sender_address=sender or conversation,
            conversation_address=conversation,
            body_text=text,
            is_from_self=from_self,
            has_content=has_content,
        )

    return _make
