"""Session events consumed by the controller.

Every event a session can emit is one of the dataclasses below; together they
form the closed ``SessionEvent`` union that ``Controller.handle_event``
dispatches on.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

logger = logging.getLogger(__name__)

GROUP_SUFFIX = "@g.us"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class DisconnectReason(Enum):
    """WhatsApp close codes as reported by the bridge."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503

    # 408 is shared by "lost" and "timed out"; Enum makes this an alias.
    TIMED_OUT = 408

    @classmethod
    def parse(cls, value: Any) -> DisconnectReason:
        """Map a bridge-supplied code or name to a reason.

        Unknown or missing values become CONNECTION_CLOSED, which is
        retried like any other non-logout closure.
        """
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return cls.CONNECTION_CLOSED
        if isinstance(value, str):
            # Baileys names are camelCase: loggedOut -> LOGGED_OUT
            name = _CAMEL_BOUNDARY.sub("_", value.strip()).upper().replace("-", "_").replace(" ", "_")
            if name.isdigit():
                return cls.parse(int(name))
            member = cls.__members__.get(name)
            if member is not None:
                return member
        return cls.CONNECTION_CLOSED


@dataclass(frozen=True)
class InboundMessage:
    """A single message received on the session."""

    message_id: str
    sender_address: str
    conversation_address: str
    body_text: str
    is_from_self: bool
    has_content: bool
    push_name: str = ""

    @property
    def is_group(self) -> bool:
        return self.conversation_address.endswith(GROUP_SUFFIX)

    @property
    def sender_number(self) -> str:
        """Local part of the sender address without the device suffix."""
        local = self.sender_address.split("@", 1)[0]
        return local.split(":", 1)[0]


@dataclass(frozen=True)
class Connecting:
    pass


@dataclass(frozen=True)
class PairingRequested:
    pass


@dataclass(frozen=True)
class Open:
    pass


@dataclass(frozen=True)
class Closed:
    reason: DisconnectReason
    detail: str = ""

    @property
    def is_logout(self) -> bool:
        return self.reason is DisconnectReason.LOGGED_OUT


@dataclass(frozen=True)
class CredentialsChanged:
    snapshot: dict[str, Any]


@dataclass(frozen=True)
class MessageReceived:
    message: InboundMessage


ConnectionEvent = Union[Connecting, PairingRequested, Open, Closed]
SessionEvent = Union[Connecting, PairingRequested, Open, Closed, CredentialsChanged, MessageReceived]


def extract_text(content: dict[str, Any] | None) -> str:
    """Pull the text out of a WhatsApp message body.

    Plain messages carry it in ``conversation``; replies, links and
    formatted text carry it in ``extendedTextMessage.text``.
    """
    if not content:
        return ""
    text = content.get("conversation")
    if isinstance(text, str) and text:
        return text
    extended = content.get("extendedTextMessage")
    if isinstance(extended, dict):
        text = extended.get("text")
        if isinstance(text, str):
            return text
    return ""


def parse_inbound_message(data: dict[str, Any]) -> InboundMessage:
    """Build an InboundMessage from a bridge ``message`` frame payload.

    Raises ValueError if the payload has no usable key.
    """
    key = data.get("key")
    if not isinstance(key, dict) or not key.get("remote_jid"):
        raise ValueError("message frame missing key.remote_jid")

    conversation = str(key["remote_jid"])
    # In groups the author is the participant, not the chat.
    sender = str(key.get("participant") or conversation)
    content = data.get("message")
    if not isinstance(content, dict):
        content = None

    return InboundMessage(
        message_id=str(key.get("id", "")),
        sender_address=sender,
        conversation_address=conversation,
        body_text=extract_text(content),
        is_from_self=bool(key.get("from_me", False)),
        has_content=bool(content),
        push_name=str(data.get("push_name") or ""),
    )


def parse_connection_update(data: dict[str, Any]) -> ConnectionEvent | None:
    """Translate a bridge ``connection`` frame into a connection event.

    Returns None for states the controller does not act on.
    """
    state = data.get("state")
    if state == "connecting":
        return Connecting()
    if state == "pairing":
        return PairingRequested()
    if state == "open":
        return Open()
    if state == "close":
        return Closed(
            reason=DisconnectReason.parse(data.get("reason")),
            detail=str(data.get("detail") or ""),
        )
    logger.debug("Ignoring connection state %r", state)
    return None
