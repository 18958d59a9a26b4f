"""Operator prompt for the one-time pairing code."""

import asyncio
import logging
import re
import sys
import threading
from typing import Callable, TextIO

from colorlog.escape_codes import escape_codes, parse_colors

from y2beta.errors import InvalidPairingCode

logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"[0-9]{6}")


def validate_pairing_code(code: str) -> str:
    """Return the code unchanged if it is exactly six ASCII digits.

    Raises InvalidPairingCode otherwise. Surrounding whitespace is not
    stripped, so " 12345" is rejected.
    """
    if not isinstance(code, str) or _CODE_RE.fullmatch(code) is None:
        raise InvalidPairingCode("Invalid pairing code. Must be 6 digits.")
    return code


async def read_in_daemon_thread(read: Callable[[], str]) -> str:
    """Run a blocking read on a daemon thread and await its result.

    A blocked ``readline()`` cannot be interrupted, so the thread must not
    be joined at interpreter shutdown; cancelling the awaiting task returns
    immediately and leaves the thread behind.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def _deliver(result: str | None, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _worker() -> None:
        try:
            result = read()
        except Exception as e:
            error, result = e, None
        else:
            error = None
        try:
            loop.call_soon_threadsafe(_deliver, result, error)
        except RuntimeError:
            # Event loop already closed; nobody is waiting any more.
            pass

    threading.Thread(target=_worker, name="pairing-prompt", daemon=True).start()
    return await future


class PairingPrompt:
    """Blocking line prompt on a text stream (stdin by default).

    Only needed until the first successful connection; ``close()`` releases
    it for the rest of the process lifetime.
    """

    def __init__(
        self,
        label: str,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        color: str | None = None,
    ):
        self.label = label
        self.color = color
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self.closed = False

    def request_code(self) -> str:
        if self.closed:
            raise RuntimeError("Pairing prompt already closed")
        text = f"[{self.label}] Enter 6-digit pairing code: "
        if self.color:
            text = f"{parse_colors(self.color)}{text}{escape_codes['reset']}"
        self._stdout.write(text)
        self._stdout.flush()
        line = self._stdin.readline()
        return line.rstrip("\r\n")

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            logger.debug("Pairing prompt released")
