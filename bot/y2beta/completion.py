"""Client for the remote AI completion endpoint.

The endpoint takes the prompt in a ``content`` query parameter and answers
with ``{"status": bool, "data": str}``.
"""

import logging
from dataclasses import dataclass

import httpx

from y2beta.errors import CompletionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    ok: bool
    text: str = ""


class CompletionClient:
    """Single-shot GET client: one request per prompt, no retries."""

    def __init__(
        self,
        url: str,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=10),
            transport=transport,
        )

    async def complete(self, prompt_text: str) -> CompletionResult:
        """Ask the endpoint for a reply to ``prompt_text``.

        Returns ``CompletionResult(ok=False)`` when the endpoint reports
        failure. Raises httpx.HTTPError on transport or HTTP status errors
        and CompletionError when the body is not the expected JSON object.
        """
        resp = await self._client.get(self.url, params={"content": prompt_text})
        resp.raise_for_status()

        try:
            data = resp.json()
        except ValueError as e:
            raise CompletionError(f"Completion response is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise CompletionError("Completion response is not a JSON object")

        text = data.get("data")
        if data.get("status") is not True or not isinstance(text, str) or not text:
            logger.warning("Completion endpoint reported failure (status=%r)", data.get("status"))
            return CompletionResult(ok=False)

        return CompletionResult(ok=True, text=text)

    async def aclose(self) -> None:
        await self._client.aclose()
