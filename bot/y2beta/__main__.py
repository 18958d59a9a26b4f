"""y2beta bot entrypoint: wires everything together."""

import asyncio
import logging
import sys

from y2beta.completion import CompletionClient
from y2beta.config import Settings
from y2beta.console import configure_logging
from y2beta.controller import Controller
from y2beta.credentials import CredentialStore
from y2beta.errors import FatalError
from y2beta.pairing import PairingPrompt
from y2beta.session import BridgeSession, MessageCache

logger = logging.getLogger(__name__)


async def run_bot(settings: Settings) -> None:
    cache = MessageCache(settings.message_cache_size)

    async def session_factory(credentials):
        return await BridgeSession.connect(
            settings.bridge_url,
            phone_number=settings.phone_number,
            client_name=settings.bot_name,
            credentials=credentials,
            cache=cache,
        )

    completion = CompletionClient(settings.completion_url, timeout_s=settings.completion_timeout_s)
    controller = Controller(
        settings,
        store=CredentialStore(settings.auth_dir),
        prompt=PairingPrompt(settings.bot_name, color=settings.pairing_code_color),
        completion=completion,
        session_factory=session_factory,
    )
    try:
        await controller.run()
    finally:
        await completion.aclose()


def main():
    settings = Settings()
    configure_logging(settings)
    logger.info("Starting %s (bridge=%s, auth_dir=%s)", settings.bot_name, settings.bridge_url, settings.auth_dir)

    try:
        asyncio.run(run_bot(settings))
    except FatalError as e:
        logger.error("%s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception:
        logger.exception("Initialization error")
        sys.exit(1)


if __name__ == "__main__":
    main()
