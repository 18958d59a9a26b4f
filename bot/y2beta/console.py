"""Console logging setup: colored, bot-name-prefixed status lines."""

import logging

import colorlog

from y2beta.config import Settings


def configure_logging(settings: Settings) -> None:
    """Install a single colored stream handler on the root logger."""
    formatter = colorlog.ColoredFormatter(
        f"%(log_color)s%(asctime)s [{settings.bot_name}] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        reset=True,
        log_colors={
            "DEBUG": "cyan",
            "INFO": settings.log_color,
            "WARNING": settings.warning_color,
            "ERROR": settings.error_color,
            "CRITICAL": f"{settings.error_color},bg_white",
        },
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # aiohttp and httpx log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
