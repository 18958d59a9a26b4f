"""Configuration loader using pydantic-settings."""

from pathlib import Path

from pydantic_settings import BaseSettings

DEFAULT_APOLOGY = (
    "Maaf, terjadi kesalahan saat memproses permintaan Anda. "
    "Silakan coba lagi nanti."
)


class Settings(BaseSettings):
    """Bot configuration loaded from environment variables (prefix ``Y2BETA_``).

    Frozen: built once at startup and passed down explicitly.
    """

    # WhatsApp bridge websocket; the bridge owns the wire protocol.
    bridge_url: str = "ws://localhost:8765/ws"
    phone_number: str = ""
    bot_name: str = "Y2Beta Ai"

    completion_url: str = "https://api.siputzx.my.id/api/ai/meta-llama-33-70B-instruct-turbo"
    completion_timeout_s: float = 60.0
    apology_text: str = DEFAULT_APOLOGY

    auth_dir: Path = Path("auth_info")

    # 0 reproduces the old immediate-retry behaviour.
    reconnect_initial_delay_s: float = 1.0
    reconnect_max_delay_s: float = 60.0
    message_cache_size: int = 500

    log_level: str = "INFO"
    pairing_code_color: str = "cyan"
    log_color: str = "green"
    error_color: str = "red"
    warning_color: str = "yellow"

    model_config = {
        "env_prefix": "Y2BETA_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "frozen": True,
    }
