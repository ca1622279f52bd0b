"""Environment configuration for the bot."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass(frozen=True)
class BotSettings:
    telegram_token: Optional[str]
    telegram_api_base: str
    mode: str
    host: str
    port: int
    session_cap: int
    session_idle_ttl_hours: float
    timezone: str
    http_timeout: float

    @property
    def session_idle_ttl_seconds(self) -> Optional[float]:
        """None disables idle expiry."""
        if self.session_idle_ttl_hours <= 0:
            return None
        return self.session_idle_ttl_hours * 3600

    def require_token(self) -> str:
        """Retrieve the bot token or raise a helpful error."""
        if not self.telegram_token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN environment variable is required.")
        return self.telegram_token


def _int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    return int(value) if value else default


def _float_env(key: str, default: float) -> float:
    value = os.getenv(key)
    return float(value) if value else default


def load_settings() -> BotSettings:
    """Read settings from the environment (and .env)."""
    mode = os.getenv("BOT_MODE", "webhook").strip().lower()
    if mode not in ("webhook", "polling"):
        raise RuntimeError(f"BOT_MODE must be 'webhook' or 'polling', got '{mode}'.")

    return BotSettings(
        telegram_token=os.getenv("TELEGRAM_BOT_TOKEN"),
        telegram_api_base=os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org").rstrip("/"),
        mode=mode,
        host=os.getenv("BOT_HOST", "0.0.0.0"),
        port=_int_env("BOT_PORT", 5002),
        session_cap=_int_env("SESSION_CAP", 10000),
        session_idle_ttl_hours=_float_env("SESSION_IDLE_TTL_HOURS", 24),
        timezone=os.getenv("BOT_TIMEZONE", "Europe/Moscow"),
        http_timeout=_float_env("HTTP_TIMEOUT_SECONDS", 10),
    )


__all__ = ["BotSettings", "load_settings"]
