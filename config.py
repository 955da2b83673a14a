"""
Configuration for the DEC0D3 bot.

Values are read from the environment (after `.env` has been loaded by the
controller) once at startup and frozen into a `BotConfig`.

Config (env, with defaults):
- BOT_TOKEN (str): Telegram bot token. Required.
- BOT_SECRET (str): shared secret for backend calls and inbound webhooks.
  Empty disables webhook authentication.
- SERVER_URL (str): backend base URL. Default http://localhost:8081.
- MINI_APP_URL (str): game mini app opened by the menu button.
- BOT_ADMIN_ID (int): Telegram id allowed to run admin commands. Default 0 (none).
- WEBHOOK_PORT (int): port of the inbound webhook server. Default 8082.
- LOCAL_TZ (str): timezone used in the admin startup message. Default UTC.
"""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass, field


logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:8081"
DEFAULT_MINI_APP_URL = "https://ushpuras.dev/DEC0D3/"
DEFAULT_WEBHOOK_PORT = 8082


@dataclass(frozen=True)
class BotConfig:
    bot_token: str
    bot_username: str = ""
    bot_secret: str = ""
    server_url: str = DEFAULT_SERVER_URL
    mini_app_url: str = DEFAULT_MINI_APP_URL
    debug: bool = False
    admin_id: int = 0
    webhook_port: int = DEFAULT_WEBHOOK_PORT
    local_tz: str = "UTC"
    log_level: str = "INFO"
    # Captured once so components never read process-wide clocks or seeds.
    started_at: float = field(default_factory=time.time)
    random_seed: int = field(default_factory=lambda: random.SystemRandom().randrange(2**32))

    def make_rng(self) -> random.Random:
        return random.Random(self.random_seed)


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer; using {default}")
        return default


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _log_level(raw: str) -> str:
    level = raw.strip().upper()
    if level not in _LOG_LEVELS:
        logger.warning(f"LOG_LEVEL={raw!r} is not a logging level; using INFO")
        return "INFO"
    return level


def load_config() -> BotConfig:
    """Build the bot configuration from environment variables.

    Raises:
        RuntimeError: If BOT_TOKEN is missing.
    """
    token = (os.getenv("BOT_TOKEN") or "").strip()
    if not token:
        raise RuntimeError("BOT_TOKEN is required in environment")

    return BotConfig(
        bot_token=token,
        bot_username=os.getenv("BOT_USERNAME", ""),
        bot_secret=os.getenv("BOT_SECRET", ""),
        server_url=(os.getenv("SERVER_URL") or DEFAULT_SERVER_URL).rstrip("/"),
        mini_app_url=os.getenv("MINI_APP_URL") or DEFAULT_MINI_APP_URL,
        debug=os.getenv("DEBUG", "false").lower() == "true",
        admin_id=_int_env("BOT_ADMIN_ID", 0),
        webhook_port=_int_env("WEBHOOK_PORT", DEFAULT_WEBHOOK_PORT),
        local_tz=os.getenv("LOCAL_TZ", "UTC"),
        log_level=_log_level(os.getenv("LOG_LEVEL", "INFO")),
    )
