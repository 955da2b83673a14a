"""
Main controller for the DEC0D3 bot.

Responsibilities:
- Load environment variables from .env
- Wait for the game backend to become healthy
- Initialize the Telegram bot with /start and /profile, plus the admin
  commands /test_daily, /test_streak and /debug_schedule
- Start the notification dispatcher (queue drain every 2 minutes, schedule
  generation every hour)
- Start the webhook server the backend pushes new-user and referral events to
- Send the admin a startup report

Config: see `config.py`.
"""

from __future__ import annotations

import asyncio
import logging

from dotenv import load_dotenv
from telegram import error as tg_error

from config import BotConfig, load_config
from dispatcher import NotificationDispatcher
from server_client import ServerClient
from startup import send_startup_notification, wait_for_server
from telegram_bot import BotCommands, TelegramBot, build_application
from webhook import WebhookServer


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def run(cfg: BotConfig) -> None:
    logging.getLogger().setLevel(cfg.log_level)
    if cfg.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("🐛 Debug mode enabled")

    client = ServerClient(cfg.server_url, cfg.bot_secret)

    logger.info("⏳ Waiting for server to be ready...")
    server_ready = wait_for_server(client)

    bot = TelegramBot(cfg.bot_token)
    rng = cfg.make_rng()
    commands = BotCommands(client, cfg.mini_app_url, rng=rng, bot_username=cfg.bot_username)
    app = build_application(cfg.bot_token, commands, admin_id=cfg.admin_id)

    dispatcher = NotificationDispatcher(client, bot, cfg.mini_app_url, rng=rng)
    dispatcher.start()

    webhook_server = WebhookServer(bot, cfg.bot_secret, cfg.mini_app_url, port=cfg.webhook_port)
    webhook_server.start()

    if server_ready:
        send_startup_notification(bot, client, cfg.admin_id, cfg.started_at, cfg.local_tz)
    else:
        logger.warning("⚠️  Skipping startup notification due to server connection issues")

    # Preflight: ensure single polling instance (exit if another instance is polling)
    async def _preflight_check() -> bool:
        try:
            async with app.bot:
                me = await app.bot.get_me()
                logger.info(f"✓ Bot authorized as @{me.username}")
                # A quick get_updates will raise Conflict if another instance is polling
                await app.bot.get_updates(limit=1, timeout=1)
            return True
        except tg_error.Conflict:
            logger.error("Another bot instance is already polling. Exiting to avoid conflicts.")
            return False
        except tg_error.TelegramError as e:
            # Non-conflict errors should not prevent startup
            logger.warning(f"Preflight check failed: {e}")
            return True

    try:
        if not asyncio.run(_preflight_check()):
            return

        logger.info("🤖 Bot is running...")
        app.run_polling(drop_pending_updates=True, close_loop=False)
    except tg_error.Conflict:
        logger.error("Polling conflict detected at runtime. Exiting instance.")
    finally:
        dispatcher.stop()
        webhook_server.stop()
        bot.close()


def main() -> None:
    load_dotenv()
    run(load_config())


if __name__ == "__main__":
    main()
