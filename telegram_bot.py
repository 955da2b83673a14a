"""
Telegram bot interface for the DEC0D3 bot.

This module encapsulates interaction with the Telegram Bot API:
- `TelegramBot.send_message` is the one delivery primitive shared by the
  notification dispatcher, the webhook receiver and the startup notice. It is
  synchronous: sends are handed to one long-lived bot on its own event-loop
  thread, so it is safe from the scheduler thread and from webhook request
  threads alike.
- `BotCommands` implements the chat commands, and `build_application` wires
  them into a long-polling `Application`.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from typing import Optional

from telegram import Bot, InlineKeyboardMarkup, Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes, filters

from messages import daily_reminder_message, invite_link, main_menu, profile_message, welcome_message
from models import User
from server_client import ServerClient


logger = logging.getLogger(__name__)

_REFERRAL_ARG = re.compile(r"^ref_(\d+)")


class TelegramBot:
    """Send messages to Telegram users by numeric id.

    One `Bot` serves every send. It lives on a dedicated event-loop thread and
    is initialized (token check via getMe) on the first send only.
    """

    def __init__(self, token: str, bot: Optional[Bot] = None) -> None:
        self.token = token
        self.bot = bot if bot is not None else Bot(token)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=loop.run_forever, name="telegram-transport", daemon=True)
                thread.start()
                self._loop, self._thread = loop, thread
            return self._loop

    def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        parse_mode: Optional[str] = None,
    ) -> None:
        """Deliver one message. Blocks until Telegram answers.

        Raises:
            telegram.error.TelegramError: If Telegram rejects the message
                (e.g. `Forbidden` when the user blocked the bot).
        """
        future = asyncio.run_coroutine_threadsafe(
            self._send(chat_id, text, reply_markup, parse_mode), self._ensure_loop()
        )
        future.result()

    async def _send(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup],
        parse_mode: Optional[str],
    ) -> None:
        # No-op once the bot has been initialized.
        await self.bot.initialize()
        await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup, parse_mode=parse_mode)

    def close(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(self.bot.shutdown(), loop).result(timeout=10)
        except Exception as e:
            logger.warning(f"Failed to shut down Telegram transport cleanly: {e}")
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=5)
        loop.close()


def parse_referrer(args, sender_id: int) -> Optional[int]:
    """Extract the referrer id from `/start ref_<id>`.

    Self-referrals and unparsable arguments yield None.
    """
    if not args:
        return None
    match = _REFERRAL_ARG.match(args[0])
    if not match:
        return None
    referrer_id = int(match.group(1))
    if referrer_id <= 0 or referrer_id == sender_id:
        return None
    return referrer_id


class BotCommands:
    """Chat command handlers. Backend calls run in a worker thread."""

    def __init__(self, client: ServerClient, mini_app_url: str, rng=None, bot_username: str = "") -> None:
        self.client = client
        self.mini_app_url = mini_app_url
        self.rng = rng
        self.bot_username = bot_username

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        sender = update.effective_user
        logger.info(f"[USER:{sender.id}] Command: /start (@{sender.username})")

        user = User(
            telegram_id=sender.id,
            username=sender.username or "",
            first_name=sender.first_name or "",
            last_name=sender.last_name or "",
        )
        try:
            await asyncio.to_thread(self.client.register_user, user)
        except Exception as e:
            # Registration problems never block the welcome message.
            logger.error(f"[ERROR] Failed to register user {sender.id}: {e}")

        referrer_id = parse_referrer(context.args, sender.id)
        if referrer_id is not None:
            logger.info(f"[REFERRAL] User {sender.id} referred by {referrer_id}")
            try:
                resp = await asyncio.to_thread(self.client.process_referral, referrer_id, sender.id)
            except Exception as e:
                logger.error(f"[ERROR] Failed to process referral: {e}")
            else:
                if resp.success:
                    logger.info(f"[REFERRAL] Success: {resp.message}")
                else:
                    logger.info(f"[REFERRAL] Rejected: {resp.message}")

        await update.message.reply_text(welcome_message(user.first_name), reply_markup=main_menu(self.mini_app_url))

    async def profile(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        sender = update.effective_user
        try:
            profile = await asyncio.to_thread(self.client.get_user_profile, sender.id)
        except Exception as e:
            logger.error(f"[ERROR] Failed to load profile for {sender.id}: {e}")
            await update.message.reply_text("❌ Could not load your stats right now. Try again later.")
            return
        text = profile_message(profile, invite_link(self.bot_username, sender.id))
        await update.message.reply_text(text, reply_markup=main_menu(self.mini_app_url))

    async def test_daily(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._send_reminder(update, streak=0)

    async def test_streak(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._send_reminder(update, streak=5)

    async def _send_reminder(self, update: Update, streak: int) -> None:
        message = daily_reminder_message(update.effective_user.first_name or "", streak, rng=self.rng)
        await update.message.reply_text(message, reply_markup=main_menu(self.mini_app_url))

    async def debug_schedule(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.debug("Entering /debug_schedule")
        try:
            await asyncio.to_thread(self.client.schedule_notifications)
        except Exception as e:
            logger.error(f"/debug_schedule failed: {e}")
            await update.message.reply_text(f"❌ Failed to schedule: {e}")
            return
        await update.message.reply_text("✅ Server triggered to schedule daily notifications!")


def build_application(token: str, commands: BotCommands, admin_id: int = 0) -> Application:
    app = ApplicationBuilder().token(token).build()

    app.add_handler(CommandHandler("start", commands.start))
    app.add_handler(CommandHandler("profile", commands.profile))

    # Admin commands are silently ignored for everyone else.
    if admin_id:
        admin_only = filters.User(user_id=admin_id)
        app.add_handler(CommandHandler("test_daily", commands.test_daily, filters=admin_only))
        app.add_handler(CommandHandler("test_streak", commands.test_streak, filters=admin_only))
        app.add_handler(CommandHandler("debug_schedule", commands.debug_schedule, filters=admin_only))
    else:
        logger.warning("No admin ID configured; admin commands disabled")

    return app
