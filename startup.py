"""
Startup report for the bot administrator.

When the bot comes up it sends the admin a short status card: host, start
time, uptime, runtime details, backend health and user totals.
"""

from __future__ import annotations

import logging
import os
import platform
import resource
import socket
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pytz

from server_client import ServerClient
from telegram_bot import TelegramBot


logger = logging.getLogger(__name__)

HEALTH_MAX_ATTEMPTS = 10
HEALTH_RETRY_DELAY = 1.0
HEALTH_MAX_DELAY = 5.0


@dataclass
class StartupMetrics:
    server_id: str
    start_time: float
    uptime: float
    last_update: float
    working_directory: str
    python_version: str
    threads: int
    memory_usage_mb: float
    db_connected: bool
    total_users: int = 0
    active_users_7d: int = 0

    @property
    def db_status(self) -> str:
        return "Healthy" if self.db_connected else "Disconnected"


def wait_for_server(client: ServerClient, max_attempts: int = HEALTH_MAX_ATTEMPTS) -> bool:
    """Poll the backend health endpoint until it answers or attempts run out.

    Returns True once the backend is healthy. Never raises: the bot keeps
    running without the backend, it just cannot relay anything.
    """
    delay = HEALTH_RETRY_DELAY
    for attempt in range(1, max_attempts + 1):
        try:
            client.health_check()
        except Exception as e:
            if attempt == max_attempts:
                logger.error(f"❌ Server health check failed after {max_attempts} attempts: {e}")
                logger.warning("Bot will continue but server integration may not work")
                return False
            logger.warning(f"⚠️  Server not ready yet (attempt {attempt}/{max_attempts}), retrying in {delay:.0f}s...")
            time.sleep(delay)
            delay = min(delay * 2, HEALTH_MAX_DELAY)
        else:
            logger.info("✓ Server connection established")
            return True
    return False


def _memory_usage_mb() -> float:
    # ru_maxrss is KiB on Linux and bytes on macOS.
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    if sys.platform == "darwin":
        return peak / 1024 / 1024
    return peak / 1024


def collect_startup_metrics(client: ServerClient, started_at: float) -> StartupMetrics:
    now = time.time()
    try:
        server_id = socket.gethostname() or "unknown"
    except OSError:
        server_id = "unknown"
    try:
        working_directory = os.getcwd()
    except OSError:
        working_directory = "unknown"

    try:
        client.health_check()
        db_connected = True
    except Exception:
        db_connected = False

    metrics = StartupMetrics(
        server_id=server_id,
        start_time=started_at,
        uptime=max(0.0, now - started_at),
        last_update=now,
        working_directory=working_directory,
        python_version=platform.python_version(),
        threads=threading.active_count(),
        memory_usage_mb=_memory_usage_mb(),
        db_connected=db_connected,
    )

    try:
        stats = client.get_user_stats()
        metrics.total_users = stats.total_users
        metrics.active_users_7d = stats.active_users_7d
    except Exception as e:
        logger.warning(f"Failed to get user stats: {e}")

    return metrics


def format_uptime(seconds: float) -> str:
    total = int(seconds)
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days > 0:
        return f"{days}d {hours}h {minutes}m {secs}s"
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_startup_message(metrics: StartupMetrics, tz_name: str = "UTC") -> str:
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {tz_name!r}; using UTC")
        tz = pytz.utc

    def fmt(ts: float) -> str:
        return datetime.fromtimestamp(ts, tz).strftime("%Y-%m-%d %H:%M:%S")

    db_emoji = "✅" if metrics.db_connected else "❌"
    return (
        "🤖 Bot is active!\n\n"
        f"🖥️ Server: {metrics.server_id}\n"
        f"⏰ Start time: {fmt(metrics.start_time)}\n"
        f"⌛️ Uptime: {format_uptime(metrics.uptime)}\n"
        f"🔄 Last update: {fmt(metrics.last_update)}\n"
        f"📂 Directory: {metrics.working_directory}\n\n"
        f"🐍 Python version: {metrics.python_version}\n"
        f"⚙️ Threads: {metrics.threads}\n\n"
        f"💾 Memory usage: {metrics.memory_usage_mb:.2f} MB\n"
        f"🗄️ Database: {'Connected' if metrics.db_connected else 'Disconnected'}\n"
        f"{db_emoji} DB Status: {metrics.db_status}\n\n"
        f"👥 Total users: {metrics.total_users}\n"
        f"👤 Active users (7d): {metrics.active_users_7d}"
    )


def send_startup_notification(
    bot: TelegramBot,
    client: ServerClient,
    admin_id: int,
    started_at: float,
    tz_name: str = "UTC",
) -> Optional[str]:
    """Send the startup card to the admin. Returns the text sent, if any."""
    if not admin_id:
        logger.warning("⚠️  No admin ID configured, skipping startup notification")
        return None

    message = format_startup_message(collect_startup_metrics(client, started_at), tz_name)
    try:
        bot.send_message(admin_id, message)
    except Exception as e:
        logger.warning(f"⚠️  Failed to send startup notification to admin: {e}")
        return None

    logger.info(f"✓ Startup notification sent to admin (ID: {admin_id})")
    return message
