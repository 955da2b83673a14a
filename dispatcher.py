"""
Notification dispatcher for the DEC0D3 bot.

Drains the backend notification queue on a fixed interval:
- every 2 minutes: fetch up to 20 pending jobs, send each one, and report
  SENT or FAILED back to the backend;
- every hour (on the hour): ask the backend to generate new jobs.

Both periodic jobs run on their own worker threads. Jobs within a batch are
processed one at a time in the order the backend returned them.
A job is attempted once per cycle and never retried here; whether a FAILED
job comes back is up to the backend.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Dict, Optional

import schedule

from messages import daily_reminder_message, main_menu
from models import JOB_FAILED, JOB_SENT, JOB_TYPE_DAILY_CHALLENGE, NotificationJob
from server_client import ServerClient
from telegram_bot import TelegramBot


logger = logging.getLogger(__name__)

BATCH_SIZE = 20
PROCESS_INTERVAL_MINUTES = 2


@dataclass
class DispatchSummary:
    fetched: int = 0
    sent: int = 0
    failed: int = 0
    report_errors: int = 0


def job_streak(job: NotificationJob) -> int:
    """Streak shown in a job's reminder; only daily challenges carry one."""
    if job.user is None or job.type != JOB_TYPE_DAILY_CHALLENGE:
        return 0
    return job.user.best_streak


class NotificationDispatcher:
    """Poll the backend for pending notifications and deliver them."""

    def __init__(
        self,
        client: ServerClient,
        bot: TelegramBot,
        mini_app_url: str,
        rng: Optional[random.Random] = None,
        scheduler: Optional[schedule.Scheduler] = None,
        batch_size: int = BATCH_SIZE,
        tick_seconds: float = 1.0,
    ) -> None:
        self.client = client
        self.bot = bot
        self.mini_app_url = mini_app_url
        self.rng = rng
        self.scheduler = scheduler or schedule.Scheduler()
        self.batch_size = batch_size
        self.tick_seconds = tick_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running: Dict[str, threading.Lock] = {}

    def start(self) -> None:
        """Register both periodic jobs and run them on a background thread.

        Each job body runs on its own worker thread, so a slow batch never
        delays the hourly trigger. A job whose previous run is still going is
        skipped for that tick.
        """
        self.scheduler.every(PROCESS_INTERVAL_MINUTES).minutes.do(self._run_threaded, self.process_notifications)
        self.scheduler.every().hour.at(":00").do(self._run_threaded, self.trigger_schedule)

        self._stop.clear()
        self._thread = threading.Thread(target=self._schedule_loop, name="notification-dispatcher", daemon=True)
        self._thread.start()
        logger.info("✓ Scheduler started - Smart Notification Queue enabled")

    def _run_threaded(self, job_func) -> None:
        lock = self._running.setdefault(job_func.__name__, threading.Lock())
        if not lock.acquire(blocking=False):
            logger.warning(f"[SCHEDULER] {job_func.__name__} still running, skipping this tick")
            return

        def run() -> None:
            try:
                job_func()
            except Exception as e:
                logger.error(f"[SCHEDULER] Periodic job crashed: {e}")
            finally:
                lock.release()

        threading.Thread(target=run, name=f"scheduler-{job_func.__name__}", daemon=True).start()

    def stop(self) -> None:
        self._stop.set()
        self.scheduler.clear()
        if self._thread is not None:
            self._thread.join(timeout=self.tick_seconds * 2)
            self._thread = None

    def _schedule_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.scheduler.run_pending()
            except Exception as e:
                logger.error(f"[SCHEDULER] Periodic job crashed: {e}")
            self._stop.wait(self.tick_seconds)

    def trigger_schedule(self) -> None:
        try:
            self.client.schedule_notifications()
        except Exception as e:
            logger.error(f"[SCHEDULER] Failed to trigger schedule: {e}")

    def process_notifications(self) -> DispatchSummary:
        """Run one dispatcher cycle: fetch a batch and settle every job in it."""
        summary = DispatchSummary()
        try:
            jobs = self.client.get_pending_notifications(self.batch_size)
        except Exception as e:
            logger.error(f"[SCHEDULER] Failed to get jobs: {e}")
            return summary

        summary.fetched = len(jobs)
        if not jobs:
            return summary

        logger.info(f"[SCHEDULER] Processing {len(jobs)} notification jobs...")
        for job in jobs:
            status = self._deliver(job)
            if status == JOB_SENT:
                summary.sent += 1
            else:
                summary.failed += 1
            if not self._report(job, status):
                summary.report_errors += 1

        logger.info(
            f"[SCHEDULER] Cycle done: {summary.sent} sent, {summary.failed} failed, "
            f"{summary.report_errors} status reports failed"
        )
        return summary

    def _deliver(self, job: NotificationJob) -> str:
        user = job.user
        if user is None:
            logger.warning(f"[SCHEDULER] Job {job.id} has no user data, skipping")
            return JOB_FAILED

        message = daily_reminder_message(user.first_name, job_streak(job), rng=self.rng)
        try:
            self.bot.send_message(user.telegram_id, message, reply_markup=main_menu(self.mini_app_url))
        except Exception as e:
            logger.error(f"[SCHEDULER] Failed to send to {user.telegram_id}: {e}")
            return JOB_FAILED

        logger.info(f"[NOTIF] Sent to {user.first_name} (@{user.username})")
        return JOB_SENT

    def _report(self, job: NotificationJob, status: str) -> bool:
        try:
            self.client.update_job_status(job.id, status)
        except Exception as e:
            logger.error(f"[SCHEDULER] Failed to mark job {job.id} as {status}: {e}")
            return False
        return True
