import random
import threading
from unittest.mock import MagicMock, call

import pytest
import schedule
from telegram.error import Forbidden

from dispatcher import BATCH_SIZE, NotificationDispatcher, job_streak
from messages import NO_STREAK_TEMPLATES, STREAK_TEMPLATES
from models import User
from server_client import ServerError
from tests.helpers import make_job


MINI_APP_URL = "https://example.test/game/"


@pytest.fixture
def client_mock():
    return MagicMock()


def make_dispatcher(client, bot):
    return NotificationDispatcher(client, bot, MINI_APP_URL, rng=random.Random(3), scheduler=schedule.Scheduler())


def test_mixed_batch_reports_every_job_once(client_mock, bot_mock, ava):
    bob = User(telegram_id=777, first_name="Bob", all_streak=9)
    client_mock.get_pending_notifications.return_value = [
        make_job(1, "DAILY_CHALLENGE", ava),
        make_job(2, "SOMETHING_NEW", bob),
        make_job(3, "DAILY_CHALLENGE", None),
    ]
    bot_mock.send_message.side_effect = [None, Forbidden("bot was blocked by the user")]

    summary = make_dispatcher(client_mock, bot_mock).process_notifications()

    client_mock.get_pending_notifications.assert_called_once_with(BATCH_SIZE)
    assert client_mock.update_job_status.call_args_list == [
        call(1, "SENT"),
        call(2, "FAILED"),
        call(3, "FAILED"),
    ]
    assert bot_mock.send_message.call_count == 2

    first, second = bot_mock.send_message.call_args_list
    assert first.args[0] == 555
    assert first.args[1] in {t.format(name="Ava", streak=5) for t in STREAK_TEMPLATES}
    assert first.kwargs["reply_markup"].inline_keyboard[0][0].web_app.url == MINI_APP_URL
    # Unknown job types get the no-streak reminder whatever the user's streak.
    assert second.args[0] == 777
    assert second.args[1] in {t.format(name="Bob") for t in NO_STREAK_TEMPLATES}

    assert (summary.fetched, summary.sent, summary.failed, summary.report_errors) == (3, 1, 2, 0)


def test_job_without_user_is_never_sent(client_mock, bot_mock):
    client_mock.get_pending_notifications.return_value = [make_job(10), make_job(11)]

    make_dispatcher(client_mock, bot_mock).process_notifications()

    bot_mock.send_message.assert_not_called()
    assert client_mock.update_job_status.call_args_list == [call(10, "FAILED"), call(11, "FAILED")]


def test_fetch_failure_processes_nothing(client_mock, bot_mock):
    client_mock.get_pending_notifications.side_effect = ServerError("boom", status_code=500)

    summary = make_dispatcher(client_mock, bot_mock).process_notifications()

    assert summary.fetched == 0
    bot_mock.send_message.assert_not_called()
    client_mock.update_job_status.assert_not_called()


def test_empty_batch_is_noop(client_mock, bot_mock):
    client_mock.get_pending_notifications.return_value = []

    make_dispatcher(client_mock, bot_mock).process_notifications()

    bot_mock.send_message.assert_not_called()
    client_mock.update_job_status.assert_not_called()


def test_status_report_failure_does_not_abort_batch(client_mock, bot_mock, ava):
    client_mock.get_pending_notifications.return_value = [
        make_job(1, user=ava),
        make_job(2, user=ava),
        make_job(3, user=ava),
    ]
    client_mock.update_job_status.side_effect = [ServerError("down", status_code=503), None, None]

    summary = make_dispatcher(client_mock, bot_mock).process_notifications()

    assert bot_mock.send_message.call_count == 3
    assert client_mock.update_job_status.call_count == 3
    assert summary.sent == 3
    assert summary.report_errors == 1


def test_job_streak_uses_best_category():
    user = User(telegram_id=1, all_streak=2, hex_streak=8, word_streak=-1, numeric_streak=4)
    assert job_streak(make_job(1, "DAILY_CHALLENGE", user)) == 8
    assert job_streak(make_job(1, "WEEKLY_DIGEST", user)) == 0
    assert job_streak(make_job(1, "DAILY_CHALLENGE", None)) == 0


def test_negative_streaks_floor_at_zero():
    user = User(telegram_id=1, all_streak=-4, hex_streak=-1)
    assert job_streak(make_job(1, "DAILY_CHALLENGE", user)) == 0


def test_trigger_schedule_swallows_errors(client_mock, bot_mock):
    client_mock.schedule_notifications.side_effect = ServerError("nope", status_code=500)

    make_dispatcher(client_mock, bot_mock).trigger_schedule()

    client_mock.schedule_notifications.assert_called_once_with()


def test_start_registers_both_periodic_jobs(client_mock, bot_mock):
    dispatcher = make_dispatcher(client_mock, bot_mock)
    dispatcher.tick_seconds = 0.01

    dispatcher.start()
    try:
        jobs = dispatcher.scheduler.get_jobs()
        intervals = sorted((job.interval, job.unit) for job in jobs)
        assert intervals == [(1, "hours"), (2, "minutes")]
    finally:
        dispatcher.stop()

    assert dispatcher.scheduler.get_jobs() == []


def test_slow_batch_does_not_delay_hourly_trigger(client_mock, bot_mock):
    release = threading.Event()
    fetch_done = threading.Event()
    scheduled = threading.Event()

    def slow_fetch(limit):
        release.wait(5)
        fetch_done.set()
        return []

    client_mock.get_pending_notifications.side_effect = slow_fetch
    client_mock.schedule_notifications.side_effect = scheduled.set
    dispatcher = make_dispatcher(client_mock, bot_mock)
    dispatcher.tick_seconds = 0.01

    dispatcher.start()
    try:
        dispatcher.scheduler.run_all()
        assert not fetch_done.is_set()
        assert scheduled.wait(2)

        # The batch is still in flight, so the next tick skips it.
        dispatcher.scheduler.run_all()
        assert client_mock.get_pending_notifications.call_count == 1
    finally:
        release.set()
        dispatcher.stop()

    assert fetch_done.wait(2)
