from unittest.mock import MagicMock, call, patch

from models import UserStats
from server_client import ServerError
from startup import (
    StartupMetrics,
    collect_startup_metrics,
    format_startup_message,
    format_uptime,
    send_startup_notification,
    wait_for_server,
)


def test_format_uptime():
    assert format_uptime(42) == "42s"
    assert format_uptime(125) == "2m 5s"
    assert format_uptime(3 * 3600 + 61) == "3h 1m 1s"
    assert format_uptime(2 * 86400 + 3600) == "2d 1h 0m 0s"


@patch("startup.time.sleep")
def test_wait_for_server_backs_off_until_healthy(sleep_mock):
    client = MagicMock()
    client.health_check.side_effect = [ServerError("down"), ServerError("down"), ServerError("down"), None]

    assert wait_for_server(client) is True
    assert sleep_mock.call_args_list == [call(1.0), call(2.0), call(4.0)]


@patch("startup.time.sleep")
def test_wait_for_server_gives_up(sleep_mock):
    client = MagicMock()
    client.health_check.side_effect = ServerError("down")

    assert wait_for_server(client, max_attempts=4) is False
    assert client.health_check.call_count == 4
    assert sleep_mock.call_args_list == [call(1.0), call(2.0), call(4.0)]


def test_collect_metrics_tolerates_stats_failure():
    client = MagicMock()
    client.get_user_stats.side_effect = ServerError("down", status_code=500)

    metrics = collect_startup_metrics(client, started_at=0.0)

    assert metrics.db_connected is True
    assert metrics.total_users == 0
    assert metrics.uptime > 0


def test_format_startup_message():
    metrics = StartupMetrics(
        server_id="bot-host-1",
        start_time=0.0,
        uptime=3725,
        last_update=3725.0,
        working_directory="/srv/bot",
        python_version="3.12.1",
        threads=4,
        memory_usage_mb=48.5,
        db_connected=False,
        total_users=120,
        active_users_7d=45,
    )

    text = format_startup_message(metrics, "UTC")

    assert "🖥️ Server: bot-host-1" in text
    assert "⏰ Start time: 1970-01-01 00:00:00" in text
    assert "⌛️ Uptime: 1h 2m 5s" in text
    assert "❌ DB Status: Disconnected" in text
    assert "👥 Total users: 120" in text
    assert "👤 Active users (7d): 45" in text


def test_send_startup_notification_skips_without_admin():
    bot = MagicMock()

    assert send_startup_notification(bot, MagicMock(), 0, started_at=0.0) is None
    bot.send_message.assert_not_called()


def test_send_startup_notification_to_admin():
    bot = MagicMock()
    client = MagicMock()
    client.get_user_stats.return_value = UserStats(total_users=7, active_users_7d=3)

    text = send_startup_notification(bot, client, 41361615, started_at=0.0, tz_name="Not/AZone")

    bot.send_message.assert_called_once_with(41361615, text)
    assert "👥 Total users: 7" in text
