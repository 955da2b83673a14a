import random

import pytest

from messages import (
    NO_STREAK_TEMPLATES,
    PLAY_BUTTON_TEXT,
    STREAK_TEMPLATES,
    daily_reminder_message,
    invite_link,
    main_menu,
    profile_message,
    referral_message,
    welcome_message,
)
from models import UserProfile


def test_template_families_have_expected_sizes():
    assert len(STREAK_TEMPLATES) == 10
    assert len(NO_STREAK_TEMPLATES) == 5


def test_recruitment_template_text():
    assert "HEX signatures, NUMERIC sequences, WORD ciphers—all waiting." in NO_STREAK_TEMPLATES[2]


@pytest.mark.parametrize("streak", [1, 5, 365])
def test_positive_streak_uses_streak_family(streak):
    rng = random.Random(7)
    for _ in range(30):
        text = daily_reminder_message("Ava", streak, rng=rng)
        assert text in {t.format(name="Ava", streak=streak) for t in STREAK_TEMPLATES}
        assert "Ava" in text
        assert str(streak) in text


@pytest.mark.parametrize("streak", [0, -3])
def test_no_streak_family_for_zero_or_negative(streak):
    rng = random.Random(7)
    for _ in range(30):
        text = daily_reminder_message("Ava", streak, rng=rng)
        assert text in {t.format(name="Ava") for t in NO_STREAK_TEMPLATES}
        assert "Ava" in text


def test_same_seed_gives_same_pick():
    first = daily_reminder_message("Neo", 3, rng=random.Random(42))
    second = daily_reminder_message("Neo", 3, rng=random.Random(42))
    assert first == second


def test_every_streak_template_reachable():
    rng = random.Random(1)
    seen = {daily_reminder_message("Neo", 2, rng=rng) for _ in range(500)}
    assert len(seen) == len(STREAK_TEMPLATES)


def test_default_rng_still_returns_known_template():
    text = daily_reminder_message("Trinity", 0)
    assert text in {t.format(name="Trinity") for t in NO_STREAK_TEMPLATES}


def test_welcome_and_referral_messages():
    assert "Welcome to DEC0D3, Ava!" in welcome_message("Ava")
    assert referral_message("Bob") == "🚀 User **Bob** just joined via your invite link!\n\n💎 You received +20 Shards!"


def test_main_menu_opens_mini_app():
    markup = main_menu("https://example.test/game/")

    button = markup.inline_keyboard[0][0]
    assert button.text == PLAY_BUTTON_TEXT
    assert button.web_app.url == "https://example.test/game/"


def test_invite_link():
    assert invite_link("dec0d3_bot", 555) == "https://t.me/dec0d3_bot?start=ref_555"
    assert invite_link("@dec0d3_bot", 555) == "https://t.me/dec0d3_bot?start=ref_555"
    assert invite_link("", 555) == ""


def test_profile_message_with_and_without_invite():
    profile = UserProfile(telegram_id=555, first_name="Ava", shard_balance=60, referral_count=2)

    plain = profile_message(profile)
    with_invite = profile_message(profile, "https://t.me/dec0d3_bot?start=ref_555")

    assert plain.startswith("📊 Agent Ava")
    assert "Invite friends" not in plain
    assert with_invite.startswith(plain)
    assert with_invite.endswith("🔗 Invite friends: https://t.me/dec0d3_bot?start=ref_555")
