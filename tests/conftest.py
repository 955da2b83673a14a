from unittest.mock import MagicMock

import pytest

from models import User


@pytest.fixture
def session_mock():
    return MagicMock()


@pytest.fixture
def bot_mock():
    return MagicMock()


@pytest.fixture
def ava():
    return User(telegram_id=555, username="ava_decodes", first_name="Ava", all_streak=5)
