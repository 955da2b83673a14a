"""
Records exchanged with the DEC0D3 backend.

All records are built from backend JSON via `from_dict`, which fills in
defaults for missing keys and ignores keys it does not know.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


JOB_PENDING = "PENDING"
JOB_SENT = "SENT"
JOB_FAILED = "FAILED"

JOB_TYPE_DAILY_CHALLENGE = "DAILY_CHALLENGE"


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class User:
    telegram_id: int
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    all_streak: int = 0
    hex_streak: int = 0
    word_streak: int = 0
    numeric_streak: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            telegram_id=_int(data.get("telegram_id")),
            username=data.get("username") or "",
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            all_streak=_int(data.get("all_streak")),
            hex_streak=_int(data.get("hex_streak")),
            word_streak=_int(data.get("word_streak")),
            numeric_streak=_int(data.get("numeric_streak")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def best_streak(self) -> int:
        """Largest streak across all game variants, never below zero."""
        return max(0, self.all_streak, self.hex_streak, self.word_streak, self.numeric_streak)


@dataclass
class UserProfile:
    telegram_id: int
    username: str = ""
    first_name: str = ""
    total_games_won: int = 0
    current_streak: int = 0
    shard_balance: int = 0
    referral_count: int = 0
    daily_streak: int = 0
    last_played_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            telegram_id=_int(data.get("telegram_id")),
            username=data.get("username") or "",
            first_name=data.get("first_name") or "",
            total_games_won=_int(data.get("total_games_won")),
            current_streak=_int(data.get("current_streak")),
            shard_balance=_int(data.get("shard_balance")),
            referral_count=_int(data.get("referral_count")),
            daily_streak=_int(data.get("daily_streak")),
            last_played_at=data.get("last_played_at") or "",
        )


@dataclass
class ReferralResponse:
    success: bool = False
    shards_awarded: int = 0
    message: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReferralResponse":
        return cls(
            success=bool(data.get("success", False)),
            shards_awarded=_int(data.get("shards_awarded")),
            message=data.get("message") or "",
        )


@dataclass
class UserStats:
    total_users: int = 0
    active_users_7d: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserStats":
        return cls(
            total_users=_int(data.get("total_users")),
            active_users_7d=_int(data.get("active_users_7d")),
        )


@dataclass
class NotificationJob:
    """A pending notification pulled from the backend queue.

    The nested `user` snapshot is the only source of the recipient; a flat
    `telegram_id` on the payload, if the backend sends one, is ignored.
    """

    id: int
    user_id: int = 0
    type: str = ""
    scheduled_at: str = ""
    status: str = JOB_PENDING
    user: Optional[User] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationJob":
        user_data = data.get("user")
        return cls(
            id=_int(data.get("id")),
            user_id=_int(data.get("user_id")),
            type=data.get("type") or "",
            scheduled_at=data.get("scheduled_at") or "",
            status=data.get("status") or JOB_PENDING,
            user=User.from_dict(user_data) if isinstance(user_data, dict) else None,
        )
