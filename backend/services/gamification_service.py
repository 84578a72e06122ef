import logging
from dataclasses import dataclass
from datetime import datetime

from config import settings
from db.models import User
from utils.datetime_utils import local_date_for, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreakState:
    current_streak_days: int
    longest_streak_days: int
    total_days_logged: int
    last_user_message_at: datetime | None


def streak_state(user: User) -> StreakState:
    return StreakState(
        current_streak_days=user.current_streak_days or 0,
        longest_streak_days=user.longest_streak_days or 0,
        total_days_logged=user.total_days_logged or 0,
        last_user_message_at=user.last_user_message_at,
    )


def update_streak(user: User, now: datetime | None = None, tz_name: str | None = None) -> bool:
    """Count the user's activity for the local calendar day of ``now``.

    Same local day as the previous message: counters unchanged. Exactly the
    next local day: streak + 1. Any larger gap (or first message): streak = 1.
    Returns True when a new day was counted.
    """
    reference = now or utcnow()
    zone = tz_name or settings.LOCAL_TIMEZONE
    today = local_date_for(reference, zone)
    previous = local_date_for(user.last_user_message_at, zone) if user.last_user_message_at else None

    user.last_interaction_at = to_naive_utc(reference)
    # Out-of-order delivery: a message from an earlier local day never rewinds the streak.
    if previous is not None and today < previous:
        return False

    current = user.current_streak_days or 0
    new_day = previous != today
    if previous is not None and (today - previous).days == 1:
        current += 1
    elif new_day:
        current = 1

    user.current_streak_days = current
    user.longest_streak_days = max(user.longest_streak_days or 0, current)
    if new_day:
        user.total_days_logged = (user.total_days_logged or 0) + 1
    user.last_user_message_at = to_naive_utc(reference)
    if new_day:
        logger.info(f"Streak for user {user.id}: current={current} longest={user.longest_streak_days}")
    return new_day
