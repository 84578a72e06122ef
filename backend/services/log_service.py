import json
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from db.models import ExerciseLog, Meal, User
from services.catalog_service import EXERCISE, FOOD, bump_usage
from services.summary_service import (
    STATUS_CONFIRMED,
    apply_confirmed_exercise,
    apply_confirmed_meal,
    get_or_create_daily_summary,
)
from utils.datetime_utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def _as_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def record_confirmed_meal(db: Session, user: User, payload: dict, now: datetime | None = None) -> Meal:
    """Persist a confirmed meal and fold it into the day's running totals."""
    reference = now or utcnow()
    totals = payload.get("totals") or {}
    items = payload.get("items") or []
    summary = get_or_create_daily_summary(db, user, now=reference)

    meal = Meal(
        user_id=user.id,
        daily_summary_id=summary.id,
        status=STATUS_CONFIRMED,
        description=str(payload.get("description") or "")[:500],
        items=json.dumps(items, ensure_ascii=True),
        total_calories=round(_as_float(totals.get("calories")), 1),
        total_protein_g=round(_as_float(totals.get("protein_g")), 1),
        total_carbs_g=round(_as_float(totals.get("carbs_g")), 1),
        total_fat_g=round(_as_float(totals.get("fat_g")), 1),
        total_fiber_g=round(_as_float(totals.get("fiber_g")), 1),
        logged_at=to_naive_utc(reference),
        created_at=to_naive_utc(reference),
    )
    db.add(meal)
    apply_confirmed_meal(summary, meal.total_calories, meal.total_protein_g)

    for item in items:
        item_id = item.get("item_id") if isinstance(item, dict) else None
        if isinstance(item_id, int):
            bump_usage(db, FOOD, item_id, reference)

    db.flush()
    logger.info(f"Meal {meal.id} confirmed for user {user.id}: {meal.total_calories} kcal")
    return meal


def record_confirmed_exercise(db: Session, user: User, payload: dict, now: datetime | None = None) -> ExerciseLog:
    reference = now or utcnow()
    summary = get_or_create_daily_summary(db, user, now=reference)
    item_id = payload.get("item_id")

    log = ExerciseLog(
        user_id=user.id,
        daily_summary_id=summary.id,
        exercise_item_id=item_id if isinstance(item_id, int) else None,
        status=STATUS_CONFIRMED,
        exercise_name=str(payload.get("name") or "exercício")[:200],
        duration_minutes=_as_float(payload.get("duration_minutes")),
        intensity=str(payload.get("intensity") or "moderate"),
        met_value=_as_float(payload.get("met_value")),
        calories_burned=round(_as_float(payload.get("calories_burned")), 1),
        logged_at=to_naive_utc(reference),
        created_at=to_naive_utc(reference),
    )
    db.add(log)
    apply_confirmed_exercise(summary, log.calories_burned)
    if isinstance(item_id, int):
        bump_usage(db, EXERCISE, item_id, reference)

    db.flush()
    logger.info(f"Exercise {log.id} confirmed for user {user.id}: {log.calories_burned} kcal")
    return log
