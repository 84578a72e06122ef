import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import settings
from db.models import DailySummary, ExerciseLog, Meal, User
from utils.datetime_utils import today_for_tz

logger = logging.getLogger(__name__)

STATUS_CONFIRMED = "confirmed"
KCAL_PER_KG = 7700.0
WORKOUT_TARGET_PER_WEEK = 4
GRADE_THRESHOLDS = ((90.0, "A"), (75.0, "B"), (60.0, "C"))


def local_today(now: datetime | None = None) -> date:
    return today_for_tz(settings.LOCAL_TIMEZONE, now)


def get_daily_summary(db: Session, user_id: int, d: date) -> DailySummary | None:
    return (
        db.query(DailySummary)
        .filter(DailySummary.user_id == user_id, DailySummary.date == d)
        .first()
    )


def get_or_create_daily_summary(db: Session, user: User, d: date | None = None, now: datetime | None = None) -> DailySummary:
    """Fetch the (user, local date) summary, creating an all-zero row on first use."""
    target = d or local_today(now)
    summary = get_daily_summary(db, user.id, target)
    if summary:
        return summary
    summary = DailySummary(
        user_id=user.id,
        date=target,
        total_calories_consumed=0.0,
        total_calories_burned=0.0,
        net_calories=0.0,
        total_protein_g=0.0,
    )
    db.add(summary)
    db.flush()
    return summary


def apply_confirmed_meal(summary: DailySummary, calories: float, protein_g: float) -> None:
    summary.total_calories_consumed = round((summary.total_calories_consumed or 0.0) + (calories or 0.0), 1)
    summary.total_protein_g = round((summary.total_protein_g or 0.0) + (protein_g or 0.0), 1)
    summary.net_calories = round(summary.total_calories_consumed - (summary.total_calories_burned or 0.0), 1)


def apply_confirmed_exercise(summary: DailySummary, calories_burned: float) -> None:
    summary.total_calories_burned = round((summary.total_calories_burned or 0.0) + (calories_burned or 0.0), 1)
    summary.net_calories = round((summary.total_calories_consumed or 0.0) - summary.total_calories_burned, 1)


def recompute_daily_summary(db: Session, summary: DailySummary) -> DailySummary:
    """Rebuild running totals from confirmed children (drift repair)."""
    consumed, protein = (
        db.query(
            func.coalesce(func.sum(Meal.total_calories), 0.0),
            func.coalesce(func.sum(Meal.total_protein_g), 0.0),
        )
        .filter(Meal.daily_summary_id == summary.id, Meal.status == STATUS_CONFIRMED)
        .one()
    )
    burned = (
        db.query(func.coalesce(func.sum(ExerciseLog.calories_burned), 0.0))
        .filter(ExerciseLog.daily_summary_id == summary.id, ExerciseLog.status == STATUS_CONFIRMED)
        .scalar()
    )
    summary.total_calories_consumed = round(float(consumed or 0.0), 1)
    summary.total_protein_g = round(float(protein or 0.0), 1)
    summary.total_calories_burned = round(float(burned or 0.0), 1)
    summary.net_calories = round(summary.total_calories_consumed - summary.total_calories_burned, 1)
    db.flush()
    logger.info(
        f"Recomputed daily summary {summary.id}: consumed={summary.total_calories_consumed} "
        f"burned={summary.total_calories_burned}"
    )
    return summary


def count_confirmed_children(db: Session, summary_id: int | None) -> tuple[int, int]:
    if summary_id is None:
        return 0, 0
    meals = (
        db.query(func.count(Meal.id))
        .filter(Meal.daily_summary_id == summary_id, Meal.status == STATUS_CONFIRMED)
        .scalar()
    )
    exercises = (
        db.query(func.count(ExerciseLog.id))
        .filter(ExerciseLog.daily_summary_id == summary_id, ExerciseLog.status == STATUS_CONFIRMED)
        .scalar()
    )
    return int(meals or 0), int(exercises or 0)


def summaries_in_range(db: Session, user_id: int, start: date, end: date) -> list[DailySummary]:
    return (
        db.query(DailySummary)
        .filter(DailySummary.user_id == user_id, DailySummary.date >= start, DailySummary.date <= end)
        .order_by(DailySummary.date.asc())
        .all()
    )


def remaining_calories(user: User, summary: DailySummary | None) -> float:
    goal = float(user.goal_calories or settings.DEFAULT_GOAL_CALORIES)
    net = float(summary.net_calories or 0.0) if summary else 0.0
    return round(goal - net, 1)


def daily_snapshot(db: Session, user: User, d: date | None = None, now: datetime | None = None) -> dict:
    """Read-only view of a local day; never creates the summary row."""
    target = d or local_today(now)
    summary = get_daily_summary(db, user.id, target)
    meals, exercises = count_confirmed_children(db, summary.id if summary else None)
    return {
        "date": target.isoformat(),
        "total_calories_consumed": summary.total_calories_consumed if summary else 0.0,
        "total_calories_burned": summary.total_calories_burned if summary else 0.0,
        "net_calories": summary.net_calories if summary else 0.0,
        "total_protein_g": summary.total_protein_g if summary else 0.0,
        "goal_calories": user.goal_calories,
        "goal_protein_g": user.goal_protein_g,
        "remaining_calories": remaining_calories(user, summary),
        "meals_count": meals,
        "exercises_count": exercises,
    }


def weekly_grade(days_on_target: int, days_recorded: int, workouts: int) -> tuple[float, str]:
    """Score = 0.7 x on-target fraction + 0.3 x workouts (capped at 4) / 4, as a percentage."""
    fraction = (days_on_target / days_recorded) if days_recorded > 0 else 0.0
    workout_ratio = min(max(workouts, 0), WORKOUT_TARGET_PER_WEEK) / WORKOUT_TARGET_PER_WEEK
    score = round((0.7 * fraction + 0.3 * workout_ratio) * 100.0, 1)
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return score, grade
    return score, "D"


@dataclass
class WeeklySummary:
    start_date: date
    end_date: date
    days_recorded: int
    days_on_target: int
    workouts: int
    goal_calories: int
    average_net_calories: float
    total_net_calories: float
    deficit_calories: float
    projected_weight_change_kg: float
    score: float
    grade: str

    def as_dict(self) -> dict:
        data = asdict(self)
        data["start_date"] = self.start_date.isoformat()
        data["end_date"] = self.end_date.isoformat()
        return data


def build_weekly_summary(
    db: Session,
    user: User,
    end_date: date | None = None,
    days: int | None = None,
    now: datetime | None = None,
) -> WeeklySummary:
    span = days or settings.WEEKLY_SUMMARY_DAYS
    end = end_date or local_today(now)
    start = end - timedelta(days=span - 1)
    summaries = summaries_in_range(db, user.id, start, end)
    goal = int(user.goal_calories or settings.DEFAULT_GOAL_CALORIES)

    nets = [(s.total_calories_consumed or 0.0) - (s.total_calories_burned or 0.0) for s in summaries]
    total_net = round(sum(nets), 1)
    days_on_target = sum(1 for net in nets if net <= goal)
    summary_ids = [s.id for s in summaries]
    workouts = 0
    if summary_ids:
        workouts = int(
            db.query(func.count(ExerciseLog.id))
            .filter(ExerciseLog.daily_summary_id.in_(summary_ids), ExerciseLog.status == STATUS_CONFIRMED)
            .scalar()
            or 0
        )
    deficit = round(goal * len(summaries) - total_net, 1)
    score, grade = weekly_grade(days_on_target, len(summaries), workouts)
    return WeeklySummary(
        start_date=start,
        end_date=end,
        days_recorded=len(summaries),
        days_on_target=days_on_target,
        workouts=workouts,
        goal_calories=goal,
        average_net_calories=round(total_net / len(summaries), 1) if summaries else 0.0,
        total_net_calories=total_net,
        deficit_calories=deficit,
        projected_weight_change_kg=round(-deficit / KCAL_PER_KG, 2),
        score=score,
        grade=grade,
    )
