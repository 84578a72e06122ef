from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import User
from services.gamification_service import streak_state
from services.summary_service import (
    build_weekly_summary,
    daily_snapshot,
    get_daily_summary,
    local_today,
    recompute_daily_summary,
)
from services.user_service import get_user_by_phone

router = APIRouter(prefix="/summaries", tags=["summaries"])


class RecomputeRequest(BaseModel):
    model_config = {"populate_by_name": True}

    identity: str = Field(min_length=1, max_length=64)
    target_date: Optional[date] = Field(default=None, alias="date")


def _require_user(db: Session, identity: str) -> User:
    user = get_user_by_phone(db, identity)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/daily")
def get_daily(
    identity: str,
    date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    """Read-only daily totals for the user's local day (today by default)."""
    user = _require_user(db, identity)
    snapshot = daily_snapshot(db, user, date)
    streak = streak_state(user)
    snapshot["current_streak_days"] = streak.current_streak_days
    snapshot["longest_streak_days"] = streak.longest_streak_days
    return snapshot


@router.get("/weekly")
def get_weekly(
    identity: str,
    end_date: Optional[date] = None,
    days: Optional[int] = None,
    db: Session = Depends(get_db),
):
    user = _require_user(db, identity)
    if days is not None and not 1 <= days <= 31:
        raise HTTPException(status_code=400, detail="days must be between 1 and 31")
    return build_weekly_summary(db, user, end_date=end_date, days=days).as_dict()


@router.post("/recompute")
def recompute(body: RecomputeRequest, db: Session = Depends(get_db)):
    """Rebuild a day's running totals from its confirmed meals and exercises."""
    user = _require_user(db, body.identity)
    target = body.target_date or local_today()
    summary = get_daily_summary(db, user.id, target)
    if not summary:
        raise HTTPException(status_code=404, detail="No summary for that date")
    recompute_daily_summary(db, summary)
    db.commit()
    return daily_snapshot(db, user, target)
