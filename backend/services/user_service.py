import logging
from datetime import datetime

from sqlalchemy.orm import Session

from config import settings
from db.models import User
from utils.datetime_utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("user_name", "gender", "age", "weight_kg", "height_cm", "goal_calories", "goal_protein_g")
ONBOARDING_REQUIRED_FIELDS = ("weight_kg", "height_cm", "age", "gender")


def normalize_phone(identity: str) -> str:
    return "".join(ch for ch in (identity or "") if ch.isdigit() or ch == "+").strip()


def get_user_by_phone(db: Session, identity: str) -> User | None:
    return db.query(User).filter(User.phone_number == normalize_phone(identity)).first()


def get_or_create_user_by_phone(db: Session, identity: str, now: datetime | None = None) -> User:
    phone = normalize_phone(identity)
    if not phone:
        raise ValueError("Identity must contain a phone number")
    user = db.query(User).filter(User.phone_number == phone).first()
    if user:
        return user
    user = User(
        phone_number=phone,
        goal_calories=settings.DEFAULT_GOAL_CALORIES,
        goal_protein_g=settings.DEFAULT_GOAL_PROTEIN_G,
        created_at=to_naive_utc(now or utcnow()),
    )
    db.add(user)
    db.flush()
    logger.info(f"Created user {user.id} for {phone}")
    return user


def missing_profile_fields(user: User) -> list[str]:
    return [name for name in ONBOARDING_REQUIRED_FIELDS if getattr(user, name, None) in (None, "")]


def update_profile(db: Session, user: User, fields: dict) -> dict:
    """Apply whitelisted profile fields; returns the subset that changed."""
    changed: dict = {}
    for name, value in (fields or {}).items():
        if name not in PROFILE_FIELDS or value is None:
            continue
        if getattr(user, name) != value:
            setattr(user, name, value)
            changed[name] = value
    if not user.onboarding_completed and not missing_profile_fields(user):
        user.onboarding_completed = True
        changed["onboarding_completed"] = True
    if changed:
        db.flush()
        logger.info(f"Profile updated for user {user.id}: {sorted(changed)}")
    return changed


def effective_weight_kg(user: User | None) -> float:
    if user is not None and user.weight_kg and user.weight_kg > 0:
        return float(user.weight_kg)
    return float(settings.DEFAULT_WEIGHT_KG)
