"""Catalog lookups for foods and exercises.

Rows are returned as frozen ``CatalogEntry`` snapshots so candidate lists can
outlive the session that loaded them (the catalog cache holds them across
requests).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Session

from db.models import CatalogFallbackLog, ExerciseItem, FoodItem
from utils.datetime_utils import to_naive_utc, utcnow
from utils.text import sanitize_query

logger = logging.getLogger(__name__)

FOOD = "food"
EXERCISE = "exercise"
CATALOG_MODELS = {FOOD: FoodItem, EXERCISE: ExerciseItem}


@dataclass(frozen=True)
class Measure:
    name: str
    grams: float


@dataclass(frozen=True)
class CatalogEntry:
    id: int
    kind: str
    name: str
    name_normalized: str
    aliases: tuple[str, ...] = ()
    usage_count: int = 0
    # food
    serving_size: str | None = None
    serving_size_grams: float | None = None
    calories: float = 0.0
    protein_g: float = 0.0
    carbs_g: float = 0.0
    fat_g: float = 0.0
    fiber_g: float = 0.0
    measures: tuple[Measure, ...] = field(default_factory=tuple)
    # exercise
    category: str | None = None
    met_light: float | None = None
    met_moderate: float | None = None
    met_intense: float | None = None

    def search_names(self) -> tuple[str, ...]:
        return (self.name_normalized, *self.aliases)


def _parse_json_list(raw: str | None) -> list:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring malformed catalog JSON column: {raw[:80]}")
        return []
    return parsed if isinstance(parsed, list) else []


def _parse_measures(raw: str | None) -> tuple[Measure, ...]:
    measures: list[Measure] = []
    for item in _parse_json_list(raw):
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        try:
            grams = float(item.get("grams"))
        except (TypeError, ValueError):
            continue
        if name and grams > 0:
            measures.append(Measure(name=name, grams=grams))
    return tuple(measures)


def to_entry(row, kind: str) -> CatalogEntry:
    aliases = tuple(sanitize_query(a) for a in _parse_json_list(row.aliases) if sanitize_query(a))
    if kind == FOOD:
        return CatalogEntry(
            id=row.id,
            kind=FOOD,
            name=row.name,
            name_normalized=row.name_normalized,
            aliases=aliases,
            usage_count=row.usage_count or 0,
            serving_size=row.serving_size,
            serving_size_grams=row.serving_size_grams,
            calories=row.calories or 0.0,
            protein_g=row.protein_g or 0.0,
            carbs_g=row.carbs_g or 0.0,
            fat_g=row.fat_g or 0.0,
            fiber_g=row.fiber_g or 0.0,
            measures=_parse_measures(row.common_measures),
            category=row.category,
        )
    return CatalogEntry(
        id=row.id,
        kind=EXERCISE,
        name=row.name,
        name_normalized=row.name_normalized,
        aliases=aliases,
        usage_count=row.usage_count or 0,
        category=row.category,
        met_light=row.met_light,
        met_moderate=row.met_moderate,
        met_intense=row.met_intense,
    )


def _model(kind: str):
    model = CATALOG_MODELS.get(kind)
    if model is None:
        raise ValueError(f"Unknown catalog kind: {kind}")
    return model


def find_exact(db: Session, kind: str, query: str) -> CatalogEntry | None:
    """Normalized-name equality, then alias equality."""
    model = _model(kind)
    q = sanitize_query(query)
    if not q:
        return None
    row = (
        db.query(model)
        .filter(model.name_normalized == q)
        .order_by(model.usage_count.desc())
        .first()
    )
    if row:
        return to_entry(row, kind)

    alias_rows = (
        db.query(model)
        .filter(model.aliases.isnot(None), model.aliases.contains(q, autoescape=True))
        .order_by(model.usage_count.desc())
        .all()
    )
    for alias_row in alias_rows:
        entry = to_entry(alias_row, kind)
        if q in entry.aliases:
            return entry
    return None


def find_by_prefix(db: Session, kind: str, query: str, limit: int = 10) -> list[CatalogEntry]:
    model = _model(kind)
    q = sanitize_query(query)
    if not q:
        return []
    rows = (
        db.query(model)
        .filter(model.name_normalized.startswith(q, autoescape=True))
        .order_by(model.usage_count.desc(), model.name_normalized.asc())
        .limit(limit)
        .all()
    )
    return [to_entry(r, kind) for r in rows]


def find_containing_any(db: Session, kind: str, tokens: list[str], limit: int = 50) -> list[CatalogEntry]:
    """Candidates whose name or aliases contain any token (raw substring)."""
    model = _model(kind)
    if not tokens:
        return []
    clauses = []
    for token in tokens:
        clauses.append(model.name_normalized.contains(token, autoescape=True))
        clauses.append(model.aliases.contains(token, autoescape=True))
    rows = (
        db.query(model)
        .filter(or_(*clauses))
        .order_by(model.usage_count.desc())
        .limit(limit)
        .all()
    )
    return [to_entry(r, kind) for r in rows]


def top_by_usage(db: Session, kind: str, limit: int) -> list[CatalogEntry]:
    model = _model(kind)
    rows = (
        db.query(model)
        .order_by(model.usage_count.desc(), model.id.asc())
        .limit(limit)
        .all()
    )
    return [to_entry(r, kind) for r in rows]


def bump_usage(db: Session, kind: str, item_id: int, now: datetime | None = None) -> None:
    model = _model(kind)
    row = db.query(model).filter(model.id == item_id).first()
    if not row:
        return
    row.usage_count = (row.usage_count or 0) + 1
    row.last_used_at = to_naive_utc(now or utcnow())


def log_catalog_miss(
    db: Session,
    kind: str,
    query: str,
    user_phone: str | None = None,
    intent: str | None = None,
) -> None:
    """Persist an unresolved lookup so the catalog can be curated later."""
    normalized = sanitize_query(query)
    logger.info(f"Catalog miss kind={kind} query={normalized!r} user={user_phone}")
    db.add(
        CatalogFallbackLog(
            catalog=kind,
            search_query=(query or "").strip()[:200],
            normalized_query=normalized[:200],
            user_phone=user_phone,
            intent=intent,
        )
    )


def add_food_item(
    db: Session,
    *,
    name: str,
    calories: float,
    serving_size_grams: float = 100.0,
    protein_g: float = 0.0,
    carbs_g: float = 0.0,
    fat_g: float = 0.0,
    fiber_g: float = 0.0,
    aliases: list[str] | None = None,
    measures: dict[str, float] | None = None,
    category: str | None = None,
    usage_count: int = 0,
) -> FoodItem:
    row = FoodItem(
        name=name,
        name_normalized=sanitize_query(name),
        aliases=json.dumps([sanitize_query(a) for a in (aliases or [])], ensure_ascii=True),
        category=category,
        serving_size=f"{serving_size_grams:g}g",
        serving_size_grams=serving_size_grams,
        calories=calories,
        protein_g=protein_g,
        carbs_g=carbs_g,
        fat_g=fat_g,
        fiber_g=fiber_g,
        common_measures=json.dumps(
            [{"name": k, "grams": v} for k, v in (measures or {}).items()],
            ensure_ascii=True,
        ),
        usage_count=usage_count,
    )
    db.add(row)
    db.flush()
    return row


def add_exercise_item(
    db: Session,
    *,
    name: str,
    met_moderate: float | None,
    met_light: float | None = None,
    met_intense: float | None = None,
    aliases: list[str] | None = None,
    category: str | None = None,
    usage_count: int = 0,
) -> ExerciseItem:
    row = ExerciseItem(
        name=name,
        name_normalized=sanitize_query(name),
        aliases=json.dumps([sanitize_query(a) for a in (aliases or [])], ensure_ascii=True),
        category=category,
        met_light=met_light,
        met_moderate=met_moderate,
        met_intense=met_intense,
        usage_count=usage_count,
    )
    db.add(row)
    db.flush()
    return row
