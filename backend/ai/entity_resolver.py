"""Entity resolution cascade: free-text food/exercise mentions to catalog items.

Catalog lookup is an ordered list of stage functions tried until one returns
a hit: exact name/alias, prefix by usage, a short-query guard, whole-word
substring, then fuzzy similarity over the top-N-by-usage candidates. Quantity
resolution follows a second cascade: direct mass/time, the item's named
measures, a remote conversion, and finally the default serving.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from ai.language_model import LanguageModel
from config import settings
from services.catalog_cache import CatalogCache
from services.catalog_service import (
    EXERCISE,
    FOOD,
    CatalogEntry,
    Measure,
    find_by_prefix,
    find_containing_any,
    find_exact,
    log_catalog_miss,
    top_by_usage,
)
from services.fuzzy import FuzzyMatcher
from utils.quantity import UNIT_GRAM, UNIT_MILLILITER, UNIT_SERVING, parse_duration_minutes, parse_quantity
from utils.text import (
    contains_whole_word,
    normalize_text,
    normalize_unit_label,
    sanitize_query,
    significant_words,
    strip_exercise_fillers,
    tokenize_words,
)

logger = logging.getLogger(__name__)

INTENSITY_KEYWORDS = {
    "light": ("leve", "tranquilo", "tranquila", "devagar"),
    "moderate": ("moderado", "moderada", "medio", "media"),
    "intense": ("intenso", "intensa", "forte", "pesado", "pesada", "puxado", "puxada"),
}
MET_FALLBACK_ORDER = ("moderate", "light", "intense")
DEFAULT_MET = 6.0


@dataclass(frozen=True)
class CatalogMatch:
    item: CatalogEntry
    method: str  # exact | prefix | substring | fuzzy
    score: float | None = None


@dataclass
class ResolvedEntityReference:
    item: CatalogEntry
    kind: str
    query: str
    match_method: str
    quantity_text: str | None
    quantity_value: float
    unit: str
    quantity_method: str  # direct | measure | llm | default
    match_score: float | None = None
    grams: float | None = None
    minutes: float | None = None
    intensity: str | None = None
    met_value: float | None = None
    nutrition: dict[str, float] = field(default_factory=dict)

    @property
    def calories(self) -> float:
        return self.nutrition.get("calories", 0.0)

    def as_payload(self) -> dict:
        data = {
            "item_id": self.item.id,
            "name": self.item.name,
            "query": self.query,
            "match_method": self.match_method,
            "quantity_text": self.quantity_text,
            "quantity_value": self.quantity_value,
            "unit": self.unit,
            "quantity_method": self.quantity_method,
        }
        if self.kind == FOOD:
            data["grams"] = self.grams
            data.update(self.nutrition)
        else:
            data.update({
                "duration_minutes": self.minutes,
                "intensity": self.intensity,
                "met_value": self.met_value,
                "calories_burned": self.calories,
            })
        return data


class _StopCascade:
    """Returned by a stage to end catalog lookup with "not found"."""


STOP = _StopCascade()

Stage = Callable[[str, str], "CatalogMatch | _StopCascade | None"]


def find_measure(measures: tuple[Measure, ...] | list[Measure], unit_label: str) -> Measure | None:
    """Exact label, then keyword on significant words, then bidirectional substring."""
    target = normalize_unit_label(unit_label)
    if not target or not measures:
        return None
    normalized = [(normalize_unit_label(m.name), m) for m in measures]

    for name, measure in normalized:
        if name == target:
            return measure

    keywords = significant_words(unit_label)
    if keywords:
        for name, measure in normalized:
            if any(keyword in name for keyword in keywords):
                return measure

    for name, measure in normalized:
        if name and (target in name or name in target):
            return measure
    return None


def detect_intensity(text: str | None) -> str | None:
    normalized = normalize_text(text)
    for intensity, keywords in INTENSITY_KEYWORDS.items():
        if any(re.search(rf"\b{k}\b", normalized) for k in keywords):
            return intensity
    return None


def resolve_met(item: CatalogEntry, intensity: str | None) -> tuple[float, str]:
    """MET for the requested intensity, falling back moderate -> light -> intense -> 6.0."""
    by_intensity = {
        "light": item.met_light,
        "moderate": item.met_moderate,
        "intense": item.met_intense,
    }
    if intensity and by_intensity.get(intensity):
        return float(by_intensity[intensity]), intensity
    for candidate in MET_FALLBACK_ORDER:
        if by_intensity.get(candidate):
            return float(by_intensity[candidate]), candidate
    return DEFAULT_MET, intensity or "moderate"


def scale_nutrition(item: CatalogEntry, grams: float | None, servings: float) -> dict[str, float]:
    if grams is not None and item.serving_size_grams and item.serving_size_grams > 0:
        ratio = grams / item.serving_size_grams
    else:
        ratio = servings or 1.0
    return {
        "calories": round(item.calories * ratio, 1),
        "protein_g": round(item.protein_g * ratio, 1),
        "carbs_g": round(item.carbs_g * ratio, 1),
        "fat_g": round(item.fat_g * ratio, 1),
        "fiber_g": round(item.fiber_g * ratio, 1),
    }


def exercise_calories(met: float, weight_kg: float, minutes: float) -> float:
    return round(met * weight_kg * (minutes / 60.0), 1)


class EntityResolver:
    """Resolves mentions for a single inbound message.

    Instances are per message: the resolution cache lives on the instance and
    is never shared across requests.
    """

    def __init__(
        self,
        db: Session,
        language_model: LanguageModel | None = None,
        catalog_cache: CatalogCache | None = None,
        fuzzy: FuzzyMatcher | None = None,
        *,
        user_phone: str | None = None,
        intent: str | None = None,
    ):
        self.db = db
        self.language_model = language_model
        self.catalog_cache = catalog_cache
        self.fuzzy = fuzzy or FuzzyMatcher()
        self.user_phone = user_phone
        self.intent = intent
        self._resolved: dict[tuple, ResolvedEntityReference] = {}
        self.stages: list[Stage] = [
            self._exact_stage,
            self._prefix_stage,
            self._short_query_guard,
            self._substring_stage,
            self._fuzzy_stage,
        ]

    # ------------------------------------------------------------------
    # catalog lookup stages
    # ------------------------------------------------------------------
    def _exact_stage(self, kind: str, query: str) -> CatalogMatch | None:
        entry = find_exact(self.db, kind, query)
        return CatalogMatch(entry, "exact", 1.0) if entry else None

    def _prefix_stage(self, kind: str, query: str) -> CatalogMatch | None:
        entries = find_by_prefix(self.db, kind, query, limit=1)
        return CatalogMatch(entries[0], "prefix") if entries else None

    def _short_query_guard(self, kind: str, query: str) -> _StopCascade | None:
        # Short queries hit unrelated words by substring ("pera" in "temperada").
        if len(query) <= settings.SHORT_QUERY_MAX_LENGTH:
            logger.info(f"Short {kind} query {query!r} not found by exact/prefix; skipping loose stages")
            return STOP
        return None

    def _substring_stage(self, kind: str, query: str) -> CatalogMatch | None:
        tokens = tokenize_words(query, min_length=3)
        if not tokens:
            return None
        for entry in find_containing_any(self.db, kind, tokens, limit=settings.SUBSTRING_CANDIDATES):
            for name in entry.search_names():
                if all(contains_whole_word(name, token) for token in tokens):
                    return CatalogMatch(entry, "substring")
        return None

    def _fuzzy_candidates(self, kind: str) -> list[CatalogEntry]:
        limit = settings.FOOD_FUZZY_CANDIDATES if kind == FOOD else settings.EXERCISE_FUZZY_CANDIDATES
        key = f"{kind}:top:{limit}"
        if self.catalog_cache is None:
            return top_by_usage(self.db, kind, limit)
        return self.catalog_cache.get_or_load(key, lambda: top_by_usage(self.db, kind, limit))

    def _fuzzy_stage(self, kind: str, query: str) -> CatalogMatch | None:
        threshold = settings.FOOD_FUZZY_THRESHOLD if kind == FOOD else settings.EXERCISE_FUZZY_THRESHOLD
        match = self.fuzzy.best_match(
            query,
            self._fuzzy_candidates(kind),
            lambda entry: entry.search_names(),
            threshold,
        )
        if match is None:
            return None
        logger.info(f"Fuzzy {kind} match {query!r} -> {match.candidate.name!r} ({match.score:.2f}, {match.form})")
        return CatalogMatch(match.candidate, "fuzzy", match.score)

    def lookup(self, kind: str, name: str) -> CatalogMatch | None:
        """Run the catalog stages in order; a total miss is logged for curation."""
        query = strip_exercise_fillers(name) if kind == EXERCISE else sanitize_query(name)
        if not query:
            return None
        for stage in self.stages:
            outcome = stage(kind, query)
            if outcome is STOP:
                break
            if isinstance(outcome, CatalogMatch):
                return outcome
        log_catalog_miss(self.db, kind, name, user_phone=self.user_phone, intent=self.intent)
        return None

    # ------------------------------------------------------------------
    # quantity resolution
    # ------------------------------------------------------------------
    async def _food_grams(self, item: CatalogEntry, quantity_text: str | None) -> tuple[float | None, float, str, str]:
        """Returns (grams, quantity_value, unit, method)."""
        parsed = parse_quantity(quantity_text)
        serving_grams = item.serving_size_grams if item.serving_size_grams and item.serving_size_grams > 0 else None

        # Volumes are taken at 1 g/ml.
        if parsed is not None and parsed.unit in (UNIT_GRAM, UNIT_MILLILITER):
            return parsed.value, parsed.value, parsed.unit, "direct"

        if parsed is not None:
            label = parsed.label or parsed.unit
            if parsed.unit != UNIT_SERVING or parsed.label:
                measure = find_measure(item.measures, label)
                if measure is not None:
                    return round(measure.grams * parsed.value, 1), parsed.value, parsed.unit, "measure"
                grams = await self._remote_grams(item, quantity_text)
                if grams is not None:
                    return round(grams, 1), parsed.value, parsed.unit, "llm"
            grams = serving_grams * parsed.value if serving_grams else None
            return grams, parsed.value, parsed.unit, "default"

        if (quantity_text or "").strip():
            grams = await self._remote_grams(item, quantity_text)
            if grams is not None:
                return round(grams, 1), 1.0, UNIT_SERVING, "llm"

        return serving_grams, 1.0, UNIT_SERVING, "default"

    async def _remote_grams(self, item: CatalogEntry, quantity_text: str | None) -> float | None:
        if self.language_model is None or not (quantity_text or "").strip():
            return None
        return await self.language_model.convert_unit(
            item.name,
            quantity_text.strip(),
            serving_size_grams=item.serving_size_grams,
            measures=[(m.name, m.grams) for m in item.measures],
        )

    async def _exercise_minutes(self, duration_text: str | None) -> tuple[float, str]:
        minutes = parse_duration_minutes(duration_text)
        if minutes is not None:
            return minutes, "direct"
        if self.language_model is not None and (duration_text or "").strip():
            minutes = await self.language_model.convert_duration(duration_text)
            if minutes is not None:
                return minutes, "llm"
        return float(settings.DEFAULT_EXERCISE_MINUTES), "default"

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def resolve_food(self, name: str, quantity_text: str | None = None) -> ResolvedEntityReference | None:
        key = (FOOD, (name or "").strip(), (quantity_text or "").strip())
        if key in self._resolved:
            return self._resolved[key]

        match = self.lookup(FOOD, name)
        if match is None:
            return None
        grams, value, unit, method = await self._food_grams(match.item, quantity_text)
        resolved = ResolvedEntityReference(
            item=match.item,
            kind=FOOD,
            query=name,
            match_method=match.method,
            match_score=match.score,
            quantity_text=quantity_text,
            quantity_value=value,
            unit=unit,
            quantity_method=method,
            grams=grams,
            nutrition=scale_nutrition(match.item, grams, value),
        )
        self._resolved[key] = resolved
        logger.info(
            f"Resolved food {name!r} -> {match.item.name!r} via {match.method}; "
            f"grams={grams} ({method}) kcal={resolved.calories}"
        )
        return resolved

    async def resolve_exercise(
        self,
        name: str,
        duration_text: str | None = None,
        weight_kg: float | None = None,
        intensity_text: str | None = None,
        intensity: str | None = None,
    ) -> ResolvedEntityReference | None:
        key = (
            EXERCISE,
            (name or "").strip(),
            (duration_text or "").strip(),
            intensity or (intensity_text or "").strip(),
            weight_kg,
        )
        if key in self._resolved:
            return self._resolved[key]

        match = self.lookup(EXERCISE, name)
        if match is None:
            return None
        minutes, method = await self._exercise_minutes(duration_text)
        met, intensity = resolve_met(match.item, intensity or detect_intensity(intensity_text or name))
        weight = weight_kg if weight_kg and weight_kg > 0 else settings.DEFAULT_WEIGHT_KG
        calories = exercise_calories(met, weight, minutes)
        resolved = ResolvedEntityReference(
            item=match.item,
            kind=EXERCISE,
            query=name,
            match_method=match.method,
            match_score=match.score,
            quantity_text=duration_text,
            quantity_value=minutes,
            unit="min",
            quantity_method=method,
            minutes=minutes,
            intensity=intensity,
            met_value=met,
            nutrition={"calories": calories},
        )
        self._resolved[key] = resolved
        logger.info(
            f"Resolved exercise {name!r} -> {match.item.name!r} via {match.method}; "
            f"{minutes:g} min ({method}) MET={met} kcal={calories}"
        )
        return resolved
