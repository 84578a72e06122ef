"""Catalog lookup cascade and quantity resolution."""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ai.entity_resolver import EntityResolver, find_measure, resolve_met  # noqa: E402
from db.database import Base  # noqa: E402
from db.models import CatalogFallbackLog  # noqa: E402
from services.catalog_cache import CatalogCache  # noqa: E402
from services.catalog_service import (  # noqa: E402
    EXERCISE,
    CatalogEntry,
    Measure,
    add_exercise_item,
    add_food_item,
)
from services.fuzzy import FuzzyMatcher, levenshtein_distance  # noqa: E402


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


class CountingDistance:
    def __init__(self):
        self.calls = 0

    def __call__(self, a: str, b: str) -> int:
        self.calls += 1
        return levenshtein_distance(a, b)


class FakeConversions:
    enabled = True

    def __init__(self, grams: float | None = None, minutes: float | None = None):
        self.grams = grams
        self.minutes = minutes
        self.unit_calls: list[tuple] = []
        self.duration_calls: list[str] = []

    async def convert_unit(self, food_name, quantity_text, serving_size_grams=None, measures=None):
        self.unit_calls.append((food_name, quantity_text, serving_size_grams, measures))
        return self.grams

    async def convert_duration(self, text):
        self.duration_calls.append(text)
        return self.minutes


def test_grams_are_used_directly():
    db = _new_db()
    add_food_item(db, name="Arroz", calories=130, protein_g=2.5, carbs_g=28.0, fat_g=0.2)
    resolver = EntityResolver(db)

    resolved = asyncio.run(resolver.resolve_food("arroz", "100g"))

    assert resolved is not None
    assert resolved.match_method == "exact"
    assert resolved.quantity_method == "direct"
    assert resolved.grams == 100
    assert resolved.calories == 130.0
    assert resolved.nutrition["protein_g"] == 2.5


def test_named_measure_multiplies_declared_grams():
    db = _new_db()
    add_food_item(db, name="Arroz", calories=130, measures={"colher": 25})
    resolver = EntityResolver(db)

    resolved = asyncio.run(resolver.resolve_food("arroz", "2 colheres"))

    assert resolved.quantity_method == "measure"
    assert resolved.grams == 50
    assert resolved.calories == 65.0


def test_short_query_is_not_found_without_fuzzy_attempt():
    db = _new_db()
    add_food_item(db, name="Carne temperada", calories=200)
    add_food_item(db, name="Xarope de milho", calories=280)
    distance = CountingDistance()
    resolver = EntityResolver(db, fuzzy=FuzzyMatcher(distance=distance), user_phone="5511999990000")

    assert asyncio.run(resolver.resolve_food("xyz", None)) is None
    assert asyncio.run(resolver.resolve_food("pera", None)) is None
    assert distance.calls == 0

    db.flush()
    misses = db.query(CatalogFallbackLog).order_by(CatalogFallbackLog.id).all()
    assert [m.normalized_query for m in misses] == ["xyz", "pera"]
    assert all(m.catalog == "food" and m.user_phone == "5511999990000" for m in misses)


def test_short_query_still_resolves_by_exact_or_prefix():
    db = _new_db()
    add_food_item(db, name="Pera", calories=53)
    add_food_item(db, name="Ovo cozido", calories=146)
    resolver = EntityResolver(db)

    assert asyncio.run(resolver.resolve_food("pera", None)).match_method == "exact"
    assert asyncio.run(resolver.resolve_food("ovo", None)).match_method == "prefix"


def test_prefix_is_ranked_by_usage():
    db = _new_db()
    add_food_item(db, name="Banana prata", calories=98, usage_count=1)
    add_food_item(db, name="Banana nanica", calories=92, usage_count=10)
    resolver = EntityResolver(db)

    resolved = asyncio.run(resolver.resolve_food("banana", None))

    assert resolved.item.name == "Banana nanica"
    assert resolved.match_method == "prefix"


def test_substring_requires_every_token_as_whole_word():
    db = _new_db()
    add_food_item(db, name="Pão francês", calories=300, serving_size_grams=50)
    add_food_item(db, name="Carne temperada", calories=200)
    resolver = EntityResolver(db)

    resolved = asyncio.run(resolver.resolve_food("frances pao", None))
    assert resolved.item.name == "Pão francês"
    assert resolved.match_method == "substring"

    assert asyncio.run(resolver.resolve_food("tempera", None)) is None


def test_fuzzy_accepts_only_above_threshold():
    db = _new_db()
    add_food_item(db, name="Macarrão", calories=157)
    resolver = EntityResolver(db)

    resolved = asyncio.run(resolver.resolve_food("macarao", None))
    assert resolved.match_method == "fuzzy"
    assert resolved.match_score > 0.75

    assert asyncio.run(resolver.resolve_food("macaco", None)) is None


def test_fuzzy_matcher_rejects_score_equal_to_threshold():
    matcher = FuzzyMatcher()
    assert matcher.best_match("abcd", ["abce"], lambda c: [c], 0.75) is None
    match = matcher.best_match("abcd", ["abce"], lambda c: [c], 0.70)
    assert match is not None and match.score == 0.75


def test_exercise_fuzzy_uses_compact_form_and_met_formula():
    db = _new_db()
    add_exercise_item(db, name="Crossfit", met_moderate=8.0, met_intense=12.0)
    resolver = EntityResolver(db)

    resolved = asyncio.run(resolver.resolve_exercise("fiz crosfit", "45 min", weight_kg=80))

    assert resolved.item.name == "Crossfit"
    assert resolved.match_method == "fuzzy"
    assert resolved.minutes == 45
    assert resolved.intensity == "moderate"
    assert resolved.calories == 480.0


def test_exercise_intensity_keyword_selects_met():
    db = _new_db()
    add_exercise_item(db, name="Corrida", met_light=7.0, met_moderate=9.8, met_intense=11.5)
    resolver = EntityResolver(db)

    resolved = asyncio.run(resolver.resolve_exercise("corrida", "1 hora", weight_kg=70, intensity_text="corri forte"))

    assert resolved.intensity == "intense"
    assert resolved.met_value == 11.5
    assert resolved.calories == 805.0


def test_met_fallback_order():
    only_light = CatalogEntry(id=1, kind=EXERCISE, name="Alongamento", name_normalized="alongamento", met_light=2.5)
    assert resolve_met(only_light, "intense") == (2.5, "light")

    light_and_intense = CatalogEntry(
        id=2, kind=EXERCISE, name="Remo", name_normalized="remo", met_light=3.5, met_intense=8.5
    )
    assert resolve_met(light_and_intense, None) == (3.5, "light")

    no_met = CatalogEntry(id=3, kind=EXERCISE, name="Outro", name_normalized="outro")
    assert resolve_met(no_met, "moderate") == (6.0, "moderate")


def test_remote_conversion_when_measure_is_unknown():
    db = _new_db()
    add_food_item(db, name="Pizza", calories=270, serving_size_grams=100, measures={"pedaco": 110})
    conversions = FakeConversions(grams=220)
    resolver = EntityResolver(db, conversions)

    resolved = asyncio.run(resolver.resolve_food("pizza", "2 fatias"))

    assert resolved.quantity_method == "llm"
    assert resolved.grams == 220
    assert resolved.calories == 594.0
    food, quantity, serving, measures = conversions.unit_calls[0]
    assert (food, quantity, serving) == ("Pizza", "2 fatias", 100)
    assert measures == [("pedaco", 110)]


def test_default_serving_when_conversion_fails():
    db = _new_db()
    add_food_item(db, name="Pizza", calories=270, serving_size_grams=100)
    resolver = EntityResolver(db, FakeConversions(grams=None))

    resolved = asyncio.run(resolver.resolve_food("pizza", "2 fatias"))

    assert resolved.quantity_method == "default"
    assert resolved.grams == 200
    assert resolved.calories == 540.0


def test_volume_is_read_as_grams_without_conversion():
    db = _new_db()
    add_food_item(db, name="Leite integral", calories=61, serving_size_grams=100, measures={"copo": 240})
    conversions = FakeConversions(grams=999)
    resolver = EntityResolver(db, conversions)

    glass = asyncio.run(resolver.resolve_food("leite integral", "200ml"))
    assert glass.quantity_method == "direct"
    assert glass.grams == 200
    assert glass.calories == 122.0

    liter = asyncio.run(resolver.resolve_food("leite integral", "1 litro"))
    assert liter.grams == 1000
    assert liter.calories == 610.0
    assert conversions.unit_calls == []


def test_missing_quantity_uses_one_serving_without_remote_call():
    db = _new_db()
    add_food_item(db, name="Pão francês", calories=150, serving_size_grams=50)
    conversions = FakeConversions(grams=999)
    resolver = EntityResolver(db, conversions)

    resolved = asyncio.run(resolver.resolve_food("pao frances", None))

    assert resolved.grams == 50
    assert resolved.calories == 150.0
    assert conversions.unit_calls == []


def test_duration_defaults_and_remote_conversion():
    db = _new_db()
    add_exercise_item(db, name="Caminhada", met_moderate=3.5)

    resolved = asyncio.run(EntityResolver(db).resolve_exercise("caminhada", None, weight_kg=70))
    assert resolved.minutes == 30
    assert resolved.quantity_method == "default"

    conversions = FakeConversions(minutes=25)
    resolved = asyncio.run(EntityResolver(db, conversions).resolve_exercise("caminhada", "meia horinha", weight_kg=70))
    assert resolved.minutes == 25
    assert resolved.quantity_method == "llm"
    assert conversions.duration_calls == ["meia horinha"]


def test_per_message_cache_returns_same_resolution():
    db = _new_db()
    add_food_item(db, name="Arroz", calories=130)
    resolver = EntityResolver(db)

    first = asyncio.run(resolver.resolve_food("arroz", "100g"))
    second = asyncio.run(resolver.resolve_food("arroz", "100g"))
    other_quantity = asyncio.run(resolver.resolve_food("arroz", "200g"))

    assert first is second
    assert other_quantity is not first
    assert EntityResolver(db)._resolved == {}


def test_per_message_cache_separates_exercise_intensity_and_weight():
    db = _new_db()
    add_exercise_item(db, name="Corrida", met_light=7.0, met_moderate=9.8, met_intense=11.5)
    resolver = EntityResolver(db)

    moderate = asyncio.run(resolver.resolve_exercise("corrida", "1 hora", weight_kg=70))
    intense = asyncio.run(resolver.resolve_exercise("corrida", "1 hora", weight_kg=70, intensity="intense"))
    heavier = asyncio.run(resolver.resolve_exercise("corrida", "1 hora", weight_kg=80))

    assert moderate.met_value == 9.8
    assert intense.met_value == 11.5
    assert intense.calories == 805.0
    assert heavier.calories == 784.0
    assert asyncio.run(resolver.resolve_exercise("corrida", "1 hora", weight_kg=70)) is moderate


def test_catalog_cache_serves_candidates_until_invalidated():
    db = _new_db()
    add_food_item(db, name="Macarrão", calories=157)
    cache = CatalogCache(ttl_seconds=3600, clock=lambda: 1000.0)

    assert asyncio.run(EntityResolver(db, catalog_cache=cache).resolve_food("macarao", None)) is not None

    add_food_item(db, name="Feijoada", calories=151)
    assert asyncio.run(EntityResolver(db, catalog_cache=cache).resolve_food("fejoada", None)) is None

    cache.invalidate()
    resolved = asyncio.run(EntityResolver(db, catalog_cache=cache).resolve_food("fejoada", None))
    assert resolved.item.name == "Feijoada"


def test_find_measure_exact_keyword_and_substring():
    measures = (Measure("colher de sopa", 25), Measure("xicara", 160), Measure("fatia grossa", 40))

    assert find_measure(measures, "xícaras").grams == 160
    assert find_measure(measures, "colheres").grams == 25
    assert find_measure(measures, "fatia").grams == 40
    assert find_measure(measures, "copo") is None
    assert find_measure((), "colher") is None
