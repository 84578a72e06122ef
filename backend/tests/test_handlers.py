from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ai.entity_resolver import EntityResolver  # noqa: E402
from ai.schemas import INTENTS, IntentResult, MealItem  # noqa: E402
from db.database import Base  # noqa: E402
from db.models import CatalogFallbackLog  # noqa: E402
from handlers import build_handler_registry, handler_registry  # noqa: E402
from handlers.base import MEAL_CONFIRMATION, HandlerContext, HandlerResult, IntentHandlerSpec  # noqa: E402
from handlers.logging_handlers import EXPIRED_CONFIRMATION_REPLY, classify_pending_reply  # noqa: E402
from handlers.registry import IntentHandlerRegistry  # noqa: E402
from services.catalog_service import add_food_item  # noqa: E402
from services.log_service import record_confirmed_meal  # noqa: E402
from services.user_service import get_or_create_user_by_phone, update_profile  # noqa: E402

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _ctx(db, text: str, intent: str = "unknown", items=None, resolver: bool = True) -> HandlerContext:
    user = get_or_create_user_by_phone(db, "5511933332222", NOW)
    return HandlerContext(
        db=db,
        user=user,
        conversation_id=1,
        intent_result=IntentResult(intent=intent, items=items or []),
        text=text,
        resolver=EntityResolver(db, user_phone=user.phone_number, intent=intent) if resolver else None,
        reference_utc=NOW,
    )


def _dispatch(intent: str, ctx: HandlerContext, registry: IntentHandlerRegistry = handler_registry) -> HandlerResult:
    return asyncio.run(registry.dispatch(intent, ctx))


def test_every_intent_has_a_handler():
    for intent in INTENTS:
        assert intent in handler_registry
    assert [s.intent for s in handler_registry.list_specs()] == sorted(INTENTS)
    assert handler_registry.get_spec("register_meal").requires_resolver is True


def test_duplicate_registration_is_rejected():
    registry = build_handler_registry()

    async def noop(ctx):
        return HandlerResult(text="")

    with pytest.raises(ValueError):
        registry.register(IntentHandlerSpec(intent="greeting", description="again"), noop)


def test_unregistered_intent_falls_back_to_unknown():
    db = _new_db()
    result = _dispatch("order_pizza", _ctx(db, "quero pizza"))
    assert result.text.startswith("🤔 Não entendi sua mensagem.")


def test_resolver_requirement_is_enforced():
    db = _new_db()
    with pytest.raises(RuntimeError):
        _dispatch("register_meal", _ctx(db, "comi arroz", resolver=False))


def test_pending_reply_classification():
    assert classify_pending_reply("Sim", MEAL_CONFIRMATION) == "confirm"
    assert classify_pending_reply("sim, pode registrar", MEAL_CONFIRMATION) == "confirm"
    assert classify_pending_reply("Não", MEAL_CONFIRMATION) == "reject"
    assert classify_pending_reply("2", MEAL_CONFIRMATION) == "reject"
    assert classify_pending_reply("150g", MEAL_CONFIRMATION) == "amend"
    assert classify_pending_reply("40 min", "exercise_confirmation") == "amend"
    assert classify_pending_reply("comi pizza", MEAL_CONFIRMATION) is None


def test_register_meal_model_items_and_partial_miss():
    db = _new_db()
    add_food_item(db, name="Arroz", calories=130, protein_g=2.5)
    items = [MealItem(name="arroz", quantity="200g"), MealItem(name="xyzabc", quantity=None)]

    result = _dispatch("register_meal", _ctx(db, "arroz e xyzabc", "register_meal", items))

    assert result.awaiting_kind == MEAL_CONFIRMATION
    assert result.awaiting_payload["totals"]["calories"] == 260.0
    assert result.awaiting_payload["not_found"] == ["xyzabc"]
    assert 'Não encontrei: "xyzabc"' in result.text


def test_register_meal_unknown_single_food():
    db = _new_db()
    result = _dispatch("register_meal", _ctx(db, "comi xyzabc", "register_meal"))
    assert result.text.startswith('🤔 Ainda não conheço "xyzabc"')
    assert result.awaiting_kind is None


def test_bare_yes_no_without_pending_record_is_not_resolved():
    db = _new_db()
    cases = (
        ("register_meal", "sim"),
        ("register_meal", "Não"),
        ("register_exercise", "1"),
        ("query_food_info", "ok"),
    )
    for intent, text in cases:
        result = _dispatch(intent, _ctx(db, text, intent))
        assert result.text == EXPIRED_CONFIRMATION_REPLY
        assert result.awaiting_kind is None
    db.flush()
    assert db.query(CatalogFallbackLog).count() == 0


def test_query_food_info_offers_one_serving():
    db = _new_db()
    add_food_item(db, name="Banana", calories=89, protein_g=1.1, carbs_g=22.8, measures={"unidade media": 120})

    result = _dispatch("query_food_info", _ctx(db, "quantas calorias tem uma banana?", "query_food_info"))

    assert result.text.startswith("🍽️ Banana (100g)")
    assert "unidade media ≈ 120g" in result.text
    assert result.awaiting_kind == MEAL_CONFIRMATION
    assert result.awaiting_payload["totals"]["calories"] == 89.0


def test_query_balance_and_daily_summary():
    db = _new_db()
    ctx = _ctx(db, "saldo", "query_balance")
    record_confirmed_meal(db, ctx.user, {"description": "Arroz", "items": [], "totals": {"calories": 500}}, NOW)

    balance = _dispatch("query_balance", ctx)
    assert balance.text.startswith("📊 Saldo de hoje:")
    assert "✅ SALDO: 1500 kcal" in balance.text

    summary = _dispatch("daily_summary", _ctx(db, "resumo", "daily_summary"))
    assert summary.text.startswith("📊 Resumo de hoje (10/03):")
    assert "Refeições confirmadas: 1" in summary.text


def test_weekly_summary_without_records():
    db = _new_db()
    result = _dispatch("summary_week", _ctx(db, "resumo da semana", "summary_week"))
    assert result.text.startswith("📭")


def test_update_goal_and_user_data():
    db = _new_db()
    goal = _dispatch("update_goal", _ctx(db, "minha meta é 1800 kcal", "update_goal"))
    assert goal.text.startswith("✅ Meta atualizada!")

    data = _dispatch("update_user_data", _ctx(db, "peso atual 82kg", "update_user_data"))
    assert data.text.startswith("✅ Dados atualizados!")

    ctx = _ctx(db, "meus dados", "view_user_data")
    assert ctx.user.goal_calories == 1800
    assert ctx.user.weight_kg == 82.0
    view = _dispatch("view_user_data", ctx)
    assert "Peso: 82 kg" in view.text
    assert "⚠️ Cadastro incompleto" in view.text


def test_onboarding_collects_fields_until_complete():
    db = _new_db()
    partial = _dispatch("onboarding", _ctx(db, "peso 80kg", "onboarding"))
    assert partial.text.startswith("📝 Vamos terminar seu cadastro.")
    assert "altura (cm)" in partial.text

    done = _dispatch("onboarding", _ctx(db, "175cm 30 anos homem", "onboarding"))
    assert done.text.startswith("✅ Perfil configurado!")
    ctx = _ctx(db, "oi")
    assert ctx.user.onboarding_completed is True
    assert ctx.user.gender == "male"


def test_greeting_skips_onboarding_prompt_for_complete_profile():
    db = _new_db()
    ctx = _ctx(db, "oi", "greeting")
    update_profile(db, ctx.user, {"weight_kg": 70.0, "height_cm": 170.0, "age": 35, "gender": "female"})

    result = _dispatch("greeting", ctx)

    assert result.text.startswith("👋 Olá!")
    assert "Ainda não configuramos seu perfil" not in result.text
