"""Meal/exercise logging: estimate, ask for confirmation, then write on "sim".

Nothing is persisted as a meal or exercise until the user confirms; the
estimate travels in the conversation's pending ``awaitingInput`` record.
"""

from __future__ import annotations

import logging

from ai.entity_resolver import ResolvedEntityReference
from ai.log_parser import food_from_history, parse_exercise_item, parse_meal_items
from ai.schemas import ExerciseItem, MealItem
from handlers.base import (
    EXERCISE_CONFIRMATION,
    MEAL_CONFIRMATION,
    HandlerContext,
    HandlerResult,
    IntentHandlerSpec,
)
from handlers.registry import IntentHandlerRegistry
from services.conversation_service import AwaitingInput
from services.log_service import record_confirmed_exercise, record_confirmed_meal
from services.summary_service import get_or_create_daily_summary, remaining_calories
from services.user_service import effective_weight_kg
from utils.quantity import UNIT_GRAM, UNIT_LABELS, UNIT_SERVING, looks_like_bare_duration, looks_like_bare_quantity
from utils.text import sanitize_query

logger = logging.getLogger(__name__)

NUTRIENTS = ("calories", "protein_g", "carbs_g", "fat_g", "fiber_g")
AFFIRMATIVE_REPLIES = frozenset({
    "sim", "s", "1", "ok", "okay", "confirmo", "confirma", "confirmar", "isso", "certo",
    "correto", "pode", "pode registrar", "beleza", "blz", "yes",
})
NEGATIVE_REPLIES = frozenset({
    "nao", "n", "2", "corrigir", "corrige", "cancelar", "cancela", "errado", "no",
})
EXPIRED_CONFIRMATION_REPLY = (
    "⏳ Essa confirmação expirou e nada foi registrado. "
    'Envie novamente o que você comeu ou o exercício que fez (ex: "150g de arroz").'
)
INTENSITY_LABELS = {"light": "leve", "moderate": "moderada", "intense": "intensa"}
KIND_TO_INTENT = {MEAL_CONFIRMATION: "register_meal", EXERCISE_CONFIRMATION: "register_exercise"}


def _item_label(resolved: ResolvedEntityReference) -> str:
    value = resolved.quantity_value
    name = resolved.item.name
    if resolved.unit == UNIT_GRAM:
        return f"{value:g}g de {name}"
    if resolved.unit == UNIT_SERVING:
        return f"{value:g} {name}" if value != 1 else name
    return f"{value:g} {UNIT_LABELS.get(resolved.unit, resolved.unit)} de {name}"


def build_meal_payload(resolved: list[ResolvedEntityReference], not_found: list[str] | None = None) -> dict:
    items = []
    for entry in resolved:
        data = entry.as_payload()
        data["label"] = _item_label(entry)
        items.append(data)
    total_grams = round(sum(entry.grams or 0.0 for entry in resolved), 1)
    return {
        "description": ", ".join(item["label"] for item in items),
        "items": items,
        "totals": {key: round(sum(entry.nutrition.get(key, 0.0) for entry in resolved), 1) for key in NUTRIENTS},
        "grams": total_grams or None,
        "not_found": list(not_found or []),
    }


def format_meal_estimate(payload: dict) -> str:
    items = payload.get("items") or []
    totals = payload.get("totals") or {}
    grams = payload.get("grams")
    description = payload.get("description") or "refeição"
    heading = f"🍽️ Estimativa para {description} (~{grams:.0f}g)" if grams else f"🍽️ Estimativa para {description}"

    lines = [heading]
    if len(items) > 1:
        lines.append("")
        for item in items:
            name = f"{item['name']} (~{item['grams']:.0f}g)" if item.get("grams") else item["name"]
            lines.append(f"• {name}: ~{item.get('calories', 0):.0f} kcal, {item.get('protein_g', 0):.1f}g proteína")
        lines.extend(["", "📊 Total:"])
    else:
        lines.append(f"Quantidade: ~{grams:.0f} g" if grams else "Quantidade: porção padrão")

    lines.extend([
        f"Calorias: ~{totals.get('calories', 0):.0f} kcal",
        f"Proteínas: {totals.get('protein_g', 0):.1f}g",
        f"Carboidratos: {totals.get('carbs_g', 0):.1f}g",
        f"Gorduras: {totals.get('fat_g', 0):.1f}g",
    ])
    not_found = payload.get("not_found") or []
    if not_found:
        names = ", ".join(f'"{name}"' for name in not_found)
        lines.extend(["", f"⚠️ Não encontrei: {names}. Esses itens ficaram de fora."])
    lines.extend(["", "Confirma? 1️⃣ Sim | 2️⃣ Corrigir"])
    return "\n".join(lines)


def format_exercise_estimate(payload: dict) -> str:
    intensity = INTENSITY_LABELS.get(payload.get("intensity") or "", payload.get("intensity") or "moderada")
    lines = [
        f"🏃 Estimativa para {payload['name']} ({intensity})",
        f"Duração: {payload['duration_minutes']:g} min",
        f"MET: {payload['met_value']:.1f}",
        f"Peso considerado: {payload['weight_kg']:g} kg",
        f"Calorias queimadas: ~{payload['calories_burned']:.0f} kcal",
    ]
    if payload.get("quantity_method") == "default":
        lines.append("(duração padrão; responda com os minutos para ajustar)")
    lines.extend(["", "Confirma? 1️⃣ Sim | 2️⃣ Corrigir"])
    return "\n".join(lines)


def _meal_items(ctx: HandlerContext) -> list[MealItem]:
    items = ctx.intent_result.meal_items or parse_meal_items(ctx.text)
    if items:
        return items
    # "100g" after "comi arroz": reuse the food from the previous meal message.
    food = food_from_history(ctx.history)
    if food:
        return [MealItem(name=food, quantity=ctx.text.strip() or None)]
    return []


def is_yes_no_reply(text: str) -> bool:
    key = sanitize_query(text)
    return key in AFFIRMATIVE_REPLIES or key in NEGATIVE_REPLIES


async def handle_register_meal(ctx: HandlerContext) -> HandlerResult:
    # Live pending records are handled before classification; a bare yes/no here has nothing to confirm.
    if is_yes_no_reply(ctx.text):
        return HandlerResult(text=EXPIRED_CONFIRMATION_REPLY)
    items = _meal_items(ctx)
    if not items:
        return HandlerResult(text="🔍 Não entendi o alimento que você comeu. Pode descrever novamente?")

    resolved: list[ResolvedEntityReference] = []
    not_found: list[str] = []
    for item in items:
        entry = await ctx.resolver.resolve_food(item.name, item.quantity)
        if entry is None:
            not_found.append(item.name)
        else:
            resolved.append(entry)

    if not resolved:
        if len(items) == 1:
            return HandlerResult(
                text=(
                    f'🤔 Ainda não conheço "{items[0].name}". Vou pesquisar e te aviso. '
                    "Pode tentar com outro alimento por enquanto."
                )
            )
        return HandlerResult(
            text="🤔 Não consegui identificar nenhum dos alimentos mencionados. Pode tentar descrever de outra forma?"
        )
    if not_found:
        logger.info(f"Meal for user {ctx.user.id} left out unknown foods: {not_found}")

    payload = build_meal_payload(resolved, not_found)
    return HandlerResult(
        text=format_meal_estimate(payload),
        awaiting_kind=MEAL_CONFIRMATION,
        awaiting_payload=payload,
    )


def _exercise_item(ctx: HandlerContext) -> ExerciseItem | None:
    parsed = parse_exercise_item(ctx.text)
    items = ctx.intent_result.exercise_items
    if not items:
        return parsed
    item = items[0]
    if item.duration is None and parsed is not None and parsed.duration:
        return ExerciseItem(name=item.name, duration=parsed.duration)
    return item


def build_exercise_payload(resolved: ResolvedEntityReference, weight_kg: float) -> dict:
    payload = resolved.as_payload()
    payload["weight_kg"] = weight_kg
    return payload


async def handle_register_exercise(ctx: HandlerContext) -> HandlerResult:
    if is_yes_no_reply(ctx.text):
        return HandlerResult(text=EXPIRED_CONFIRMATION_REPLY)
    item = _exercise_item(ctx)
    if item is None:
        return HandlerResult(text='🏃 Qual exercício você fez? Ex: "Corri 30 minutos".')

    weight = effective_weight_kg(ctx.user)
    resolved = await ctx.resolver.resolve_exercise(item.name, item.duration, weight_kg=weight, intensity_text=ctx.text)
    if resolved is None:
        return HandlerResult(
            text=f'🤔 Ainda não conheço "{item.name}". Vou pesquisar e te aviso quando puder registrar esse exercício.'
        )

    payload = build_exercise_payload(resolved, weight)
    return HandlerResult(
        text=format_exercise_estimate(payload),
        awaiting_kind=EXERCISE_CONFIRMATION,
        awaiting_payload=payload,
    )


def classify_pending_reply(text: str, kind: str) -> str | None:
    """confirm | reject | amend, or None when the message is fresh input."""
    key = sanitize_query(text)
    if key in AFFIRMATIVE_REPLIES or key.startswith("sim "):
        return "confirm"
    if key in NEGATIVE_REPLIES or key.startswith("nao "):
        return "reject"
    if kind == MEAL_CONFIRMATION and looks_like_bare_quantity(text):
        return "amend"
    if kind == EXERCISE_CONFIRMATION and looks_like_bare_duration(text):
        return "amend"
    return None


async def _confirm(ctx: HandlerContext, awaiting: AwaitingInput) -> HandlerResult:
    payload = awaiting.payload
    if awaiting.kind == MEAL_CONFIRMATION:
        meal = record_confirmed_meal(ctx.db, ctx.user, payload, ctx.reference_utc)
        headline = (
            f"✅ Refeição registrada: {meal.description}\n"
            f"🔥 {meal.total_calories:.0f} kcal | {meal.total_protein_g:.1f}g proteína"
        )
    else:
        log = record_confirmed_exercise(ctx.db, ctx.user, payload, ctx.reference_utc)
        headline = (
            f"✅ Exercício registrado: {log.exercise_name} ({log.duration_minutes:g} min)\n"
            f"🔥 {log.calories_burned:.0f} kcal queimadas"
        )
    summary = get_or_create_daily_summary(ctx.db, ctx.user, now=ctx.reference_utc)
    balance = remaining_calories(ctx.user, summary)
    return HandlerResult(
        text=f"{headline}\n\n📊 Saldo de hoje: {balance:.0f} kcal",
        clear_awaiting=True,
        intent=KIND_TO_INTENT.get(awaiting.kind),
    )


def _reject(awaiting: AwaitingInput) -> HandlerResult:
    if awaiting.kind == MEAL_CONFIRMATION:
        text = '✏️ Sem problemas, não registrei. Me envie a refeição corrigida (ex: "150g de arroz").'
    else:
        text = '✏️ Sem problemas, não registrei. Me envie o exercício corrigido (ex: "Corri 40 minutos").'
    return HandlerResult(text=text, clear_awaiting=True, intent=KIND_TO_INTENT.get(awaiting.kind))


async def _amend(ctx: HandlerContext, awaiting: AwaitingInput) -> HandlerResult | None:
    payload = awaiting.payload
    if awaiting.kind == MEAL_CONFIRMATION:
        items = payload.get("items") or []
        if len(items) != 1:
            return None
        resolved = await ctx.resolver.resolve_food(items[0].get("query") or items[0]["name"], ctx.text)
        if resolved is None:
            return None
        new_payload = build_meal_payload([resolved], payload.get("not_found"))
        return HandlerResult(
            text=format_meal_estimate(new_payload),
            awaiting_kind=MEAL_CONFIRMATION,
            awaiting_payload=new_payload,
            intent="register_meal",
        )

    weight = payload.get("weight_kg") or effective_weight_kg(ctx.user)
    resolved = await ctx.resolver.resolve_exercise(
        payload.get("query") or payload["name"],
        ctx.text,
        weight_kg=weight,
        intensity=payload.get("intensity"),
    )
    if resolved is None:
        return None
    new_payload = build_exercise_payload(resolved, weight)
    return HandlerResult(
        text=format_exercise_estimate(new_payload),
        awaiting_kind=EXERCISE_CONFIRMATION,
        awaiting_payload=new_payload,
        intent="register_exercise",
    )


async def handle_pending_reply(ctx: HandlerContext, awaiting: AwaitingInput) -> HandlerResult | None:
    """Interpret a reply against the live pending record; None means "treat as fresh"."""
    action = classify_pending_reply(ctx.text, awaiting.kind)
    if action is None:
        return None
    logger.info(f"Pending {awaiting.kind} for conversation {ctx.conversation_id}: {action}")
    if action == "confirm":
        return await _confirm(ctx, awaiting)
    if action == "reject":
        return _reject(awaiting)
    return await _amend(ctx, awaiting)


def register_logging_handlers(registry: IntentHandlerRegistry) -> None:
    registry.register(
        IntentHandlerSpec(
            intent="register_meal",
            description="Estimate a meal and ask for confirmation.",
            requires_resolver=True,
        ),
        handle_register_meal,
    )
    registry.register(
        IntentHandlerSpec(
            intent="register_exercise",
            description="Estimate an exercise session and ask for confirmation.",
            requires_resolver=True,
        ),
        handle_register_exercise,
    )
