from __future__ import annotations

from datetime import date

from ai.log_parser import extract_food_name_from_question
from handlers.base import MEAL_CONFIRMATION, HandlerContext, HandlerResult, IntentHandlerSpec
from handlers.logging_handlers import EXPIRED_CONFIRMATION_REPLY, build_meal_payload, is_yes_no_reply
from handlers.registry import IntentHandlerRegistry
from services.summary_service import build_weekly_summary, daily_snapshot
from utils.datetime_utils import days_between


def _kcal(value) -> str:
    return f"{round(value or 0):.0f} kcal"


def _br_date(d: date) -> str:
    return d.strftime("%d/%m")


async def handle_query_balance(ctx: HandlerContext) -> HandlerResult:
    snapshot = daily_snapshot(ctx.db, ctx.user, now=ctx.reference_utc)
    consumed = snapshot["total_calories_consumed"]
    burned = snapshot["total_calories_burned"]
    balance = snapshot["remaining_calories"]
    lines = [
        "📊 Saldo de hoje:",
        f"Meta: {_kcal(snapshot['goal_calories'])}",
        f"Consumido: {_kcal(consumed)}",
        f"Queimado: {_kcal(burned)}",
        "",
        f"➡️ NET: {_kcal(consumed - burned)}",
        f"✅ SALDO: {_kcal(balance)}",
        "Ainda dá para comer com tranquilidade! 😋" if balance > 0 else "Você já bateu a meta hoje. Excelente controle! 💪",
    ]
    return HandlerResult(text="\n".join(lines))


async def handle_query_food_info(ctx: HandlerContext) -> HandlerResult:
    if is_yes_no_reply(ctx.text):
        return HandlerResult(text=EXPIRED_CONFIRMATION_REPLY)
    meal_items = ctx.intent_result.meal_items
    query = meal_items[0].name if meal_items else extract_food_name_from_question(ctx.text)
    if not query.strip():
        return HandlerResult(text="🍽️ Qual alimento você quer analisar?")

    resolved = await ctx.resolver.resolve_food(query, None)
    if resolved is None:
        return HandlerResult(
            text=f'🤔 Ainda não tenho dados sobre "{query}". Vou pesquisar e te aviso quando estiver disponível.'
        )

    item = resolved.item
    serving = item.serving_size or (f"{item.serving_size_grams:g}g" if item.serving_size_grams else "porção padrão")
    lines = [
        f"🍽️ {item.name} ({serving})",
        f"• {item.calories:g} kcal",
        f"• Proteína: {item.protein_g:.1f} g",
        f"• Carboidratos: {item.carbs_g:.1f} g",
        f"• Gorduras: {item.fat_g:.1f} g",
        f"• Fibras: {item.fiber_g:.1f} g",
    ]
    if item.measures:
        lines.append("")
        lines.append("📏 Medidas: " + ", ".join(f"{m.name} ≈ {m.grams:g}g" for m in item.measures))
    lines.extend(["", "Quer registrar uma porção? 1️⃣ Sim | 2️⃣ Não"])
    return HandlerResult(
        text="\n".join(lines),
        awaiting_kind=MEAL_CONFIRMATION,
        awaiting_payload=build_meal_payload([resolved]),
    )


async def handle_daily_summary(ctx: HandlerContext) -> HandlerResult:
    snapshot = daily_snapshot(ctx.db, ctx.user, now=ctx.reference_utc)
    balance = snapshot["remaining_calories"]
    status = "✅ Dentro da meta!" if balance >= 0 else "⚠️ Acima da meta, mas ainda dá tempo de ajustar."
    label = _br_date(date.fromisoformat(snapshot["date"]))
    lines = [
        f"📊 Resumo de hoje ({label}):",
        "",
        f"🍽️ Consumido: {_kcal(snapshot['total_calories_consumed'])} | {round(snapshot['total_protein_g'] or 0):.0f} g prot",
        f"🏃 Queimado: {_kcal(snapshot['total_calories_burned'])}",
        f"⚖️ Líquido: {_kcal(snapshot['net_calories'])}",
        "",
        f"Meta: {_kcal(snapshot['goal_calories'])}",
        f"Saldo: {_kcal(balance)}",
        f"Status: {status}",
        "",
        f"Refeições confirmadas: {snapshot['meals_count']}",
        f"Exercícios registrados: {snapshot['exercises_count']}",
        f"🔥 Sequência: {ctx.user.current_streak_days or 0} dia(s)",
    ]
    return HandlerResult(text="\n".join(lines))


async def handle_summary_week(ctx: HandlerContext) -> HandlerResult:
    weekly = build_weekly_summary(ctx.db, ctx.user, now=ctx.reference_utc)
    if weekly.days_recorded == 0:
        return HandlerResult(
            text="📭 Não encontrei registros nos últimos dias. Experimente registrar suas refeições e exercícios!"
        )
    span = days_between(weekly.start_date, weekly.end_date) + 1
    lines = [
        f"📈 Semana {weekly.start_date.strftime('%d/%m/%Y')} - {weekly.end_date.strftime('%d/%m/%Y')} ({span} dias):",
        "",
        f"Média consumo líquido: {round(weekly.average_net_calories):.0f} kcal/dia",
        f"Meta: {weekly.goal_calories} kcal",
        f"Dias no target: {weekly.days_on_target}/{weekly.days_recorded} 🎯",
        f"Treinos: {weekly.workouts}",
        "",
        f"Déficit acumulado: {round(weekly.deficit_calories):.0f} kcal",
        f"Projeção de perda: ~{-weekly.projected_weight_change_kg:.2f} kg",
        f"Nota da semana: {weekly.grade} ({weekly.score:.0f} pts)",
        "",
        "Continue registrando para manter esse ritmo! 💪",
    ]
    return HandlerResult(text="\n".join(lines))


def register_query_handlers(registry: IntentHandlerRegistry) -> None:
    registry.register(
        IntentHandlerSpec(intent="query_balance", description="Remaining calories for today."),
        handle_query_balance,
    )
    registry.register(
        IntentHandlerSpec(
            intent="query_food_info",
            description="Per-serving nutrition for a catalog food.",
            requires_resolver=True,
        ),
        handle_query_food_info,
    )
    registry.register(
        IntentHandlerSpec(intent="daily_summary", description="Today's totals and counts."),
        handle_daily_summary,
    )
    registry.register(
        IntentHandlerSpec(intent="summary_week", description="Weekly aggregation with grade."),
        handle_summary_week,
    )
