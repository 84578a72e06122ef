from __future__ import annotations

import re

from handlers.base import HandlerContext, HandlerResult, IntentHandlerSpec
from handlers.registry import IntentHandlerRegistry
from services.summary_service import get_daily_summary, local_today
from utils.text import normalize_text

FEATURE_LIST = (
    "🍽️ Registrar refeições com calorias e proteínas",
    "🏃 Registrar exercícios e calorias queimadas",
    "📊 Consultar saldo do dia e metas",
    "🍕 Ver informações nutricionais de alimentos",
    "📈 Receber resumo diário e semanal",
    "🎯 Atualizar metas, peso e preferências",
)

COMMANDS = (
    ("🍽️ Registrar refeição", '"Comi 2 colheres de arroz e 1 ovo"'),
    ("🏃 Registrar exercício", '"Corri 30 minutos"'),
    ("📊 Ver saldo do dia", '"Saldo" ou "Quanto posso comer?"'),
    ("🥑 Info nutricional", '"Quantas calorias tem a banana?"'),
    ("📈 Resumo do dia/semana", '"Resumo do dia" ou "Resumo da semana"'),
    ("🎯 Atualizar metas/peso", '"Meta 1800 kcal" ou "Meu peso é 82kg"'),
    ("👤 Ver seus dados", '"Meus dados"'),
)

MISSING_FIELD_LABELS = {
    "weight_kg": "peso (kg)",
    "height_cm": "altura (cm)",
    "age": "idade",
    "gender": "gênero",
    "goal_calories": "meta calórica (kcal)",
}


def missing_field_labels(user) -> list[str]:
    return [label for name, label in MISSING_FIELD_LABELS.items() if not getattr(user, name, None)]


def _onboarding_prompt() -> str:
    return (
        "\n\n🚀 Ainda não configuramos seu perfil! Vamos começar?\n"
        "Me envie estas infos (uma por vez):\n"
        "1️⃣ Peso atual\n"
        "2️⃣ Altura\n"
        "3️⃣ Idade\n"
        "4️⃣ Meta de calorias (ou posso sugerir)"
    )


async def handle_greeting(ctx: HandlerContext) -> HandlerResult:
    features = "\n".join(f"• {item}" for item in FEATURE_LIST)
    onboarding = _onboarding_prompt() if missing_field_labels(ctx.user) else ""
    return HandlerResult(
        text=(
            "👋 Olá! Estou aqui para cuidar do seu diário nutricional."
            f"\n\nPosso te ajudar com:\n{features}{onboarding}"
            '\n\nDigite "ajuda" para ver todos os comandos.'
        )
    )


async def handle_help(ctx: HandlerContext) -> HandlerResult:
    commands = "\n\n".join(f"{label}\n   Ex: {example}" for label, example in COMMANDS)
    summary = get_daily_summary(ctx.db, ctx.user.id, local_today(ctx.reference_utc))
    if summary and (summary.total_calories_consumed or 0) > 0:
        tip = (
            f"\n\n📌 Dica: hoje você já registrou {summary.total_calories_consumed:.0f} kcal. "
            "Continue atualizando para manter o saldo em dia!"
        )
    else:
        tip = '\n\n📌 Dica: ainda não vi refeições hoje. Experimente mandar "Comi arroz e feijão" para registrar.'
    return HandlerResult(
        text=(
            "🆘 Estou aqui para ajudar! Veja o que posso fazer:\n\n"
            f"{commands}{tip}"
            '\n\nSempre que quiser, digite "ajuda" novamente.'
        )
    )


async def handle_unknown(ctx: HandlerContext) -> HandlerResult:
    lowered = normalize_text(ctx.text)
    suggestion = ""
    if re.search(r"\d", lowered) and re.search(r"kg|kilo|peso", lowered):
        suggestion = '\n\n💡 Você quis atualizar seu peso? Tente: "Meu peso é Xkg"'
    elif "caloria" in lowered:
        suggestion = '\n\n💡 Para consultar: "Quantas calorias tem em X?"'
    elif re.search(r"comi|comida|almoco|jantar", lowered):
        suggestion = '\n\n💡 Para registrar: "Comi X quantidade de Y"'
    return HandlerResult(
        text=(
            f"🤔 Não entendi sua mensagem.{suggestion}\n\n"
            'Digite "ajuda" para ver comandos disponíveis.\n\n'
            "Ou reformule sua mensagem que tento novamente!"
        )
    )


def register_chat_handlers(registry: IntentHandlerRegistry) -> None:
    registry.register(
        IntentHandlerSpec(intent="greeting", description="Welcome message and feature list."),
        handle_greeting,
    )
    registry.register(
        IntentHandlerSpec(intent="help", description="Command list with a tip based on today's log."),
        handle_help,
    )
    registry.register(
        IntentHandlerSpec(intent="unknown", description="Keyword-based hint for unclassified messages."),
        handle_unknown,
    )
