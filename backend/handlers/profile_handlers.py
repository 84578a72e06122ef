from __future__ import annotations

import re

from config import settings
from handlers.base import HandlerContext, HandlerResult, IntentHandlerSpec
from handlers.chat_handlers import MISSING_FIELD_LABELS
from handlers.registry import IntentHandlerRegistry
from services.user_service import missing_profile_fields, update_profile
from utils.text import normalize_text

WEIGHT_RE = re.compile(r"(\d{2,3}(?:[.,]\d{1,2})?)\s?(kg|quilos?|kilos?)\b")
HEIGHT_RE = re.compile(r"(\d{2,3})\s?(cm|centimetros?)\b")
HEIGHT_METERS_RE = re.compile(r"\b([12][.,]\d{2})\s?m\b")
AGE_RE = re.compile(r"(\d{2})\s?(anos?|idade)\b")
AGE_PREFIX_RE = re.compile(r"\bidade\s*:?\s*(\d{2})\b")
GENDER_RE = re.compile(r"\b(homem|mulher|masculino|feminino)\b")
GOAL_CALORIES_RE = re.compile(r"(\d{3,4})\s?(kcal|calorias?)\b")
GOAL_BARE_RE = re.compile(r"\bmeta\b\D{0,20}(\d{3,4})\b")
GOAL_PROTEIN_RE = re.compile(r"(\d{2,3})\s?(g|gramas?)\s?(de )?(proteinas?|prot)\b")
GOAL_PROTEIN_PREFIX_RE = re.compile(r"\b(proteinas?|prot)\s*:?\s*(\d{2,3})\s?(g|gramas?)?\b")

GENDER_LABELS = {"male": "masculino", "female": "feminino"}


def parse_body_fields(message: str) -> dict:
    """Weight (kg), height (cm) and age (anos) from free text."""
    text = normalize_text(message)
    fields: dict = {}
    match = WEIGHT_RE.search(text)
    if match:
        fields["weight_kg"] = float(match.group(1).replace(",", "."))
    match = HEIGHT_RE.search(text)
    if match:
        fields["height_cm"] = float(match.group(1))
    else:
        match = HEIGHT_METERS_RE.search(text)
        if match:
            fields["height_cm"] = round(float(match.group(1).replace(",", ".")) * 100, 1)
    match = AGE_RE.search(text) or AGE_PREFIX_RE.search(text)
    if match:
        fields["age"] = int(match.group(1))
    return fields


def parse_gender(message: str) -> str | None:
    match = GENDER_RE.search(normalize_text(message))
    if not match:
        return None
    word = match.group(1)
    return "male" if word in ("homem", "masculino") else "female"


def parse_goal_fields(message: str) -> dict:
    text = normalize_text(message)
    fields: dict = {}
    match = GOAL_CALORIES_RE.search(text) or GOAL_BARE_RE.search(text)
    if match:
        fields["goal_calories"] = int(match.group(1))
    match = GOAL_PROTEIN_RE.search(text)
    if match:
        fields["goal_protein_g"] = int(match.group(1))
    else:
        match = GOAL_PROTEIN_PREFIX_RE.search(text)
        if match:
            fields["goal_protein_g"] = int(match.group(2))
    return fields


def _fmt(value) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


async def handle_update_goal(ctx: HandlerContext) -> HandlerResult:
    fields = parse_goal_fields(ctx.text)
    if not fields:
        return HandlerResult(
            text='🎯 Para atualizar sua meta, envie algo como "Meta 1800 kcal" ou "Proteína 150g".'
        )
    update_profile(ctx.db, ctx.user, fields)
    lines = ["✅ Meta atualizada!"]
    if "goal_calories" in fields:
        lines.append(f"Calorias diárias: {fields['goal_calories']} kcal")
    if "goal_protein_g" in fields:
        lines.append(f"Proteína diária: {fields['goal_protein_g']} g")
    lines.extend(["", "Vamos alcançar esse objetivo juntos! 🚀"])
    return HandlerResult(text="\n".join(lines))


async def handle_update_user_data(ctx: HandlerContext) -> HandlerResult:
    fields = parse_body_fields(ctx.text)
    if not fields:
        return HandlerResult(
            text='📝 Não entendi os novos dados. Envie mensagens como "Peso 82kg" ou "Altura 175cm".'
        )
    update_profile(ctx.db, ctx.user, fields)
    lines = ["✅ Dados atualizados!"]
    if "weight_kg" in fields:
        lines.append(f"Peso: {_fmt(fields['weight_kg'])} kg")
    if "height_cm" in fields:
        lines.append(f"Altura: {_fmt(fields['height_cm'])} cm")
    if "age" in fields:
        lines.append(f"Idade: {fields['age']} anos")
    lines.extend(["", "Continue registrando suas refeições e exercícios! 💪"])
    return HandlerResult(text="\n".join(lines))


async def handle_view_user_data(ctx: HandlerContext) -> HandlerResult:
    user = ctx.user

    def _or_missing(value, suffix: str, missing: str = "Não informado") -> str:
        return f"{_fmt(value)} {suffix}" if value else missing

    lines = [
        "👤 Seus Dados Cadastrados",
        "",
        f"📏 Peso: {_or_missing(user.weight_kg, 'kg')}",
        f"📐 Altura: {_or_missing(user.height_cm, 'cm')}",
        f"🎂 Idade: {_or_missing(user.age, 'anos')}",
        f"⚧ Gênero: {GENDER_LABELS.get(user.gender or '', 'Não informado')}",
        "",
        "🎯 Metas:",
        f"• Calorias diárias: {_or_missing(user.goal_calories, 'kcal', 'Não definida')}",
        f"• Proteína diária: {_or_missing(user.goal_protein_g, 'g', 'Não definida')}",
        "",
        f"🔥 Sequência atual: {user.current_streak_days or 0} dia(s) | recorde: {user.longest_streak_days or 0}",
        "",
        "✅ Cadastro completo" if user.onboarding_completed else "⚠️ Cadastro incompleto",
        "",
        "💡 Para atualizar, envie:",
        '• "Peso 85kg" para atualizar peso',
        '• "Altura 180cm" para atualizar altura',
        '• "Idade 30 anos" para atualizar idade',
        '• "Minha meta é 2000 kcal" para atualizar meta de calorias',
    ]
    return HandlerResult(text="\n".join(lines))


async def handle_onboarding(ctx: HandlerContext) -> HandlerResult:
    user = ctx.user
    if user.onboarding_completed and not missing_profile_fields(user):
        return HandlerResult(text='✅ Seu perfil já está configurado! Use "ajuda" para ver comandos.')

    fields = parse_body_fields(ctx.text)
    gender = parse_gender(ctx.text)
    if gender:
        fields["gender"] = gender
    goal = parse_goal_fields(ctx.text).get("goal_calories")
    if goal:
        fields["goal_calories"] = goal
    if fields:
        update_profile(ctx.db, user, fields)

    missing = missing_profile_fields(user)
    if not missing:
        return HandlerResult(
            text=(
                "✅ Perfil configurado!\n"
                f"Peso: {_fmt(user.weight_kg)} kg\n"
                f"Altura: {_fmt(user.height_cm)} cm\n"
                f"Idade: {user.age} anos\n"
                f"Meta calórica: {user.goal_calories or settings.DEFAULT_GOAL_CALORIES} kcal\n\n"
                'Agora é só registrar suas refeições e exercícios. Digite "ajuda" quando quiser rever os comandos.'
            )
        )
    pending = "\n".join(f"{idx}. {MISSING_FIELD_LABELS[name]}" for idx, name in enumerate(missing, start=1))
    return HandlerResult(text=f"📝 Vamos terminar seu cadastro.\nMe envie (um por mensagem):\n{pending}")


def register_profile_handlers(registry: IntentHandlerRegistry) -> None:
    registry.register(
        IntentHandlerSpec(intent="update_goal", description="Set daily calorie/protein goals."),
        handle_update_goal,
    )
    registry.register(
        IntentHandlerSpec(intent="update_user_data", description="Update weight, height or age."),
        handle_update_user_data,
    )
    registry.register(
        IntentHandlerSpec(intent="view_user_data", description="Show profile fields and goals."),
        handle_view_user_data,
    )
    registry.register(
        IntentHandlerSpec(intent="onboarding", description="Collect the required profile fields."),
        handle_onboarding,
    )
