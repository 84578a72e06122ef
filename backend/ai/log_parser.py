"""Deterministic extraction of meal/exercise mentions.

Used when the language model returned no items (disabled, timed out or
classified by regex). Output uses the same ``MealItem``/``ExerciseItem``
types the model path produces so the resolution cascade sees one shape.
"""

import logging
import re

from ai.schemas import ExerciseItem, MealItem
from services.conversation_service import ROLE_USER, HistoryMessage
from utils.text import normalize_text

logger = logging.getLogger(__name__)

_LEADING_MEAL_CUES = re.compile(
    r"^(?:(?:eu|hoje|agora|acabei de|so|no almoco|no jantar|no lanche|no cafe da manha|de manha|"
    r"comi|comemos|almocei|jantei|lanchei|ingeri|bebi|tomei|registra|registrar|anota)\s+)+"
)
_MEAL_SPLIT = re.compile(r"\s*(?:,|;|\+|\be\b|\bcom\b)\s*")
_MEAL_UNITS = (
    r"kg|quilos?|g|gr|grs|gramas?|colheres?(?: de (?:sopa|cha))?|xicaras?|ml|l|litros?|unidades?|un|"
    r"fatias?|copos?|conchas?|pratos?|porcoes?|escumadeiras?|pedacos?|latas?"
)
_QUANTITY_PREFIX = re.compile(
    rf"^(\d+(?:[.,]\d+)?)\s*({_MEAL_UNITS})?\b\s*(?:(?:de|da|do|das|dos)\s+)?(.*)$"
)
_QUANTITY_SUFFIX = re.compile(rf"^(.+?)\s+(\d+(?:[.,]\d+)?)\s*({_MEAL_UNITS})?$")
NUMBER_WORDS = {
    "um": "1",
    "uma": "1",
    "dois": "2",
    "duas": "2",
    "tres": "3",
    "quatro": "4",
    "cinco": "5",
    "meio": "0.5",
    "meia": "0.5",
}
_ARTICLES = re.compile(r"^(?:o|a|os|as|de|da|do|das|dos)\s+")

EXERCISE_VERBS = {
    "corri": "corrida",
    "correr": "corrida",
    "caminhei": "caminhada",
    "andei": "caminhada",
    "pedalei": "ciclismo",
    "bike": "ciclismo",
    "nadei": "natacao",
    "malhei": "musculacao",
    "academia": "musculacao",
    "treinei": "musculacao",
}
_DURATION_SPAN = re.compile(
    r"\d+\s*(?:h|horas?)\s*(?:e\s*)?\d{1,2}\s*(?:m|min|minutos?)?\b"
    r"|\d+(?:[.,]\d+)?\s*(?:h|hr|hrs|horas?|m|min|mins|minutos?)\b"
    r"|\b(?:meia hora|uma hora|duas horas)\b"
)
_EXERCISE_NOISE = re.compile(
    r"\b(?:hoje|agora|eu|por|durante|de|da|do|na|no|fiz|pratiquei|treino|leve|tranquilo|tranquila|"
    r"moderado|moderada|intenso|intensa|forte|pesado|pesada)\b"
)
_FOOD_QUESTION_PREFIX = re.compile(
    r"^(?:(?:quantas?|quanto|qual|quais|me diz|me fala|info|informacoes?)\s+)?"
    r"(?:(?:as\s+)?(?:calorias?|proteinas?|macros?|carboidratos?|gorduras?|kcal)\s+)?"
    r"(?:(?:tem|ha|possui|de|do|da|dos|das|em|no|na|nos|nas|um|uma)\s+)*"
)
_HISTORY_FOOD = re.compile(r"de\s+([a-z\s]+)")


def _split_quantity(part: str) -> tuple[str, str | None]:
    first, _, rest = part.partition(" ")
    if first in NUMBER_WORDS and rest:
        part = f"{NUMBER_WORDS[first]} {rest}"

    match = _QUANTITY_PREFIX.match(part)
    if match:
        value, unit, name = match.groups()
        quantity = f"{value}{unit}" if unit in ("g", "kg", "ml", "l") else f"{value} {unit}" if unit else value
        return name.strip(), quantity

    match = _QUANTITY_SUFFIX.match(part)
    if match:
        name, value, unit = match.groups()
        return name.strip(), f"{value} {unit}" if unit else value
    return part, None


def parse_meal_items(message: str) -> list[MealItem]:
    """Split a free-text meal into items on commas and " e "/" com "."""
    text = normalize_text(message).strip(" .!?")
    base = _LEADING_MEAL_CUES.sub("", f"{text} ").strip()
    if not base:
        return []

    items: list[MealItem] = []
    for raw in _MEAL_SPLIT.split(base):
        part = raw.strip(" .!?")
        if not part:
            continue
        name, quantity = _split_quantity(part)
        name = _ARTICLES.sub("", name).strip()
        if not name:
            continue
        items.append(MealItem(name=name, quantity=quantity))
    logger.debug(f"Deterministic meal parse {message[:60]!r} -> {len(items)} item(s)")
    return items


def parse_exercise_item(message: str) -> ExerciseItem | None:
    text = normalize_text(message).strip(" .!?")
    if not text:
        return None
    duration_match = _DURATION_SPAN.search(text)
    duration = duration_match.group(0) if duration_match else None
    if duration == "meia hora":
        duration = "30 minutos"
    elif duration == "uma hora":
        duration = "60 minutos"
    elif duration == "duas horas":
        duration = "120 minutos"

    remainder = _DURATION_SPAN.sub(" ", text)
    for verb, canonical in EXERCISE_VERBS.items():
        if re.search(rf"\b{verb}\b", remainder):
            return ExerciseItem(name=canonical, duration=duration)

    name = " ".join(_EXERCISE_NOISE.sub(" ", remainder).split())
    if not name:
        return None
    return ExerciseItem(name=name, duration=duration)


def extract_food_name_from_question(message: str) -> str:
    """'Quantas calorias tem em uma banana?' -> 'banana'."""
    text = normalize_text(message).strip(" .!?")
    name = _FOOD_QUESTION_PREFIX.sub("", text).strip(" ?")
    name = re.sub(r"\s+(?:tem|possui)$", "", name)
    return name or text


def food_from_history(history: list[HistoryMessage]) -> str | None:
    """Food named in the most recent meal-logging user message, if any."""
    for message in reversed(history or []):
        if message.role != ROLE_USER or message.intent != "register_meal":
            continue
        match = _HISTORY_FOOD.search(normalize_text(message.content))
        if match:
            return match.group(1).strip() or None
        return None
    return None
