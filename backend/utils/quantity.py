"""Deterministic quantity and duration extraction from free text.

A ``None`` result is a miss, not an error: callers escalate to the next
resolution stage (named measures, the language model, then defaults).
"""

import re
from dataclasses import dataclass

from utils.text import normalize_text

UNIT_GRAM = "g"
UNIT_SPOON = "colher"
UNIT_CUP = "xicara"
UNIT_MILLILITER = "ml"
UNIT_COUNT = "unidade"
UNIT_SERVING = "porcao"

UNIT_LABELS = {
    UNIT_GRAM: "g",
    UNIT_SPOON: "colher(es)",
    UNIT_CUP: "xícara(s)",
    UNIT_MILLILITER: "ml",
    UNIT_COUNT: "unidade(s)",
    UNIT_SERVING: "porção(ões)",
}

MAX_DURATION_MINUTES = 1440

_NUMBER = r"(\d+(?:[.,]\d+)?)"

# Ordered: heavier / more specific units first so "1kg" never reads as "1 g".
_QUANTITY_PATTERNS: tuple[tuple[str, str, float], ...] = (
    (rf"{_NUMBER}\s*(?:kg|quilos?|kilos?)\b", UNIT_GRAM, 1000.0),
    (rf"{_NUMBER}\s*(?:g|gr|grs|gramas?)\b", UNIT_GRAM, 1.0),
    (rf"{_NUMBER}\s*(?:colheres?|colher de sopa|cs)\b", UNIT_SPOON, 1.0),
    (rf"{_NUMBER}\s*(?:xicaras?|xic)\b", UNIT_CUP, 1.0),
    (rf"{_NUMBER}\s*(?:l|litros?)\b", UNIT_MILLILITER, 1000.0),
    (rf"{_NUMBER}\s*(?:ml|mililitros?)\b", UNIT_MILLILITER, 1.0),
    (rf"{_NUMBER}\s*(?:unidades?|un|und)\b", UNIT_COUNT, 1.0),
)

_BARE_NUMBER = re.compile(rf"{_NUMBER}(?:\s+([a-z]+))?")
_BARE_LABEL_STOPWORDS = {"de", "da", "do", "e", "com", "min", "minutos", "horas", "hora", "h"}


@dataclass(frozen=True)
class ParsedQuantity:
    value: float
    unit: str
    label: str | None = None  # raw measure word for generic servings ("fatias", "copo")


def _to_float(raw: str) -> float | None:
    try:
        return float(raw.replace(",", "."))
    except (TypeError, ValueError):
        return None


def parse_quantity(text: str | None) -> ParsedQuantity | None:
    """Extract a {value, unit} pair from a free-text quantity, or None."""
    normalized = normalize_text(text)
    if not normalized:
        return None

    for pattern, unit, factor in _QUANTITY_PATTERNS:
        match = re.search(pattern, normalized)
        if not match:
            continue
        value = _to_float(match.group(1))
        if value is None or value <= 0:
            continue
        return ParsedQuantity(value=value * factor, unit=unit)

    match = _BARE_NUMBER.search(normalized)
    if match:
        value = _to_float(match.group(1))
        if value is not None and value > 0:
            label = match.group(2)
            if label in _BARE_LABEL_STOPWORDS:
                label = None
            return ParsedQuantity(value=value, unit=UNIT_SERVING, label=label)
    return None


def parse_duration_minutes(text: str | None) -> float | None:
    """Extract a duration in minutes; values outside (0, 1440] are rejected."""
    normalized = normalize_text(text)
    if not normalized:
        return None

    minutes: float | None = None
    compound = re.search(r"(\d+)\s*(?:h|horas?)\s*(?:e\s*)?(\d{1,2})\s*(?:m|min|minutos?)?\b", normalized)
    if compound:
        minutes = int(compound.group(1)) * 60 + int(compound.group(2))
    else:
        hours = re.search(rf"{_NUMBER}\s*(?:h|hr|hrs|horas?)\b", normalized)
        mins = re.search(rf"{_NUMBER}\s*(?:m|min|mins|minutos?)\b", normalized)
        if hours:
            value = _to_float(hours.group(1))
            minutes = value * 60 if value is not None else None
        elif mins:
            minutes = _to_float(mins.group(1))
        else:
            bare = re.search(_NUMBER, normalized)
            if bare:
                minutes = _to_float(bare.group(1))

    if minutes is None or minutes <= 0 or minutes > MAX_DURATION_MINUTES:
        return None
    return float(minutes)


def looks_like_bare_quantity(text: str | None) -> bool:
    """True for replies such as "100g" or "2 colheres" with nothing else in them."""
    normalized = normalize_text(text)
    if not normalized:
        return False
    return re.fullmatch(
        rf"{_NUMBER}\s*(?:kg|g|gr|gramas?|colheres?|xicaras?|ml|l|litros?|unidades?|un|[a-z]+)?",
        normalized,
    ) is not None


def looks_like_bare_duration(text: str | None) -> bool:
    normalized = normalize_text(text)
    if not normalized:
        return False
    return re.fullmatch(
        r"\d+(?:[.,]\d+)?\s*(?:h|hr|horas?|m|min|minutos?)?(?:\s*(?:e\s*)?\d{1,2}\s*(?:m|min|minutos?)?)?",
        normalized,
    ) is not None
