from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger(__name__)

INTENTS = (
    "greeting",
    "help",
    "register_meal",
    "register_exercise",
    "query_balance",
    "query_food_info",
    "daily_summary",
    "summary_week",
    "update_goal",
    "update_user_data",
    "view_user_data",
    "onboarding",
    "unknown",
)
VALID_INTENTS = frozenset(INTENTS)
INTENT_TO_ITEM_KIND = {"register_meal": "meal", "register_exercise": "exercise", "query_food_info": "meal"}


def _clean_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in {"null", "none", "unknown", "n/a"}:
        return None
    return text


class MealItem(BaseModel):
    kind: Literal["meal"] = "meal"
    name: str = Field(min_length=1)
    quantity: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return str(value).strip() if value is not None else value

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> str | None:
        return _clean_optional_text(value)


class ExerciseItem(BaseModel):
    kind: Literal["exercise"] = "exercise"
    name: str = Field(min_length=1)
    duration: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return str(value).strip() if value is not None else value

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> str | None:
        return _clean_optional_text(value)


ExtractedItem = Annotated[Union[MealItem, ExerciseItem], Field(discriminator="kind")]
_ITEM_ADAPTER: TypeAdapter = TypeAdapter(ExtractedItem)


class IntentResult(BaseModel):
    intent: str = "unknown"
    confidence: float = 0.0
    source: str = "default"  # llm | regex | context | default
    matched_pattern: str | None = None
    items: list[ExtractedItem] = Field(default_factory=list)

    @property
    def meal_items(self) -> list[MealItem]:
        return [i for i in self.items if isinstance(i, MealItem)]

    @property
    def exercise_items(self) -> list[ExerciseItem]:
        return [i for i in self.items if isinstance(i, ExerciseItem)]


def _legacy_item_fields(raw: dict, kind: str) -> dict:
    """Accept the flat {food, quantity, unit} / {exercise, duration} shapes models often emit."""
    data = dict(raw)
    if kind == "meal":
        data.setdefault("name", data.pop("food", None))
        quantity = _clean_optional_text(data.get("quantity"))
        unit = _clean_optional_text(data.pop("unit", None))
        if quantity and unit and not quantity.lower().endswith(unit.lower()):
            data["quantity"] = f"{quantity} {unit}"
        data.pop("duration", None)
        data.pop("exercise", None)
    else:
        data.setdefault("name", data.pop("exercise", None))
        duration = data.get("duration")
        if isinstance(duration, (int, float)):
            data["duration"] = f"{duration} minutos"
        for key in ("quantity", "unit", "food"):
            data.pop(key, None)
    return data


def parse_items(raw_items: Any, intent: str) -> list[MealItem | ExerciseItem]:
    """Validate model-extracted items at the boundary; invalid entries are dropped."""
    if not isinstance(raw_items, list):
        return []
    default_kind = INTENT_TO_ITEM_KIND.get(intent)
    items: list[MealItem | ExerciseItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        kind = raw.get("kind") or default_kind
        if kind not in ("meal", "exercise"):
            if "exercise" in raw:
                kind = "exercise"
            elif "food" in raw:
                kind = "meal"
            else:
                continue
        candidate = _legacy_item_fields({**raw, "kind": kind}, kind)
        try:
            items.append(_ITEM_ADAPTER.validate_python(candidate))
        except ValidationError as exc:
            logger.warning(f"Dropping invalid extracted item {raw!r}: {exc.error_count()} error(s)")
    return items
