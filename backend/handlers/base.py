from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy.orm import Session

from ai.entity_resolver import EntityResolver
from ai.schemas import IntentResult
from db.models import User
from services.conversation_service import HistoryMessage

MEAL_CONFIRMATION = "meal_confirmation"
EXERCISE_CONFIRMATION = "exercise_confirmation"

IntentHandler = Callable[["HandlerContext"], Awaitable["HandlerResult"]]


class IntentHandlerError(Exception):
    """Raised for user-correctable input; the message is sent back as the reply."""


@dataclass
class HandlerContext:
    db: Session
    user: User
    conversation_id: int
    intent_result: IntentResult
    text: str
    history: list[HistoryMessage] = field(default_factory=list)
    resolver: EntityResolver | None = None
    reference_utc: datetime | None = None


@dataclass
class HandlerResult:
    text: str
    awaiting_kind: str | None = None
    awaiting_payload: dict[str, Any] | None = None
    clear_awaiting: bool = False
    intent: str | None = None  # overrides the classified intent on the stored user message


@dataclass(frozen=True)
class IntentHandlerSpec:
    intent: str
    description: str
    requires_resolver: bool = False
