"""Conversation sessions, bounded history and the pending-confirmation state."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import Conversation, Message
from utils.datetime_utils import as_utc, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass(frozen=True)
class HistoryMessage:
    role: str
    content: str
    intent: str | None
    created_at: datetime

    def as_prompt_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class AwaitingInput:
    kind: str  # meal_confirmation | exercise_confirmation
    payload: dict[str, Any]
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return as_utc(now) < as_utc(self.expires_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "payload": self.payload,
            "expiresAt": as_utc(self.expires_at).isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "AwaitingInput | None":
        if not isinstance(raw, dict):
            return None
        kind = raw.get("kind")
        expires_raw = raw.get("expiresAt")
        if not isinstance(kind, str) or not isinstance(expires_raw, str):
            return None
        try:
            expires_at = datetime.fromisoformat(expires_raw)
        except ValueError:
            return None
        payload = raw.get("payload")
        return cls(kind=kind, payload=payload if isinstance(payload, dict) else {}, expires_at=as_utc(expires_at))


@dataclass
class ConversationState:
    last_intent: str | None = None
    awaiting_input: AwaitingInput | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        payload: dict[str, Any] = dict(self.extra)
        payload["lastIntent"] = self.last_intent
        if self.awaiting_input is not None:
            payload["awaitingInput"] = self.awaiting_input.to_dict()
        return json.dumps(payload, ensure_ascii=True)

    @classmethod
    def from_json(cls, raw: str | None) -> "ConversationState":
        if not raw:
            return cls()
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding malformed conversation state")
            return cls()
        if not isinstance(parsed, dict):
            return cls()
        last_intent = parsed.pop("lastIntent", None)
        awaiting = AwaitingInput.from_dict(parsed.pop("awaitingInput", None))
        return cls(
            last_intent=last_intent if isinstance(last_intent, str) else None,
            awaiting_input=awaiting,
            extra=parsed,
        )


def find_active_conversation(
    db: Session,
    identity: str,
    now: datetime | None = None,
    idle_minutes: int | None = None,
) -> Conversation | None:
    reference = as_utc(now or utcnow())
    window = idle_minutes if idle_minutes is not None else settings.CONVERSATION_IDLE_MINUTES
    threshold = to_naive_utc(reference - timedelta(minutes=window))
    return (
        db.query(Conversation)
        .filter(
            Conversation.phone_number == identity,
            Conversation.status == STATUS_ACTIVE,
            Conversation.last_message_at > threshold,
        )
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        .first()
    )


def get_or_create_conversation(
    db: Session,
    identity: str,
    now: datetime | None = None,
    idle_minutes: int | None = None,
) -> Conversation:
    """Return the identity's conversation active within the idle window, else a new one.

    Idle conversations are left untouched; a fresh row supersedes them.
    """
    reference = as_utc(now or utcnow())
    conversation = find_active_conversation(db, identity, reference, idle_minutes)
    if conversation:
        return conversation

    conversation = Conversation(
        phone_number=identity,
        status=STATUS_ACTIVE,
        last_message_at=to_naive_utc(reference),
        created_at=to_naive_utc(reference),
    )
    db.add(conversation)
    db.flush()
    logger.info(f"Conversation {conversation.id} started for {identity}")
    return conversation


def touch_conversation(conversation: Conversation, now: datetime | None = None) -> None:
    conversation.last_message_at = to_naive_utc(now or utcnow())


def append_message(
    db: Session,
    conversation: Conversation,
    role: str,
    content: str,
    intent: str | None = None,
    now: datetime | None = None,
) -> Message:
    reference = now or utcnow()
    message = Message(
        conversation_id=conversation.id,
        role=role,
        content=content,
        intent=intent,
        created_at=to_naive_utc(reference),
    )
    db.add(message)
    touch_conversation(conversation, reference)
    db.flush()
    return message


def get_history(db: Session, conversation_id: int, limit: int | None = None) -> list[HistoryMessage]:
    """Most recent ``limit`` messages, oldest first."""
    bound = limit if limit is not None else settings.CONVERSATION_HISTORY_LIMIT
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(bound)
        .all()
    )
    rows.reverse()
    return [
        HistoryMessage(role=r.role, content=r.content, intent=r.intent, created_at=as_utc(r.created_at))
        for r in rows
    ]


def unconsumed_user_messages(history: list[HistoryMessage]) -> list[HistoryMessage]:
    """Trailing user messages after the last assistant reply."""
    batch: list[HistoryMessage] = []
    for message in reversed(history):
        if message.role != ROLE_USER:
            break
        batch.append(message)
    batch.reverse()
    return batch


def get_state(db: Session, conversation: Conversation, now: datetime | None = None) -> ConversationState:
    """Load the state blob, clearing a pending confirmation whose TTL elapsed."""
    state = ConversationState.from_json(conversation.conversation_state)
    reference = now or utcnow()
    if state.awaiting_input is not None and not state.awaiting_input.is_live(reference):
        logger.info(f"Pending {state.awaiting_input.kind} expired for conversation {conversation.id}")
        state.awaiting_input = None
        save_state(db, conversation, state)
    return state


def save_state(db: Session, conversation: Conversation, state: ConversationState) -> None:
    conversation.conversation_state = state.to_json()
    db.flush()


def set_awaiting_input(
    db: Session,
    conversation: Conversation,
    kind: str,
    payload: dict[str, Any],
    now: datetime | None = None,
    ttl_minutes: int | None = None,
) -> AwaitingInput:
    """Attach a pending confirmation, replacing any earlier one."""
    reference = as_utc(now or utcnow())
    ttl = ttl_minutes if ttl_minutes is not None else settings.PENDING_CONFIRMATION_TTL_MINUTES
    awaiting = AwaitingInput(kind=kind, payload=payload, expires_at=reference + timedelta(minutes=ttl))
    state = ConversationState.from_json(conversation.conversation_state)
    state.awaiting_input = awaiting
    save_state(db, conversation, state)
    return awaiting


def clear_awaiting_input(db: Session, conversation: Conversation) -> None:
    state = ConversationState.from_json(conversation.conversation_state)
    if state.awaiting_input is None:
        return
    state.awaiting_input = None
    save_state(db, conversation, state)


def set_last_intent(db: Session, conversation: Conversation, intent: str) -> None:
    if intent == "unknown":
        return
    state = ConversationState.from_json(conversation.conversation_state)
    state.last_intent = intent
    save_state(db, conversation, state)
