from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from services.conversation_service import (  # noqa: E402
    ROLE_ASSISTANT,
    ROLE_USER,
    ConversationState,
    append_message,
    clear_awaiting_input,
    get_history,
    get_or_create_conversation,
    get_state,
    set_awaiting_input,
    set_last_intent,
    unconsumed_user_messages,
)

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
PHONE = "5511988887777"


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def test_conversation_reused_inside_idle_window():
    db = _new_db()
    first = get_or_create_conversation(db, PHONE, T0)
    append_message(db, first, ROLE_USER, "oi", now=T0)

    again = get_or_create_conversation(db, PHONE, T0 + timedelta(minutes=29))
    assert again.id == first.id


def test_new_conversation_after_idle_window():
    db = _new_db()
    first = get_or_create_conversation(db, PHONE, T0)
    append_message(db, first, ROLE_USER, "oi", now=T0)

    later = get_or_create_conversation(db, PHONE, T0 + timedelta(minutes=31))
    assert later.id != first.id
    assert first.status == "active"


def test_idle_boundary_is_exclusive():
    db = _new_db()
    first = get_or_create_conversation(db, PHONE, T0)

    at_boundary = get_or_create_conversation(db, PHONE, T0 + timedelta(minutes=30))
    assert at_boundary.id != first.id


def test_conversations_are_per_identity():
    db = _new_db()
    a = get_or_create_conversation(db, PHONE, T0)
    b = get_or_create_conversation(db, "5521900001111", T0)
    assert a.id != b.id


def test_pending_confirmation_honored_before_ttl():
    db = _new_db()
    conversation = get_or_create_conversation(db, PHONE, T0)
    set_awaiting_input(db, conversation, "meal_confirmation", {"description": "Arroz"}, T0)

    state = get_state(db, conversation, T0 + timedelta(minutes=4))
    assert state.awaiting_input is not None
    assert state.awaiting_input.kind == "meal_confirmation"
    assert state.awaiting_input.payload == {"description": "Arroz"}


def test_pending_confirmation_discarded_after_ttl():
    db = _new_db()
    conversation = get_or_create_conversation(db, PHONE, T0)
    set_awaiting_input(db, conversation, "meal_confirmation", {"description": "Arroz"}, T0)

    assert get_state(db, conversation, T0 + timedelta(minutes=6)).awaiting_input is None
    # Expiry is persisted, so an earlier clock cannot revive it.
    assert get_state(db, conversation, T0 + timedelta(minutes=1)).awaiting_input is None


def test_pending_confirmation_expires_exactly_at_ttl():
    db = _new_db()
    conversation = get_or_create_conversation(db, PHONE, T0)
    set_awaiting_input(db, conversation, "exercise_confirmation", {}, T0)

    assert get_state(db, conversation, T0 + timedelta(minutes=5)).awaiting_input is None


def test_new_pending_record_replaces_previous_and_keeps_last_intent():
    db = _new_db()
    conversation = get_or_create_conversation(db, PHONE, T0)
    set_last_intent(db, conversation, "register_meal")
    set_awaiting_input(db, conversation, "meal_confirmation", {"n": 1}, T0)
    set_awaiting_input(db, conversation, "exercise_confirmation", {"n": 2}, T0 + timedelta(minutes=1))

    state = get_state(db, conversation, T0 + timedelta(minutes=2))
    assert state.last_intent == "register_meal"
    assert state.awaiting_input.kind == "exercise_confirmation"
    assert state.awaiting_input.payload == {"n": 2}

    clear_awaiting_input(db, conversation)
    assert get_state(db, conversation, T0 + timedelta(minutes=2)).awaiting_input is None


def test_unknown_intent_does_not_overwrite_last_intent():
    db = _new_db()
    conversation = get_or_create_conversation(db, PHONE, T0)
    set_last_intent(db, conversation, "daily_summary")
    set_last_intent(db, conversation, "unknown")

    assert get_state(db, conversation, T0).last_intent == "daily_summary"


def test_state_tolerates_malformed_blob():
    assert ConversationState.from_json("{not json").awaiting_input is None
    state = ConversationState.from_json('{"lastIntent": "help", "awaitingInput": {"kind": 1}}')
    assert state.last_intent == "help"
    assert state.awaiting_input is None


def test_history_is_chronological_and_bounded():
    db = _new_db()
    conversation = get_or_create_conversation(db, PHONE, T0)
    for i in range(12):
        role = ROLE_USER if i % 2 == 0 else ROLE_ASSISTANT
        append_message(db, conversation, role, f"msg {i}", now=T0 + timedelta(seconds=i))

    history = get_history(db, conversation.id, 10)

    assert [m.content for m in history] == [f"msg {i}" for i in range(2, 12)]
    assert history[0].created_at.tzinfo is not None


def test_unconsumed_batch_is_trailing_user_messages():
    db = _new_db()
    conversation = get_or_create_conversation(db, PHONE, T0)
    script = [
        (ROLE_USER, "oi"),
        (ROLE_ASSISTANT, "Olá!"),
        (ROLE_USER, "comi arroz"),
        (ROLE_ASSISTANT, "Confirma?"),
        (ROLE_USER, "na verdade"),
        (ROLE_USER, "foi feijão"),
    ]
    for i, (role, content) in enumerate(script):
        append_message(db, conversation, role, content, now=T0 + timedelta(seconds=i))

    history = get_history(db, conversation.id, 10)

    assert [m.content for m in unconsumed_user_messages(history)] == ["na verdade", "foi feijão"]
    assert unconsumed_user_messages(history[:4]) == []


def test_append_message_touches_conversation():
    db = _new_db()
    conversation = get_or_create_conversation(db, PHONE, T0)
    append_message(db, conversation, ROLE_USER, "oi", now=T0 + timedelta(minutes=20))

    assert get_or_create_conversation(db, PHONE, T0 + timedelta(minutes=45)).id == conversation.id
