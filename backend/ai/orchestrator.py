"""Per-message control loop: session -> classify -> handler -> persist -> send."""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from ai.entity_resolver import EntityResolver
from ai.intent_classifier import IntentClassifier
from ai.language_model import LanguageModel
from ai.schemas import IntentResult
from config import settings
from db.models import Conversation
from handlers import handler_registry
from handlers.base import HandlerContext, HandlerResult, IntentHandlerError
from handlers.logging_handlers import KIND_TO_INTENT, handle_pending_reply
from handlers.registry import IntentHandlerRegistry
from services.catalog_cache import CatalogCache
from services.conversation_service import (
    ROLE_ASSISTANT,
    ROLE_USER,
    append_message,
    clear_awaiting_input,
    get_history,
    get_or_create_conversation,
    get_state,
    set_awaiting_input,
    set_last_intent,
    unconsumed_user_messages,
)
from services.gamification_service import update_streak
from services.messaging_service import OutboundMessenger, dispatch_outbound
from services.user_service import get_or_create_user_by_phone
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Desculpe, tive dificuldade em responder agora. Pode tentar novamente?"
EMPTY_MESSAGE_REPLY = 'Não recebi nenhum texto. Digite "ajuda" para ver o que posso fazer.'


def _rollback_quietly(db: Session) -> None:
    try:
        db.rollback()
    except Exception as e:
        logger.error(f"Session rollback failed: {e}")


class DialogueOrchestrator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        language_model: LanguageModel | None = None,
        catalog_cache: CatalogCache | None = None,
        messenger: OutboundMessenger | None = None,
        registry: IntentHandlerRegistry | None = None,
        classifier: IntentClassifier | None = None,
    ):
        self.session_factory = session_factory
        self.language_model = language_model
        self.catalog_cache = catalog_cache
        self.messenger = messenger
        self.registry = registry or handler_registry
        self.classifier = classifier or IntentClassifier(language_model)

    async def handle_inbound_message(self, identity: str, text: str, now: datetime | None = None) -> str:
        """Handle one inbound message and return the reply that was dispatched.

        Never raises: handler input problems become their own reply and any
        other failure rolls back the message's writes and yields the fallback.
        """
        reference = now or utcnow()
        if not (text or "").strip():
            reply = EMPTY_MESSAGE_REPLY
            dispatch_outbound(self.messenger, identity, reply)
            return reply

        db: Session | None = None
        progress: dict = {}
        try:
            db = self.session_factory()
            reply = await self._process(db, identity, text.strip(), reference, progress)
        except IntentHandlerError as e:
            _rollback_quietly(db)
            reply = str(e) or FALLBACK_REPLY
            logger.info(f"Handler rejected input from {identity}: {reply}")
            self._record_reply_best_effort(db, progress.get("conversation_id"), reply, reference)
        except Exception as e:
            if db is not None:
                _rollback_quietly(db)
            logger.error(f"Inbound message from {identity} failed: {e}", exc_info=True)
            reply = FALLBACK_REPLY
        finally:
            if db is not None:
                db.close()

        dispatch_outbound(self.messenger, identity, reply)
        return reply

    async def _process(self, db: Session, identity: str, text: str, reference: datetime, progress: dict) -> str:
        user = get_or_create_user_by_phone(db, identity, reference)
        conversation = get_or_create_conversation(db, user.phone_number, reference)
        user_message = append_message(db, conversation, ROLE_USER, text, now=reference)
        update_streak(user, reference)
        progress["conversation_id"] = conversation.id
        # The inbound message survives a handler failure and is re-read as part of the next batch.
        db.commit()

        history = get_history(db, conversation.id, settings.CONVERSATION_HISTORY_LIMIT)
        state = get_state(db, conversation, reference)
        resolver = EntityResolver(
            db,
            self.language_model,
            self.catalog_cache,
            user_phone=user.phone_number,
        )
        ctx = HandlerContext(
            db=db,
            user=user,
            conversation_id=conversation.id,
            intent_result=IntentResult(),
            text=text,
            history=history,
            resolver=resolver,
            reference_utc=reference,
        )

        result: HandlerResult | None = None
        intent = "unknown"
        if state.awaiting_input is not None:
            resolver.intent = KIND_TO_INTENT.get(state.awaiting_input.kind)
            result = await handle_pending_reply(ctx, state.awaiting_input)

        if result is None:
            batch = unconsumed_user_messages(history)
            prior = history[: len(history) - len(batch)]
            ctx.intent_result = await self.classifier.classify([m.content for m in batch], prior, reference)
            intent = ctx.intent_result.intent
            resolver.intent = intent
            result = await self.registry.dispatch(intent, ctx)

        intent = result.intent or intent
        user_message.intent = intent
        if result.awaiting_kind:
            set_awaiting_input(db, conversation, result.awaiting_kind, result.awaiting_payload or {}, reference)
        elif result.clear_awaiting:
            clear_awaiting_input(db, conversation)
        set_last_intent(db, conversation, intent)
        append_message(db, conversation, ROLE_ASSISTANT, result.text, intent=intent, now=reference)
        db.commit()
        logger.info(f"Replied to {identity} in conversation {conversation.id} (intent={intent})")
        return result.text

    def _record_reply_best_effort(
        self, db: Session, conversation_id: int | None, reply: str, reference: datetime
    ) -> None:
        if conversation_id is None:
            return
        try:
            conversation = db.get(Conversation, conversation_id)
            if conversation is not None:
                append_message(db, conversation, ROLE_ASSISTANT, reply, now=reference)
                db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Could not store reply for conversation {conversation_id}: {e}")
