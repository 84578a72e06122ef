from __future__ import annotations

import logging

from handlers.base import HandlerContext, HandlerResult, IntentHandler, IntentHandlerError, IntentHandlerSpec

logger = logging.getLogger(__name__)


class IntentHandlerRegistry:
    def __init__(self, fallback_intent: str = "unknown"):
        self._specs: dict[str, IntentHandlerSpec] = {}
        self._handlers: dict[str, IntentHandler] = {}
        self.fallback_intent = fallback_intent

    def register(self, spec: IntentHandlerSpec, handler: IntentHandler) -> None:
        if spec.intent in self._specs:
            raise ValueError(f"Intent handler already registered: {spec.intent}")
        self._specs[spec.intent] = spec
        self._handlers[spec.intent] = handler

    def list_specs(self) -> list[IntentHandlerSpec]:
        return sorted(self._specs.values(), key=lambda s: s.intent)

    def get_spec(self, intent: str) -> IntentHandlerSpec | None:
        return self._specs.get(intent)

    def __contains__(self, intent: str) -> bool:
        return intent in self._handlers

    async def dispatch(self, intent: str, ctx: HandlerContext) -> HandlerResult:
        name = intent if intent in self._handlers else self.fallback_intent
        spec = self._specs.get(name)
        handler = self._handlers.get(name)
        if not spec or not handler:
            raise IntentHandlerError(f"Unknown intent: {intent}")
        if spec.requires_resolver and ctx.resolver is None:
            raise RuntimeError(f"Handler `{name}` requires an entity resolver")

        logger.info(f"Dispatching intent {name} for conversation {ctx.conversation_id}")
        return await handler(ctx)
