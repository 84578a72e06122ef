from handlers.registry import IntentHandlerRegistry
from handlers.chat_handlers import register_chat_handlers
from handlers.logging_handlers import register_logging_handlers
from handlers.profile_handlers import register_profile_handlers
from handlers.query_handlers import register_query_handlers


def build_handler_registry() -> IntentHandlerRegistry:
    registry = IntentHandlerRegistry()
    register_chat_handlers(registry)
    register_logging_handlers(registry)
    register_profile_handlers(registry)
    register_query_handlers(registry)
    return registry


handler_registry = build_handler_registry()

__all__ = ["handler_registry", "build_handler_registry", "IntentHandlerRegistry"]
