import logging

from fastapi import FastAPI

from config import settings
from db.database import engine, Base, SessionLocal
from ai.language_model import LanguageModel
from ai.orchestrator import DialogueOrchestrator
from api.inbound import router as inbound_router
from api.summaries import router as summaries_router
from handlers import handler_registry
from services.catalog_cache import CatalogCache
from services.catalog_seed import ensure_default_catalog
from services.messaging_service import build_messenger, drain_pending_sends

logging.basicConfig(
    level=getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

settings.validate_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)
ensure_default_catalog()

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# Composition root: long-lived collaborators shared by every request.
app.state.catalog_cache = CatalogCache(ttl_seconds=settings.CATALOG_CACHE_TTL_SECONDS)
app.state.language_model = LanguageModel.from_settings()
app.state.messenger = build_messenger()
app.state.orchestrator = DialogueOrchestrator(
    session_factory=SessionLocal,
    language_model=app.state.language_model,
    catalog_cache=app.state.catalog_cache,
    messenger=app.state.messenger,
    registry=handler_registry,
)

# Routers
app.include_router(inbound_router, prefix="/api")
app.include_router(summaries_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "llm_enabled": app.state.language_model.enabled,
    }


@app.on_event("shutdown")
async def flush_outbound_sends():
    await drain_pending_sends()
