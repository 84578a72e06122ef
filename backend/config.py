from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Nutri Chat"
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: str = "sqlite:///data/nutrition.db"
    DATA_DIR: Path = Path("data")
    LOCAL_TIMEZONE: str = "America/Sao_Paulo"

    # Remote language model
    LLM_PROVIDER: str = "groq"  # groq | openai
    LLM_API_KEY: str | None = None
    LLM_BASE_URL: str | None = None
    LLM_UTILITY_MODEL: str | None = None
    LLM_CONVERSION_MODEL: str | None = None
    LLM_INTENT_TIMEOUT_MS: int = 3000
    LLM_CONVERSION_TIMEOUT_MS: int = 5000

    # Conversation sessions
    CONVERSATION_IDLE_MINUTES: int = 30
    CONVERSATION_HISTORY_LIMIT: int = 10
    CLASSIFIER_HISTORY_WINDOW: int = 5
    CONTEXT_CARRYOVER_MINUTES: int = 10
    CONTEXT_CARRYOVER_CONFIDENCE: float = 0.6
    REGEX_INTENT_CONFIDENCE: float = 0.95
    PENDING_CONFIRMATION_TTL_MINUTES: int = 5

    # Catalog resolution
    FOOD_FUZZY_THRESHOLD: float = 0.75
    EXERCISE_FUZZY_THRESHOLD: float = 0.70
    FOOD_FUZZY_CANDIDATES: int = 100
    EXERCISE_FUZZY_CANDIDATES: int = 50
    SUBSTRING_CANDIDATES: int = 50
    SHORT_QUERY_MAX_LENGTH: int = 5
    CATALOG_CACHE_TTL_SECONDS: int = 3600

    # Profile defaults
    DEFAULT_GOAL_CALORIES: int = 2000
    DEFAULT_GOAL_PROTEIN_G: int = 150
    DEFAULT_WEIGHT_KG: float = 70.0
    DEFAULT_EXERCISE_MINUTES: int = 30
    WEEKLY_SUMMARY_DAYS: int = 7

    # Outbound channel (WhatsApp Cloud API)
    WHATSAPP_TOKEN: str | None = None
    WHATSAPP_PHONE_NUMBER_ID: str | None = None
    WHATSAPP_API_VERSION: str = "v21.0"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    def validate_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if not (self.LLM_API_KEY or "").strip():
            errors.append("LLM_API_KEY must be set")
        if (self.LLM_PROVIDER or "").strip().lower() not in {"groq", "openai"}:
            errors.append(f"LLM_PROVIDER `{self.LLM_PROVIDER}` is not supported")
        if not (self.WHATSAPP_TOKEN or "").strip() or not (self.WHATSAPP_PHONE_NUMBER_ID or "").strip():
            errors.append("WHATSAPP_TOKEN and WHATSAPP_PHONE_NUMBER_ID must be set")
        if self.LLM_INTENT_TIMEOUT_MS <= 0:
            errors.append("LLM_INTENT_TIMEOUT_MS must be positive")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Invalid production configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
