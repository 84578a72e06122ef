import logging
import re
from datetime import datetime, timedelta

from ai.language_model import LanguageModel
from ai.schemas import IntentResult
from config import settings
from services.conversation_service import ROLE_USER, HistoryMessage
from utils.datetime_utils import as_utc, utcnow
from utils.text import normalize_text

logger = logging.getLogger(__name__)

# Ordered (intent, patterns); evaluated against the diacritic-free latest message.
# Greeting and help go first so "bom dia, comi pao" is answered as a greeting.
INTENT_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("greeting", (r"\b(o+i+|ola|salve|bom dia|boa tarde|boa noite)\b",)),
    ("help", (r"(^|\s)/?ajuda\b", r"\b(help|comandos?|como usar|socorro)\b")),
    ("onboarding", (r"\b(fazer|quero|iniciar|comecar)\s+(o\s+|meu\s+)?cadastro\b",)),
    ("update_user_data", (
        r"\batualiz\w*\s+(os\s+)?(meus\s+)?dados\b",
        r"\b(meu peso|peso atual|pesando|estou pesando|minha altura)\b.*\d",
        r"\b(tenho|fiz)\s+\d{2}\s?anos\b",
    )),
    ("view_user_data", (
        r"\b(ver|mostrar?|mostre|quais sao)\s+(os\s+)?(meus dados|meu perfil|minhas informacoes)\b",
        r"^(meus dados|meu perfil)\??$",
    )),
    ("summary_week", (
        r"\b(resumo|relatorio|balanco)\s+(da\s+|de\s+|dessa\s+|desta\s+)?semana(l)?\b",
        r"\bcomo foi (a|minha) semana\b",
    )),
    ("daily_summary", (r"\b(resumo|fechamento|como foi o dia|status do dia|relatorio)\b",)),
    ("query_balance", (r"\b(saldo|quanto posso comer|restante|falta consumir|ainda posso)\b",)),
    ("register_meal", (r"\b(comi|comemos|almocei|almocar|jantei|lanchei|ingeri|bebi|tomei|cafe da manha)\b",)),
    ("query_food_info", (
        r"\b(calorias?|proteinas?|macros?|gordura)\b.*\b(tem|da|de)\b",
        r"\b(quantas?|quanto)\b.*\b(calorias?|proteina|macro)\b",
    )),
    ("update_goal", (
        r"\b(meta|objetivo)\b",
        r"\b(mudar|alterar|definir|ajustar)\b.*\b\d{3,4}\s?(kcal|calorias?)\b",
    )),
    ("register_meal", (
        r"\b(refeicao|prato|pizza|hamburguer|salada|macarrao)\b",
    )),
    ("register_exercise", (
        r"\b(corri|caminhei|pedalei|malhei|nadei|treinei|academia|treino|exercicio|yoga|musculacao)\b",
        r"\b(minutos?|km|quilometros?|series?)\b",
    )),
)

_COMPILED_RULES = tuple((intent, tuple(re.compile(p) for p in patterns)) for intent, patterns in INTENT_RULES)


def classify_by_rules(message: str, confidence: float | None = None) -> IntentResult | None:
    """First matching rule wins at a fixed high confidence."""
    normalized = normalize_text(message)
    if not normalized:
        return None
    for intent, patterns in _COMPILED_RULES:
        for pattern in patterns:
            if pattern.search(normalized):
                return IntentResult(
                    intent=intent,
                    confidence=confidence if confidence is not None else settings.REGEX_INTENT_CONFIDENCE,
                    source="regex",
                    matched_pattern=pattern.pattern,
                )
    return None


def carry_over_intent(
    history: list[HistoryMessage],
    now: datetime,
    max_minutes: int | None = None,
    confidence: float | None = None,
) -> IntentResult | None:
    """Reuse the last non-unknown user intent when it is recent enough."""
    window = timedelta(minutes=max_minutes if max_minutes is not None else settings.CONTEXT_CARRYOVER_MINUTES)
    reference = as_utc(now)
    for message in reversed(history):
        if message.role != ROLE_USER or not message.intent or message.intent == "unknown":
            continue
        if reference - as_utc(message.created_at) > window:
            return None
        return IntentResult(
            intent=message.intent,
            confidence=confidence if confidence is not None else settings.CONTEXT_CARRYOVER_CONFIDENCE,
            source="context",
            matched_pattern="context_carryover",
        )
    return None


class IntentClassifier:
    """LLM first, then the regex cascade, then context carry-over, then unknown."""

    def __init__(self, language_model: LanguageModel | None, history_window: int | None = None):
        self.language_model = language_model
        self.history_window = history_window if history_window is not None else settings.CLASSIFIER_HISTORY_WINDOW

    async def classify(
        self,
        batch: list[str],
        prior_history: list[HistoryMessage] | None = None,
        now: datetime | None = None,
    ) -> IntentResult:
        """Classify the unconsumed user batch (oldest first).

        ``prior_history`` holds the messages before the batch; only its user
        turns are shown to the model.
        """
        reference = now or utcnow()
        texts = [t for t in (batch or []) if (t or "").strip()]
        if not texts:
            return IntentResult()
        prior = prior_history or []

        if self.language_model is not None and self.language_model.enabled:
            user_window = [m.as_prompt_message() for m in prior if m.role == ROLE_USER][-self.history_window:]
            result = await self.language_model.classify("\n".join(texts), user_window)
            if result is not None and result.intent != "unknown":
                logger.info(f"Intent {result.intent} via llm ({result.confidence:.2f})")
                return result

        result = classify_by_rules(texts[-1])
        if result is not None:
            logger.info(f"Intent {result.intent} via regex")
            return result

        result = carry_over_intent(prior, reference)
        if result is not None:
            logger.info(f"Intent {result.intent} carried over from context")
            return result

        logger.info(f"Unknown intent for message: {texts[-1][:80]!r}")
        return IntentResult()
