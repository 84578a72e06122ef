from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ai.intent_classifier import IntentClassifier, carry_over_intent, classify_by_rules  # noqa: E402
from ai.language_model import LanguageModel, extract_json_object, parse_bare_number  # noqa: E402
from ai.providers import GroqProvider, OpenAIProvider, get_provider  # noqa: E402
from ai.providers.base import ProviderError  # noqa: E402
from services.conversation_service import HistoryMessage  # noqa: E402

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


class FakeProvider:
    def __init__(self, content: str = "", delay: float = 0.0, error: Exception | None = None):
        self.content = content
        self.delay = delay
        self.error = error
        self.calls: list[dict] = []

    def get_utility_model(self) -> str:
        return "fake-utility"

    def get_conversion_model(self) -> str:
        return "fake-conversion"

    async def chat(self, messages, model, system="", temperature=None, max_tokens=None):
        self.calls.append({"messages": messages, "model": model, "system": system})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {"content": self.content, "tokens_in": 1, "tokens_out": 1, "model": model}


def _msg(role: str, content: str, intent: str | None, minutes_ago: float) -> HistoryMessage:
    return HistoryMessage(role=role, content=content, intent=intent, created_at=NOW - timedelta(minutes=minutes_ago))


def _classify(classifier: IntentClassifier, batch: list[str], prior=None):
    return asyncio.run(classifier.classify(batch, prior or [], NOW))


def test_rule_order_prefers_greeting_over_food_words():
    result = classify_by_rules("Bom dia, comi pão com ovo")
    assert result.intent == "greeting"
    assert result.source == "regex"
    assert result.confidence == 0.95


def test_rules_cover_main_intents():
    cases = {
        "ajuda": "help",
        "comi arroz e feijão": "register_meal",
        "quantas calorias tem uma banana?": "query_food_info",
        "corri 30 minutos": "register_exercise",
        "qual meu saldo?": "query_balance",
        "resumo da semana": "summary_week",
        "resumo de hoje": "daily_summary",
        "minha meta é 1800 kcal": "update_goal",
        "peso atual 82kg": "update_user_data",
        "meus dados": "view_user_data",
        "quero fazer meu cadastro": "onboarding",
    }
    for text, expected in cases.items():
        result = classify_by_rules(text)
        assert result is not None, text
        assert result.intent == expected, text


def test_rules_return_none_without_match():
    assert classify_by_rules("hmm talvez") is None
    assert classify_by_rules("   ") is None


def test_llm_result_wins_and_carries_items():
    provider = FakeProvider(
        json.dumps({
            "intent": "register_meal",
            "confidence": 0.9,
            "items": [{"kind": "meal", "name": "arroz", "quantity": "100g"}],
        })
    )
    classifier = IntentClassifier(LanguageModel(provider, intent_timeout_ms=1000))
    prior = [
        _msg("user", "oi", "greeting", 3),
        _msg("assistant", "Olá! Em que posso ajudar?", "greeting", 3),
    ]

    result = _classify(classifier, ["arroz 100g"], prior)

    assert result.intent == "register_meal"
    assert result.source == "llm"
    assert result.meal_items[0].name == "arroz"
    assert result.meal_items[0].quantity == "100g"
    prompt = provider.calls[0]["messages"][0]["content"]
    assert "Usuário: oi" in prompt
    assert "Em que posso ajudar" not in prompt
    assert provider.calls[0]["model"] == "fake-utility"


def test_llm_timeout_falls_back_to_rules():
    provider = FakeProvider(json.dumps({"intent": "help"}), delay=1.0)
    classifier = IntentClassifier(LanguageModel(provider, intent_timeout_ms=20))

    result = _classify(classifier, ["oi"])

    assert result.intent == "greeting"
    assert result.source == "regex"


def test_llm_out_of_taxonomy_or_unknown_falls_back_to_rules():
    for content in (
        json.dumps({"intent": "order_pizza", "confidence": 0.99}),
        json.dumps({"intent": "unknown", "confidence": 0.5}),
        "não sei responder",
    ):
        classifier = IntentClassifier(LanguageModel(FakeProvider(content), intent_timeout_ms=1000))
        result = _classify(classifier, ["qual meu saldo?"])
        assert result.intent == "query_balance", content
        assert result.source == "regex"


def test_llm_provider_error_falls_back_to_rules():
    provider = FakeProvider(error=ProviderError("boom", status_code=500))
    classifier = IntentClassifier(LanguageModel(provider, intent_timeout_ms=1000))

    assert _classify(classifier, ["ajuda"]).intent == "help"


def test_disabled_model_skips_remote_call():
    classifier = IntentClassifier(LanguageModel(None))
    assert not classifier.language_model.enabled
    assert _classify(classifier, ["corri 5 km"]).intent == "register_exercise"


def test_rules_use_latest_message_of_batch():
    classifier = IntentClassifier(None)
    assert _classify(classifier, ["oi", "comi uma maçã"]).intent == "register_meal"


def test_carry_over_within_window():
    prior = [
        _msg("user", "comi arroz", "register_meal", 5),
        _msg("assistant", "Confirma?", "register_meal", 5),
        _msg("user", "hmm", "unknown", 4),
    ]
    result = _classify(IntentClassifier(None), ["e mais feijao tambem"], prior)

    assert result.intent == "register_meal"
    assert result.source == "context"
    assert result.confidence == 0.6


def test_carry_over_expires_after_window():
    prior = [_msg("user", "comi arroz", "register_meal", 11)]

    result = _classify(IntentClassifier(None), ["e mais feijao tambem"], prior)

    assert result.intent == "unknown"
    assert result.source == "default"


def test_carry_over_only_looks_at_latest_known_user_intent():
    history = [
        _msg("user", "corri", "register_exercise", 30),
        _msg("user", "comi", "register_meal", 20),
    ]
    assert carry_over_intent(history, NOW) is None


def test_empty_batch_is_unknown():
    assert _classify(IntentClassifier(None), ["", "  "]).intent == "unknown"


def test_model_output_helpers():
    assert extract_json_object('```json\n{"intent": "help"}\n```') == {"intent": "help"}
    assert extract_json_object('Resposta: {"intent": "greeting"} ok') == {"intent": "greeting"}
    assert extract_json_object("[1, 2]") is None
    assert parse_bare_number("120") == 120.0
    assert parse_bare_number("~ 45,5 g") == 45.5
    assert parse_bare_number("cerca de 100") is None
    assert parse_bare_number("0") is None


def test_conversions_use_conversion_model_and_bounds():
    provider = FakeProvider("250")
    model = LanguageModel(provider, conversion_timeout_ms=1000)

    grams = asyncio.run(model.convert_unit("Pizza", "2 fatias", serving_size_grams=100, measures=[("pedaco", 110)]))

    assert grams == 250.0
    call = provider.calls[0]
    assert call["model"] == "fake-conversion"
    assert "pedaco = 110g" in call["messages"][0]["content"]

    assert asyncio.run(LanguageModel(FakeProvider("2000")).convert_duration("o dia todo")) is None
    assert asyncio.run(LanguageModel(FakeProvider("45")).convert_duration("três quartos de hora")) == 45.0
    assert asyncio.run(LanguageModel(None).convert_unit("Pizza", "2 fatias")) is None


def test_provider_factory():
    groq = get_provider("groq", "key")
    assert isinstance(groq, GroqProvider)
    assert groq.get_utility_model() == "llama-3.1-8b-instant"
    assert groq.get_conversion_model() == "llama-3.3-70b-versatile"

    openai = get_provider("OpenAI", "key", utility_model="llama-3.1-8b-instant")
    assert isinstance(openai, OpenAIProvider)
    assert openai.get_utility_model() == "gpt-4o-mini"

    with pytest.raises(ValueError):
        get_provider("anthropic", "key")
