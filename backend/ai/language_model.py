"""Remote language-model capability used by the classifier and resolution cascade.

Every public method fails soft: timeouts, transport errors and malformed
output are logged and surface as ``None``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable

from ai.providers import AIProvider, get_provider
from ai.schemas import VALID_INTENTS, IntentResult, parse_items
from config import settings

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = """Você é um classificador de intenções para um bot nutricional no WhatsApp.

Analise TODAS as mensagens do usuário (desde a última resposta do bot) e identifique a intenção principal.

Intenções possíveis:
- greeting: cumprimentos (olá, oi, bom dia)
- help: pedido de ajuda ou comandos
- register_meal: registrar refeição/comida (comi, almocei, jantei)
- register_exercise: registrar exercício (corri, malhei, treino)
- query_balance: quanto ainda pode comer hoje
- query_food_info: informações nutricionais de um alimento
- daily_summary: resumo do dia
- summary_week: resumo da semana
- update_user_data: atualizar peso, altura, idade
- view_user_data: ver os próprios dados cadastrados
- update_goal: atualizar meta de calorias/proteínas
- onboarding: primeiro uso/cadastro
- unknown: use apenas se realmente não conseguir identificar

Para register_meal e query_food_info, liste cada alimento em "items" como
{"kind": "meal", "name": "...", "quantity": "texto da quantidade ou null"}.
Para register_exercise, liste {"kind": "exercise", "name": "...", "duration": "texto da duração ou null"}.

Responda APENAS com JSON válido:
{"intent": "...", "confidence": 0.0-1.0, "items": [...]}"""

CONVERT_UNIT_PROMPT = """Converta a quantidade para gramas.

Alimento: {food}
Quantidade: {quantity}
{context}
Responda APENAS com o número total de gramas, sem texto adicional.
Se não souber a conversão exata, estime pela unidade caseira comum.

Exemplos:
- "2 colheres de sopa de arroz" -> 50
- "1 copo de leite" -> 240
- "2 fatias de pão" -> 50"""

CONVERT_DURATION_PROMPT = """Converta a duração abaixo para minutos.

Duração: {duration}

Responda APENAS com o número de minutos, sem texto adicional."""

_BARE_NUMBER_REPLY = re.compile(r"\s*~?\s*(\d+(?:[.,]\d+)?)\s*(?:g|gramas?|min|minutos?)?\s*\.?\s*", re.IGNORECASE)


def extract_json_object(text: str) -> dict | None:
    """Parse a JSON object from model output, tolerating code fences and prose."""
    raw = (text or "").strip()
    if not raw:
        return None
    if "```" in raw:
        raw = raw.split("```")[1]
        if raw.startswith("json"):
            raw = raw[4:]
        raw = raw.strip()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", raw)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def parse_bare_number(text: str) -> float | None:
    """Accept only a reply that is a single strictly positive number."""
    match = _BARE_NUMBER_REPLY.fullmatch(text or "")
    if not match:
        return None
    try:
        value = float(match.group(1).replace(",", "."))
    except ValueError:
        return None
    return value if value > 0 else None


def _consume_late_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Late model call failed after timeout: {exc}")


class LanguageModel:
    def __init__(
        self,
        provider: AIProvider | None,
        intent_timeout_ms: int | None = None,
        conversion_timeout_ms: int | None = None,
    ):
        self.provider = provider
        self.intent_timeout_ms = intent_timeout_ms or settings.LLM_INTENT_TIMEOUT_MS
        self.conversion_timeout_ms = conversion_timeout_ms or settings.LLM_CONVERSION_TIMEOUT_MS

    @classmethod
    def from_settings(cls) -> "LanguageModel":
        if not (settings.LLM_API_KEY or "").strip():
            logger.warning("LLM_API_KEY not configured; language-model stages disabled")
            return cls(provider=None)
        provider = get_provider(
            settings.LLM_PROVIDER,
            settings.LLM_API_KEY,
            utility_model=settings.LLM_UTILITY_MODEL,
            conversion_model=settings.LLM_CONVERSION_MODEL,
            base_url=settings.LLM_BASE_URL,
        )
        return cls(provider=provider)

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    async def _race(self, call: Awaitable[dict], timeout_ms: int, operation: str) -> dict | None:
        """Await ``call`` up to the timeout; the losing request keeps running."""
        task = asyncio.ensure_future(call)
        done, _ = await asyncio.wait({task}, timeout=max(timeout_ms, 1) / 1000.0)
        if task not in done:
            task.add_done_callback(_consume_late_result)
            logger.info(f"{operation} timed out after {timeout_ms}ms")
            return None
        try:
            return task.result()
        except Exception as e:
            logger.warning(f"{operation} failed: {e}")
            return None

    async def classify(self, text: str, history: list[dict] | None = None) -> IntentResult | None:
        if self.provider is None or not (text or "").strip():
            return None

        history_text = "\n".join(
            f"{'Usuário' if m.get('role') == 'user' else 'Assistente'}: {m.get('content', '')}"
            for m in (history or [])
        ) or "Nenhum histórico disponível"
        user_prompt = (
            f"Mensagens do usuário (desde a última resposta):\n{text.strip()}\n\n"
            f"Histórico recente:\n{history_text}\n\n"
            "Classifique a intenção e extraia os itens."
        )
        result = await self._race(
            self.provider.chat(
                messages=[{"role": "user", "content": user_prompt}],
                model=self.provider.get_utility_model(),
                system=CLASSIFY_PROMPT,
                temperature=0.2,
                max_tokens=300,
            ),
            self.intent_timeout_ms,
            "Intent classification",
        )
        if result is None:
            return None

        parsed = extract_json_object(result.get("content", ""))
        if parsed is None:
            logger.warning("Intent classification returned non-JSON output")
            return None
        intent = str(parsed.get("intent") or "").strip()
        if intent not in VALID_INTENTS:
            logger.warning(f"Intent classification returned out-of-taxonomy intent: {intent!r}")
            return None
        try:
            confidence = float(parsed.get("confidence", 0.8))
        except (TypeError, ValueError):
            confidence = 0.8
        items_raw: Any = parsed.get("items")
        if items_raw is None and isinstance(parsed.get("extracted_data"), dict):
            items_raw = [parsed["extracted_data"]]
        return IntentResult(
            intent=intent,
            confidence=max(0.0, min(1.0, confidence)),
            source="llm",
            matched_pattern="llm_classification",
            items=parse_items(items_raw, intent),
        )

    async def convert_unit(
        self,
        food_name: str,
        quantity_text: str,
        serving_size_grams: float | None = None,
        measures: list[tuple[str, float]] | None = None,
    ) -> float | None:
        """Total grams for ``quantity_text`` of ``food_name``, or None."""
        if self.provider is None:
            return None
        context_lines: list[str] = []
        if serving_size_grams:
            context_lines.append(f"Porção padrão do alimento: {serving_size_grams:g}g")
        if measures:
            known = ", ".join(f"{name} = {grams:g}g" for name, grams in measures)
            context_lines.append(f"Medidas conhecidas: {known}")
        context = ("Contexto:\n" + "\n".join(context_lines) + "\n") if context_lines else ""

        result = await self._race(
            self.provider.chat(
                messages=[{
                    "role": "user",
                    "content": CONVERT_UNIT_PROMPT.format(food=food_name, quantity=quantity_text, context=context),
                }],
                model=self.provider.get_conversion_model(),
                system="Você é um especialista em nutrição. Responda APENAS com números.",
                temperature=0.2,
                max_tokens=20,
            ),
            self.conversion_timeout_ms,
            "Unit conversion",
        )
        if result is None:
            return None
        grams = parse_bare_number(result.get("content", ""))
        if grams is None:
            logger.info(f"Unit conversion for {food_name!r} returned unusable output")
        return grams

    async def convert_duration(self, text: str) -> float | None:
        """Minutes for a free-text duration, or None; values outside (0, 1440] are rejected."""
        if self.provider is None or not (text or "").strip():
            return None
        result = await self._race(
            self.provider.chat(
                messages=[{"role": "user", "content": CONVERT_DURATION_PROMPT.format(duration=text.strip())}],
                model=self.provider.get_conversion_model(),
                system="Responda APENAS com números.",
                temperature=0.0,
                max_tokens=10,
            ),
            self.conversion_timeout_ms,
            "Duration conversion",
        )
        if result is None:
            return None
        minutes = parse_bare_number(result.get("content", ""))
        if minutes is None or minutes > 1440:
            return None
        return minutes
