from typing import Any

import httpx

from ai.providers.base import AIProvider, ProviderError


class OpenAIProvider(AIProvider):
    """OpenAI-compatible chat-completions provider."""

    BASE_URL = "https://api.openai.com/v1/chat/completions"
    DEFAULT_UTILITY_MODEL = "gpt-4o-mini"
    DEFAULT_CONVERSION_MODEL = "gpt-4o-mini"
    DEFAULT_MAX_COMPLETION_TOKENS = 512
    PROVIDER_LABEL = "OpenAI"

    def __init__(
        self,
        api_key: str,
        utility_model: str | None = None,
        conversion_model: str | None = None,
        base_url: str | None = None,
        timeout_s: float = 30.0,
    ):
        super().__init__(api_key, utility_model, conversion_model, base_url)
        self._url = base_url or self.BASE_URL
        self._timeout_s = timeout_s
        self._headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _limit_field(self, model: str) -> str:
        # Reasoning-era OpenAI models reject max_tokens.
        name = (model or "").strip().lower()
        if name.startswith(("o1", "o3", "o4", "gpt-5", "gpt-4.1")):
            return "max_completion_tokens"
        return "max_tokens"

    async def chat(
        self,
        messages: list[dict],
        model: str,
        system: str = "",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict:
        prompt = [{"role": "system", "content": system}] if system else []
        payload: dict[str, Any] = {
            "model": model,
            "messages": prompt + list(messages),
            self._limit_field(model): max_tokens or self.DEFAULT_MAX_COMPLETION_TOKENS,
        }
        if temperature is not None:
            payload["temperature"] = temperature

        try:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                resp = await client.post(self._url, headers=self._headers, json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.PROVIDER_LABEL} transport error: {exc}") from exc

        if resp.status_code != 200:
            raise ProviderError(
                f"{self.PROVIDER_LABEL} API error: {resp.text[:500]}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(f"{self.PROVIDER_LABEL} returned non-JSON body") from exc

        choice = (data.get("choices") or [{}])[0]
        usage = data.get("usage") or {}
        return {
            "content": (choice.get("message") or {}).get("content") or "",
            "tokens_in": usage.get("prompt_tokens", 0),
            "tokens_out": usage.get("completion_tokens", 0),
            "model": data.get("model", model),
        }


class GroqProvider(OpenAIProvider):
    """Groq serves the same chat-completions protocol."""

    BASE_URL = "https://api.groq.com/openai/v1/chat/completions"
    DEFAULT_UTILITY_MODEL = "llama-3.1-8b-instant"
    DEFAULT_CONVERSION_MODEL = "llama-3.3-70b-versatile"
    PROVIDER_LABEL = "Groq"

    def _limit_field(self, model: str) -> str:
        return "max_tokens"
