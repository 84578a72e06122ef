from ai.providers.base import AIProvider, ProviderError
from ai.providers.openai_provider import GroqProvider, OpenAIProvider


def _looks_like_provider_model(provider_name: str, model_id: str | None) -> bool:
    if not model_id:
        return False
    m = model_id.strip().lower()
    if not m:
        return False
    if provider_name == "openai":
        return m.startswith("gpt") or m.startswith("o") or "gpt" in m
    return True


def get_provider(
    provider_name: str,
    api_key: str,
    utility_model: str | None = None,
    conversion_model: str | None = None,
    base_url: str | None = None,
) -> AIProvider:
    providers = {
        "groq": GroqProvider,
        "openai": OpenAIProvider,
    }
    cls = providers.get((provider_name or "").strip().lower())
    if not cls:
        raise ValueError(f"Unknown provider: {provider_name}")

    name = provider_name.strip().lower()
    safe_utility = utility_model if _looks_like_provider_model(name, utility_model) else None
    safe_conversion = conversion_model if _looks_like_provider_model(name, conversion_model) else None
    return cls(
        api_key=api_key,
        utility_model=safe_utility,
        conversion_model=safe_conversion,
        base_url=base_url,
    )


__all__ = ["AIProvider", "ProviderError", "GroqProvider", "OpenAIProvider", "get_provider"]
