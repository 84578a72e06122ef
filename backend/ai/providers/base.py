from abc import ABC, abstractmethod


class ProviderError(Exception):
    """Raised when a provider request fails at the transport or API level."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AIProvider(ABC):
    """Abstract base class for all AI providers."""

    DEFAULT_UTILITY_MODEL = ""
    DEFAULT_CONVERSION_MODEL = ""

    def __init__(
        self,
        api_key: str,
        utility_model: str | None = None,
        conversion_model: str | None = None,
        base_url: str | None = None,
    ):
        self.api_key = api_key
        self._utility_model = utility_model
        self._conversion_model = conversion_model
        self._base_url = base_url

    @abstractmethod
    async def chat(
        self,
        messages: list[dict],
        model: str,
        system: str = "",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict:
        """Send a chat request to the provider.

        Args:
            messages: List of message dicts with role and content.
            model: Model identifier to use.
            system: Optional system prompt.
            temperature: Optional sampling temperature.
            max_tokens: Optional completion token cap.

        Returns:
            dict with content, tokens_in, tokens_out, model.

        Raises:
            ProviderError on transport or API failures.
        """
        ...

    def get_utility_model(self) -> str:
        """Fast model used for intent classification."""
        return self._utility_model or self.DEFAULT_UTILITY_MODEL

    def get_conversion_model(self) -> str:
        """Model used for unit and duration conversions."""
        return self._conversion_model or self.DEFAULT_CONVERSION_MODEL or self.get_utility_model()
