"""LLM client for Comment Lens.

All model traffic goes through the OpenAI-compatible chat API. Supported
providers:
- Gemini (via Google's OpenAI-compatible endpoint)
- DeepSeek
- OpenAI

The pipeline depends only on ``complete(prompt) -> str``; any object with
that coroutine can stand in for the client.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from openai import AsyncOpenAI

from commentlens.config import LLMConfig, LLMCredentials
from commentlens.errors import ExternalServiceError

logger = logging.getLogger(__name__)


# API endpoints for different providers
PROVIDER_ENDPOINTS = {
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "deepseek": "https://api.deepseek.com",
    "openai": "https://api.openai.com/v1",
}


class CompletionModel(Protocol):
    """Anything that turns one prompt into one completion."""

    async def complete(self, prompt: str) -> str: ...


@dataclass
class LLMResponse:
    """Response from LLM API."""
    content: str
    model: str
    provider: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class LLMClientError(ExternalServiceError):
    """Base exception for LLM client errors."""
    pass


class APIKeyError(LLMClientError):
    """Raised when API key is missing or invalid."""
    pass


class LLMTimeoutError(LLMClientError):
    """Raised when a single model call exceeds its time limit."""
    pass


class LLMClient:
    """Async LLM client supporting multiple providers."""

    def __init__(
        self,
        provider: str = "gemini",
        model: str = "gemini-1.5-flash",
        api_key: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        timeout_seconds: float = 30.0,
    ):
        """Initialize LLM client.

        Args:
            provider: LLM provider (gemini, deepseek, openai).
            model: Model to use.
            api_key: API key. If None, read from the environment.
            temperature: Generation temperature.
            max_tokens: Maximum tokens to generate.
            timeout_seconds: Hard limit for one call, separate from retries.

        Raises:
            APIKeyError: If API key is not configured.
            LLMClientError: If the provider is unknown.
        """
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

        if api_key is None:
            api_key = LLMCredentials.from_env().get_key_for_provider(provider)

        if not api_key:
            raise APIKeyError(
                f"API key not configured for provider '{provider}'. "
                f"Set the appropriate environment variable."
            )

        self._api_key = api_key
        self._client = self._create_client()

    def _create_client(self) -> AsyncOpenAI:
        """Create async OpenAI client configured for the provider."""
        base_url = PROVIDER_ENDPOINTS.get(self.provider)
        if base_url is None:
            raise LLMClientError(f"Unknown provider: {self.provider}")

        # Retries are owned by the pipeline stages
        return AsyncOpenAI(api_key=self._api_key, base_url=base_url, max_retries=0)

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a response from the LLM.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            temperature: Override default temperature.
            max_tokens: Override default max tokens.

        Returns:
            LLMResponse with generated content.

        Raises:
            LLMTimeoutError: If the call exceeds ``timeout_seconds``.
            LLMClientError: If generation fails.
        """
        messages = []

        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        messages.append({"role": "user", "content": prompt})

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature if temperature is None else temperature,
                    max_tokens=max_tokens or self.max_tokens,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise LLMTimeoutError(
                f"LLM call timed out after {self.timeout_seconds:.0f}s"
            ) from e
        except Exception as e:
            raise LLMClientError(f"LLM generation failed: {e}") from e

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=self.model,
            provider=self.provider,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
        )

    async def complete(self, prompt: str) -> str:
        """Return the completion text for a single prompt."""
        response = await self.generate(prompt)
        logger.debug(
            f"[LLM] {self.provider}/{self.model} used {response.total_tokens} tokens"
        )
        return response.content


def get_llm_client(
    config: LLMConfig,
    credentials: LLMCredentials | None = None,
) -> LLMClient | None:
    """Build an LLM client from config.

    Args:
        config: LLM section of the config.
        credentials: API keys. Read from the environment when None.

    Returns:
        Configured LLMClient, or None when the model is disabled or no key
        is available (the pipeline then runs on heuristics only).
    """
    if not config.enabled:
        return None

    credentials = credentials or LLMCredentials.from_env()
    if not credentials.has_key_for_provider(config.provider):
        logger.warning(
            f"[LLM] No API key for provider '{config.provider}', using heuristics only"
        )
        return None

    return LLMClient(
        provider=config.provider,
        model=config.model,
        api_key=credentials.get_key_for_provider(config.provider),
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
    )
