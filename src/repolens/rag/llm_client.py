"""LiteLLM generation client and API key validation.

Every generative-model call in the retrieval pipeline routes through this
module. Retries are disabled (``num_retries=0``): a failed call surfaces as a
retryable ``UpstreamError`` and the caller decides whether to try again.
"""

from __future__ import annotations

import logging
import os

import litellm

from repolens.errors import UpstreamError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "google": "GOOGLE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama) or unknown provider

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 2000,
    temperature: float = 0.3,
) -> str:
    """Call litellm.completion() once. Returns the stripped content string.

    Raises:
        UpstreamError: The provider call failed.
    """
    try:
        response = litellm.completion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            num_retries=0,
        )
    except Exception as exc:
        logger.error("Completion call to %s failed: %s", model, exc)
        raise UpstreamError(f"Generative model error ({model}): {exc}") from exc
    return (response.choices[0].message.content or "").strip()


class LiteLLMGenerator:
    """``complete(prompt) -> text`` with a fixed model, temperature and length limit."""

    def __init__(self, model: str, temperature: float = 0.3, max_tokens: int = 2000) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def complete(self, prompt: str) -> str:
        return complete(
            self.model,
            [{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
