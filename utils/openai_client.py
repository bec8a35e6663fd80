"""
OpenAI SDK Client

Wrapper for the OpenAI SDK. Works against api.openai.com or any
OpenAI-compatible server (Ollama, LocalAI, LM Studio, vLLM) via LLM_BASE_URL.
"""

import logging
import threading

from openai import (
    OpenAI,
    OpenAIError,
    APITimeoutError,
    AuthenticationError,
    NotFoundError,
    RateLimitError,
)
from config import (
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_TIMEOUT_SECONDS,
    MODEL_NAME,
    MAX_NEW_TOKENS,
    TEMPERATURE,
)
from pipeline.errors import GenerationFailure


logger = logging.getLogger(__name__)


def is_local_llm() -> bool:
    """True when a custom OpenAI-compatible endpoint is configured."""
    return bool(LLM_BASE_URL)


class OpenAIClient:
    """Client for OpenAI-compatible chat completion APIs."""

    def __init__(self):
        if not LLM_API_KEY and not LLM_BASE_URL:
            raise GenerationFailure(
                "LLM API key not found! "
                "Add LLM_API_KEY (or OPENAI_API_KEY) to the .env file, "
                "or set LLM_BASE_URL to use a local model server."
            )

        self.client = OpenAI(
            # Local servers usually ignore the key but the SDK requires one
            api_key=LLM_API_KEY or "not-needed",
            base_url=LLM_BASE_URL or None,
            timeout=LLM_TIMEOUT_SECONDS,
        )
        self.model = MODEL_NAME

    def generate_text(
        self,
        prompt: str,
        max_tokens: int = MAX_NEW_TOKENS,
        temperature: float = TEMPERATURE,
        system_prompt: str = None,
        model: str = None
    ) -> str:
        """
        Generate text using the chat completions API.

        Args:
            prompt: The input prompt for generation
            max_tokens: Maximum number of tokens to generate
            temperature: Sampling temperature (lower = more deterministic)
            system_prompt: Optional system prompt to set context
            model: Model override (defaults to LLM_MODEL)

        Returns:
            Generated text response ("" if the model returned no content)

        Raises:
            GenerationFailure: On any API error
        """
        model = model or self.model

        messages = [{"role": "user", "content": prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature
            )
        except OpenAIError as e:
            logger.warning("LLM request to %s failed: %s", model, e)
            raise _describe_failure(e, model) from e

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()


def _describe_failure(error: OpenAIError, model: str) -> GenerationFailure:
    """Map an SDK error to a message the user can act on."""
    if isinstance(error, AuthenticationError):
        return GenerationFailure("Invalid LLM API key. Check LLM_API_KEY in the .env file.")
    if isinstance(error, RateLimitError):
        return GenerationFailure("Rate limit exceeded. Please wait a moment and try again.")
    if isinstance(error, NotFoundError):
        return GenerationFailure(f"Model '{model}' not found. Check LLM_MODEL in the .env file.")
    if isinstance(error, APITimeoutError):
        return GenerationFailure(f"LLM request timed out after {LLM_TIMEOUT_SECONDS:g}s")
    return GenerationFailure(f"API Error: {error}")


# Singleton instance
_client = None
_client_lock = threading.Lock()


def get_client() -> OpenAIClient:
    """Get or create the OpenAI client singleton."""
    global _client
    with _client_lock:
        if _client is None:
            _client = OpenAIClient()
    return _client
