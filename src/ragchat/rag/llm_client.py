"""LiteLLM client wrapper for generation and embedding calls.

All generation + embedding traffic routes through this module. Blocking
completions use LiteLLM's built-in retry (num_retries, exponential backoff);
streams are never retried because a partially consumed stream cannot be
replayed. Every call carries an explicit timeout.
"""

from __future__ import annotations

import base64
import logging
import os
from collections.abc import Iterator

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
    "vertex_ai": None,  # Application default credentials
}

_LOCAL_PROVIDERS = ("ollama", "ollama_chat")


def provider_of(model: str) -> str:
    """Return the provider prefix of a LiteLLM model string ('openai' if absent)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def _base_kwargs(model: str, api_base: str | None, timeout: float) -> dict:
    kwargs: dict = {"model": model, "timeout": timeout}
    if api_base and provider_of(model) in _LOCAL_PROVIDERS:
        kwargs["api_base"] = api_base
    return kwargs


def complete(
    model: str,
    messages: list[dict],
    *,
    api_base: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.7,
    timeout: float = 120.0,
    num_retries: int = 2,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns the content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = litellm.completion(
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        **_base_kwargs(model, api_base, timeout),
    )
    return response.choices[0].message.content or ""


def stream(
    model: str,
    messages: list[dict],
    *,
    api_base: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.7,
    timeout: float = 120.0,
) -> Iterator[str]:
    """Yield text deltas from a streaming litellm.completion() call.

    Empty deltas (role-only or keep-alive chunks) are skipped. Errors raised
    while iterating propagate to the consumer.
    """
    response = litellm.completion(
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        stream=True,
        **_base_kwargs(model, api_base, timeout),
    )
    for chunk in response:
        delta = chunk.choices[0].delta.content if chunk.choices else None
        if delta:
            yield delta


def embed(
    model: str,
    text: str,
    *,
    api_base: str | None = None,
    timeout: float = 60.0,
    num_retries: int = 2,
) -> list[float]:
    """Call litellm.embedding() with retry/backoff. Returns the embedding vector."""
    response = litellm.embedding(
        input=[text],
        num_retries=num_retries,
        **_base_kwargs(model, api_base, timeout),
    )
    return response.data[0]["embedding"]


def image_data_uri(data: bytes, mime_type: str) -> str:
    """Encode raw image bytes as a base64 ``data:`` URI."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def embed_image(
    model: str,
    data: bytes,
    mime_type: str,
    *,
    timeout: float = 60.0,
    num_retries: int = 2,
) -> list[float]:
    """Embed an image with a multimodal embedding model.

    The image travels as a base64 data URI, which LiteLLM forwards to
    multimodal providers. Text embedded with the same *model* shares the
    vector space, which is what text-to-image search relies on.
    """
    response = litellm.embedding(
        model=model,
        input=[image_data_uri(data, mime_type)],
        timeout=timeout,
        num_retries=num_retries,
    )
    return response.data[0]["embedding"]
