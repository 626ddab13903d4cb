"""LiteLLM client wrapper with timeout, bounded retry, and API key validation.

All classifier and embedding calls route through this module. Calls are
single-attempt by default; ``num_retries`` enables LiteLLM's built-in
exponential backoff when a caller wants at-least-once semantics.
"""

from __future__ import annotations

import os

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def api_key_env(provider: str) -> str | None:
    """Env var holding *provider*'s API key (None for keyless local providers)."""
    provider = provider.lower()
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = api_key_env(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 1024,
    temperature: float = 0.0,
    timeout: float | None = None,
    num_retries: int = 0,
    json_mode: bool = False,
) -> str:
    """Call litellm.completion() and return the first choice's content.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style message list.
        max_tokens: Maximum output tokens.
        temperature: Sampling temperature (0 = deterministic).
        timeout: Per-call timeout in seconds (None = LiteLLM default).
        num_retries: Retries on transient errors (exponential backoff).
        json_mode: Request a JSON object response.

    Raises:
        litellm.exceptions.APIError: On API failure (after retries, if any).
        litellm.exceptions.Timeout: When *timeout* elapses.
    """
    kwargs: dict = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "num_retries": num_retries,
    }
    if timeout is not None:
        kwargs["timeout"] = timeout
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = litellm.completion(**kwargs)
    return response.choices[0].message.content or ""


def embed(
    model: str,
    text: str,
    timeout: float | None = None,
    num_retries: int = 0,
) -> list[float]:
    """Call litellm.embedding() and return the embedding vector.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        text: Text to embed.
        timeout: Per-call timeout in seconds (None = LiteLLM default).
        num_retries: Retries on transient errors.
    """
    kwargs: dict = {"model": model, "input": [text], "num_retries": num_retries}
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = litellm.embedding(**kwargs)
    return response.data[0]["embedding"]
