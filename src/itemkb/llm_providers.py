"""LLM provider selection for item enrichment.

Enrichment calls go either to Anthropic directly or through OpenRouter
(OpenAI-compatible). Which one is used:

1. ``llm.provider`` in .kbconfig or ITEMKB_LLM_PROVIDER, if set
2. ANTHROPIC_API_KEY alone -> anthropic
3. OPENROUTER_API_KEY alone -> openrouter
4. Both keys and nothing explicit, or no keys -> LLMProviderError

The extractor treats LLMProviderError like any other failed call and falls
back to the frequency heuristic.
"""

from __future__ import annotations

import os
from typing import Any

from .config import LLMConfig, get_llm_config

PROVIDERS = ("anthropic", "openrouter")
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class LLMProviderError(Exception):
    """Raised when no usable LLM provider is configured."""

    pass


# Canonical name -> (anthropic model id, openrouter model id)
MODEL_ALIASES: dict[str, tuple[str, str]] = {
    "claude-3-haiku": ("claude-3-haiku-20240307", "anthropic/claude-3-haiku"),
    "claude-3.5-haiku": ("claude-3-5-haiku-20241022", "anthropic/claude-3-5-haiku"),
    "claude-haiku-4.5": ("claude-haiku-4-5-20250414", "anthropic/claude-haiku-4.5"),
    "claude-3.5-sonnet": ("claude-3-5-sonnet-20241022", "anthropic/claude-3.5-sonnet"),
    "claude-sonnet-4": ("claude-sonnet-4-20250514", "anthropic/claude-sonnet-4"),
}


def resolve_model(model: str, provider: str) -> str:
    """Translate a model name into the form the provider expects.

    >>> resolve_model("claude-3.5-haiku", "anthropic")
    'claude-3-5-haiku-20241022'
    >>> resolve_model("claude-sonnet-4-20250514", "openrouter")
    'anthropic/claude-sonnet-4-20250514'
    """
    if model in MODEL_ALIASES:
        anthropic_name, openrouter_name = MODEL_ALIASES[model]
        return anthropic_name if provider == "anthropic" else openrouter_name

    if provider == "anthropic":
        return model.removeprefix("anthropic/")

    if model.startswith("claude-"):
        return f"anthropic/{model}"
    return model


_KEY_ENV = {"anthropic": "ANTHROPIC_API_KEY", "openrouter": "OPENROUTER_API_KEY"}

_ERROR_BOTH_KEYS = """\
Both ANTHROPIC_API_KEY and OPENROUTER_API_KEY are set.
Choose one in .kbconfig:

llm:
  provider: anthropic  # or 'openrouter'
"""

_ERROR_NO_KEY = """\
No LLM API key configured; enrichment will use keyword frequency only.

Set ANTHROPIC_API_KEY or OPENROUTER_API_KEY to enable LLM extraction.
"""


def detect_provider(config: LLMConfig | None = None) -> str:
    """Work out which provider to call.

    Raises:
        LLMProviderError: If the provider is invalid or ambiguous, or no key is set.
    """
    if config is None:
        config = get_llm_config()

    if config.provider:
        provider = config.provider.lower()
        if provider not in PROVIDERS:
            raise LLMProviderError(
                f"Invalid llm.provider '{config.provider}'. Must be one of: {', '.join(PROVIDERS)}."
            )
        return provider

    available = [name for name in PROVIDERS if os.environ.get(_KEY_ENV[name])]
    if len(available) > 1:
        raise LLMProviderError(_ERROR_BOTH_KEYS)
    if not available:
        raise LLMProviderError(_ERROR_NO_KEY)
    return available[0]


def get_async_client(provider: str | None = None, config: LLMConfig | None = None) -> tuple[Any, str]:
    """Build an async client for the provider.

    Returns:
        Tuple of (client, provider_name); the client is ``anthropic.AsyncAnthropic``
        or an ``openai.AsyncOpenAI`` pointed at OpenRouter.
    """
    if provider is None:
        provider = detect_provider(config)

    api_key = os.environ.get(_KEY_ENV[provider])
    if not api_key:
        raise LLMProviderError(f"{_KEY_ENV[provider]} environment variable is required for provider '{provider}'.")

    if provider == "anthropic":
        import anthropic

        return anthropic.AsyncAnthropic(api_key=api_key), provider

    from openai import AsyncOpenAI

    return AsyncOpenAI(base_url=OPENROUTER_BASE_URL, api_key=api_key), provider


async def make_completion_async(
    client: Any,
    provider: str,
    model: str,
    messages: list[dict[str, str]],
    max_tokens: int = 500,
    temperature: float = 0.3,
    json_mode: bool = False,
) -> str:
    """Send one chat completion and return the response text.

    Hides the request/response differences between the Anthropic messages API
    and OpenAI-style chat completions. ``json_mode`` only affects OpenRouter.
    """
    resolved_model = resolve_model(model, provider)

    if provider == "anthropic":
        response = await client.messages.create(
            model=resolved_model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=messages,
        )
        return response.content[0].text

    kwargs: dict[str, Any] = {
        "model": resolved_model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = await client.chat.completions.create(**kwargs)
    return response.choices[0].message.content or ""
