"""Factory for chat-model backends.

Uses LangChain's init_chat_model abstraction for unified provider
instantiation. Provider strings have the form ``provider/model``
(``openai/gpt-5-mini``); a bare provider name falls back to its default
model.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from cartographer.observability.logging import get_logger
from cartographer.providers.base import ProviderError
from cartographer.providers.chat import ChatModelBackend

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

# Provider default models - None means model must be explicitly specified
PROVIDER_DEFAULTS: dict[str, str | None] = {
    "ollama": None,
    "openai": "gpt-5-mini",
    "anthropic": "claude-sonnet-4-20250514",
    "google": "gemini-2.5-flash",
}

_KNOWN_PROVIDERS = frozenset(PROVIDER_DEFAULTS)

_API_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}

_PACKAGES: dict[str, str] = {
    "ollama": "langchain-ollama",
    "openai": "langchain-openai",
    "anthropic": "langchain-anthropic",
    "google": "langchain-google-genai",
}


def _normalize_provider(provider_name: str) -> str:
    name = provider_name.strip().lower()
    if name == "gemini":
        return "google"
    return name


def parse_provider_string(value: str) -> tuple[str, str]:
    """Split ``provider/model`` into its parts.

    Args:
        value: Provider string; the model part may be omitted.

    Returns:
        Tuple of (provider, model).

    Raises:
        ProviderError: If the provider is unknown or has no default model.
    """
    provider_part, _, model = value.partition("/")
    provider = _normalize_provider(provider_part)
    if provider not in _KNOWN_PROVIDERS:
        raise ProviderError(provider, f"Unknown provider: {provider}")
    if not model:
        default = PROVIDER_DEFAULTS[provider]
        if default is None:
            raise ProviderError(provider, "No default model; use 'provider/model'")
        model = default
    return provider, model


def _preprocess_provider_kwargs(provider: str, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Resolve host and API key settings from kwargs or the environment.

    Raises:
        ProviderError: If required configuration is missing.
    """
    kwargs = dict(kwargs)

    if provider == "ollama":
        host = kwargs.pop("host", None) or os.getenv("OLLAMA_HOST")
        if not host:
            log.error("provider_config_error", provider="ollama", missing="OLLAMA_HOST")
            raise ProviderError("ollama", "OLLAMA_HOST not configured. Set OLLAMA_HOST environment variable.")
        kwargs["base_url"] = host
        return kwargs

    env_var = _API_KEY_ENV[provider]
    api_key = kwargs.get("api_key") or os.getenv(env_var)
    if not api_key:
        log.error("provider_config_error", provider=provider, missing=env_var)
        raise ProviderError(provider, f"API key required. Set {env_var} environment variable.")
    kwargs["api_key"] = api_key
    return kwargs


def create_chat_model(provider_name: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain BaseChatModel.

    Args:
        provider_name: Provider identifier (ollama, openai, anthropic, google).
        model: Model name/identifier.
        **kwargs: Additional provider-specific options.

    Returns:
        Configured BaseChatModel.

    Raises:
        ProviderError: If provider unavailable or misconfigured.
    """
    provider = _normalize_provider(provider_name)
    if provider not in _KNOWN_PROVIDERS:
        log.error("provider_unknown", provider=provider)
        raise ProviderError(provider, f"Unknown provider: {provider}")

    kwargs = _preprocess_provider_kwargs(provider, kwargs)
    provider_for_init = "google_genai" if provider == "google" else provider

    try:
        from langchain.chat_models import init_chat_model

        chat_model: BaseChatModel = init_chat_model(
            model=model, model_provider=provider_for_init, **kwargs
        )
    except ImportError as e:
        package = _PACKAGES[provider]
        log.error("provider_import_error", provider=provider, package=package)
        raise ProviderError(provider, f"{package} not installed. Run: pip install {package}") from e

    log.info("chat_model_created", provider=provider, model=model)
    return chat_model


def create_backend(provider_string: str, *, timeout: float | None = None, **kwargs: Any) -> ChatModelBackend:
    """Build a Backend from a ``provider/model`` string.

    Args:
        provider_string: e.g. ``"anthropic/claude-sonnet-4-20250514"``.
        timeout: Per-call timeout in seconds.
        **kwargs: Passed through to :func:`create_chat_model`.

    Raises:
        ProviderError: If the provider is unknown or misconfigured.
    """
    provider, model = parse_provider_string(provider_string)
    chat_model = create_chat_model(provider, model, **kwargs)
    return ChatModelBackend(chat_model, f"{provider}/{model}", timeout=timeout)
