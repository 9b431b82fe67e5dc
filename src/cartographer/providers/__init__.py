"""Generative backends using LangChain."""

from cartographer.providers.base import Backend, ProviderError
from cartographer.providers.chat import ChatModelBackend, is_transient
from cartographer.providers.factory import (
    PROVIDER_DEFAULTS,
    create_backend,
    create_chat_model,
    parse_provider_string,
)

__all__ = [
    "PROVIDER_DEFAULTS",
    "Backend",
    "ChatModelBackend",
    "ProviderError",
    "create_backend",
    "create_chat_model",
    "is_transient",
    "parse_provider_string",
]
