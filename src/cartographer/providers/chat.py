"""LangChain chat-model adapter for the Backend protocol."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

from cartographer.errors import BackendFailure
from cartographer.observability.logging import get_logger

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

# Substrings of exception class names that mark a retryable transport problem.
_TRANSIENT_MARKERS = ("ratelimit", "timeout", "connection", "overloaded", "unavailable")


def is_transient(error: BaseException) -> bool:
    """Guess whether *error* is a transport hiccup worth a longer wait."""
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    name = type(error).__name__.lower()
    return any(marker in name for marker in _TRANSIENT_MARKERS)


class ChatModelBackend:
    """Adapts a LangChain chat model to the Backend protocol.

    Attributes:
        name: Identifier used in logs (usually ``provider/model``).
        timeout: Seconds to wait for a reply, or None for no limit.
    """

    def __init__(self, model: BaseChatModel, name: str, *, timeout: float | None = None) -> None:
        """Initialize with a LangChain chat model.

        Args:
            model: Configured LangChain chat model instance.
            name: Identifier for logs and errors.
            timeout: Per-call timeout in seconds.
        """
        self._model = model
        self._name = name
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self._name

    async def complete(self, system: str, prompt: str) -> str:
        """Send one system + user exchange and return the reply text.

        Raises:
            BackendFailure: On timeout or any model error. ``transient`` is
                set for timeouts, connection problems, and rate limits.
        """
        messages = [SystemMessage(content=system), HumanMessage(content=prompt)]
        try:
            response = await asyncio.wait_for(self._model.ainvoke(messages), timeout=self.timeout)
        except (KeyboardInterrupt, asyncio.CancelledError):
            raise
        except TimeoutError as e:
            log.warning("backend_timeout", backend=self._name, timeout=self.timeout)
            raise BackendFailure(self._name, f"Timed out after {self.timeout}s", transient=True) from e
        except Exception as e:
            transient = is_transient(e)
            log.warning(
                "backend_call_failed",
                backend=self._name,
                error_type=type(e).__name__,
                transient=transient,
            )
            raise BackendFailure(self._name, f"Completion failed: {e}", transient=transient) from e

        content = response.content
        if isinstance(content, list):
            # Content blocks: keep the text parts only.
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block) for block in content
            )
        return str(content)
