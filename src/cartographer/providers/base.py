"""Backend protocol and provider errors."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Backend(Protocol):
    """A generative backend that turns a prompt into free text.

    The pipeline treats backends as opaque: one request, one text reply.
    Implementations raise BackendFailure when no text could be produced.
    """

    @property
    def name(self) -> str:
        """Short identifier used in logs and error messages."""
        ...

    async def complete(self, system: str, prompt: str) -> str:
        """Generate a reply.

        Args:
            system: System instructions.
            prompt: User prompt.

        Returns:
            The raw reply text.

        Raises:
            BackendFailure: If the call failed before producing text.
        """
        ...


class ProviderError(Exception):
    """Base exception for provider construction errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")
