"""Retry and correction loop around the primary backend.

The orchestrator is a small state machine::

    ATTEMPTING --valid delta--> SUCCEEDED
    ATTEMPTING --budget spent--> EXHAUSTED_RETRIES

Each attempt sends the map-update prompt to the primary backend and runs
the reply through the ingestion chain. A failed attempt produces an
immutable AttemptDiagnostics that the next prompt quotes back to the
backend. Once the primary budget is spent, one call to the corrective
backend may repair the last raw reply. Exhaustion is not an error: the
caller gets an empty delta and a warning.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from cartographer.config import RetryConfig
from cartographer.delta.models import MapDelta
from cartographer.delta.pipeline import IngestionResult, run_ingestion
from cartographer.errors import BackendFailure, DeltaValidationError, ParseFailure, format_error_lines
from cartographer.observability.logging import get_logger
from cartographer.prompts import get_loader, render_operation_schema

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from cartographer.prompts import PromptLoader
    from cartographer.providers.base import Backend

log = get_logger(__name__)

RETRY_PREFIX = "CRITICALLY IMPORTANT: Your previous attempt has triggered an error: "


class OrchestratorState(str, Enum):
    """Lifecycle of one fetch."""

    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED_RETRIES = "exhausted_retries"


@dataclass(frozen=True)
class AttemptDiagnostics:
    """Why one attempt failed.

    Attributes:
        attempt: 1-based attempt number.
        errors: Validation diagnostics, empty for parse or backend failures.
        parse_error: Parse failure reason, if nothing could be parsed.
        backend_error: Backend failure message, if the call itself failed.
        transient: Whether the backend failure looked transient.
        raw_text: The backend reply, if one was received.
        corrective: True for the corrective attempt.
    """

    attempt: int
    errors: tuple[DeltaValidationError, ...] = ()
    parse_error: str | None = None
    backend_error: str | None = None
    transient: bool = False
    raw_text: str | None = None
    corrective: bool = False

    @classmethod
    def from_ingestion(
        cls, attempt: int, ingestion: IngestionResult, raw_text: str, *, corrective: bool = False
    ) -> AttemptDiagnostics:
        parse_error = ingestion.errors[0].issue if ingestion.parse_failed and ingestion.errors else None
        return cls(
            attempt=attempt,
            errors=() if ingestion.parse_failed else tuple(ingestion.errors),
            parse_error=parse_error,
            raw_text=raw_text,
            corrective=corrective,
        )

    @property
    def is_backend_failure(self) -> bool:
        return self.backend_error is not None

    def summary(self) -> str:
        """Render the failure for the next prompt."""
        if self.backend_error is not None:
            return f"the request failed ({self.backend_error}). Answer again with the JSON object."
        if self.parse_error is not None:
            return ParseFailure(self.parse_error).to_feedback()
        lines = ["the map update was invalid:", *format_error_lines(list(self.errors))]
        return "\n".join(lines)


@dataclass
class OrchestratorOutcome:
    """Result of one fetch, successful or not.

    Attributes:
        state: Final state (SUCCEEDED or EXHAUSTED_RETRIES).
        delta: The validated delta; empty when exhausted.
        primary_calls: Calls made to the primary backend.
        corrective_used: Whether the corrective backend was called.
        diagnostics: One entry per failed attempt, oldest first.
        warnings: Turn-level warnings for the caller.
    """

    state: OrchestratorState
    delta: MapDelta = field(default_factory=MapDelta)
    primary_calls: int = 0
    corrective_used: bool = False
    diagnostics: tuple[AttemptDiagnostics, ...] = ()
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is OrchestratorState.SUCCEEDED

    @property
    def attempts(self) -> int:
        return self.primary_calls + (1 if self.corrective_used else 0)


def build_retry_prompt(base_prompt: str, diagnostics: AttemptDiagnostics | None) -> str:
    """Append the previous failure to the base prompt."""
    if diagnostics is None:
        return base_prompt
    return f"{base_prompt}\n{RETRY_PREFIX}{diagnostics.summary()}"


class DeltaOrchestrator:
    """Drives the primary backend until it produces a valid delta.

    Attributes:
        primary: Backend for map-update requests.
        corrective: Optional backend for the final repair call.
        retry: Retry budget and backoff settings.
        max_retries: Effective retry budget (environment override applied).
    """

    def __init__(
        self,
        primary: Backend,
        corrective: Backend | None = None,
        *,
        retry: RetryConfig | None = None,
        loader: PromptLoader | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Raises:
            ConfigError: If the retry budget override is malformed.
        """
        self.primary = primary
        self.corrective = corrective
        self.retry = retry or RetryConfig()
        self.max_retries = self.retry.get_max_retries()
        self._loader = loader
        self._sleep = sleep

    @property
    def loader(self) -> PromptLoader:
        if self._loader is None:
            self._loader = get_loader()
        return self._loader

    def _backoff(self, failure_count: int, transient: bool) -> float:
        base = self.retry.transient_backoff_seconds if transient else self.retry.backoff_seconds
        return base * 2 ** (failure_count - 1)

    async def fetch_delta(self, system: str, prompt: str) -> OrchestratorOutcome:
        """Request a map delta, retrying and correcting as needed.

        Never raises for backend or validation problems; exhaustion is
        reported in the outcome.

        Args:
            system: System prompt for the primary backend.
            prompt: Base user prompt.

        Returns:
            OrchestratorOutcome with the final state and delta.
        """
        state = OrchestratorState.ATTEMPTING
        history: list[AttemptDiagnostics] = []
        last: AttemptDiagnostics | None = None
        last_raw: str | None = None
        backend_failures = 0
        primary_calls = 0
        max_calls = self.max_retries + 1

        log.debug("orchestrator_state", state=state.value, max_calls=max_calls)

        for attempt in range(1, max_calls + 1):
            if last is not None and last.is_backend_failure:
                delay = self._backoff(backend_failures, last.transient)
                log.debug("backend_backoff", seconds=delay, transient=last.transient)
                await self._sleep(delay)

            current_prompt = build_retry_prompt(prompt, last)
            primary_calls += 1
            try:
                text = await self.primary.complete(system, current_prompt)
            except (KeyboardInterrupt, asyncio.CancelledError):
                raise
            except BackendFailure as e:
                backend_failures += 1
                last = AttemptDiagnostics(attempt=attempt, backend_error=str(e), transient=e.transient)
                history.append(last)
                log.warning(
                    "delta_attempt_backend_failed",
                    attempt=attempt,
                    max_calls=max_calls,
                    transient=e.transient,
                    error=str(e),
                )
                continue

            last_raw = text
            ingestion = run_ingestion(text)
            if ingestion.delta is not None:
                state = OrchestratorState.SUCCEEDED
                log.info("delta_accepted", attempt=attempt, operations=ingestion.delta.operation_count())
                return OrchestratorOutcome(
                    state=state,
                    delta=ingestion.delta,
                    primary_calls=primary_calls,
                    diagnostics=tuple(history),
                )

            last = AttemptDiagnostics.from_ingestion(attempt, ingestion, text)
            history.append(last)
            log.warning(
                "delta_attempt_failed",
                attempt=attempt,
                max_calls=max_calls,
                parse_failed=ingestion.parse_failed,
                errors=len(ingestion.errors),
            )

        corrective_used = False
        if self.corrective is not None and self.retry.use_corrective and last_raw is not None and last is not None:
            corrective_used = True
            outcome = await self._correct(self.corrective, last_raw, last, len(history) + 1)
            if isinstance(outcome, MapDelta):
                log.info("delta_accepted_after_correction", operations=outcome.operation_count())
                return OrchestratorOutcome(
                    state=OrchestratorState.SUCCEEDED,
                    delta=outcome,
                    primary_calls=primary_calls,
                    corrective_used=True,
                    diagnostics=tuple(history),
                )
            history.append(outcome)

        state = OrchestratorState.EXHAUSTED_RETRIES
        warning = f"Map update discarded after {primary_calls} attempt(s); the map was left unchanged."
        log.error(
            "delta_retries_exhausted",
            primary_calls=primary_calls,
            corrective_used=corrective_used,
            last_error=history[-1].summary() if history else None,
        )
        return OrchestratorOutcome(
            state=state,
            primary_calls=primary_calls,
            corrective_used=corrective_used,
            diagnostics=tuple(history),
            warnings=[warning],
        )

    async def _correct(
        self, corrective: Backend, raw_text: str, last: AttemptDiagnostics, attempt: int
    ) -> MapDelta | AttemptDiagnostics:
        """Ask the corrective backend to repair the last reply once."""
        template = self.loader.load("correct_payload")
        system, user = template.render(
            schema=render_operation_schema(),
            payload=raw_text,
            errors=last.summary(),
        )
        log.debug("corrective_call", attempt=attempt)
        try:
            text = await corrective.complete(system, user)
        except (KeyboardInterrupt, asyncio.CancelledError):
            raise
        except BackendFailure as e:
            log.warning("corrective_backend_failed", error=str(e), transient=e.transient)
            return AttemptDiagnostics(
                attempt=attempt, backend_error=str(e), transient=e.transient, corrective=True
            )

        ingestion = run_ingestion(text)
        if ingestion.delta is not None:
            return ingestion.delta
        log.warning("corrective_attempt_failed", errors=len(ingestion.errors))
        return AttemptDiagnostics.from_ingestion(attempt, ingestion, text, corrective=True)
