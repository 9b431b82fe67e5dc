"""Configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

# Default configuration values
DEFAULT_PROVIDER = "ollama/qwen3:8b"
MAX_RETRIES = 3

_ENV_PRIMARY = "CARTOGRAPHER_PROVIDER_PRIMARY"
_ENV_CORRECTIVE = "CARTOGRAPHER_PROVIDER_CORRECTIVE"
_ENV_RESOLVER = "CARTOGRAPHER_PROVIDER_RESOLVER"
_ENV_MAX_RETRIES = "CARTOGRAPHER_MAX_RETRIES"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded."""

    def __init__(self, path: Path | None, reason: str) -> None:
        self.path = path
        self.reason = reason
        where = f" at {path}" if path is not None else ""
        super().__init__(f"Failed to load config{where}: {reason}")


@dataclass
class ProvidersConfig:
    """Backends used for each kind of request.

    Resolution order for each role:
    1. Environment variable (e.g., CARTOGRAPHER_PROVIDER_CORRECTIVE)
    2. Config file value
    3. ``primary``

    Attributes:
        primary: Provider string for map-update requests. Required.
        corrective: Optional backend for the final repair call.
        resolver: Optional backend for consistency questions.
        timeout: Per-call timeout in seconds.
    """

    primary: str = DEFAULT_PROVIDER
    corrective: str | None = None
    resolver: str | None = None
    timeout: float | None = 60.0

    def get_primary_provider(self) -> str:
        return os.getenv(_ENV_PRIMARY) or self.primary

    def get_corrective_provider(self) -> str:
        return os.getenv(_ENV_CORRECTIVE) or self.corrective or self.get_primary_provider()

    def get_resolver_provider(self) -> str:
        return os.getenv(_ENV_RESOLVER) or self.resolver or self.get_primary_provider()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvidersConfig:
        return cls(
            primary=data.get("primary", DEFAULT_PROVIDER),
            corrective=data.get("corrective"),
            resolver=data.get("resolver"),
            timeout=data.get("timeout", 60.0),
        )


@dataclass
class RetryConfig:
    """Retry budget and backoff for the orchestrator.

    Attributes:
        max_retries: Retries after the first primary attempt.
        backoff_seconds: Base wait after a backend failure; doubles per failure.
        transient_backoff_seconds: Base wait after a rate limit or timeout.
        use_corrective: Make one corrective call once the budget is spent.
    """

    max_retries: int = MAX_RETRIES
    backoff_seconds: float = 1.0
    transient_backoff_seconds: float = 5.0
    use_corrective: bool = True

    def get_max_retries(self) -> int:
        """Return the retry budget, honouring CARTOGRAPHER_MAX_RETRIES.

        Raises:
            ConfigError: If the environment value is not a non-negative integer.
        """
        raw = os.getenv(_ENV_MAX_RETRIES)
        if raw is None:
            return self.max_retries
        try:
            value = int(raw)
        except ValueError as e:
            raise ConfigError(None, f"{_ENV_MAX_RETRIES} must be an integer, got '{raw}'") from e
        if value < 0:
            raise ConfigError(None, f"{_ENV_MAX_RETRIES} must not be negative")
        return value

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        return cls(
            max_retries=int(data.get("max_retries", MAX_RETRIES)),
            backoff_seconds=float(data.get("backoff_seconds", 1.0)),
            transient_backoff_seconds=float(data.get("transient_backoff_seconds", 5.0)),
            use_corrective=bool(data.get("use_corrective", True)),
        )


@dataclass
class LoggingConfig:
    """Logging options; CLI flags take precedence."""

    verbosity: int = 0
    log_to_file: bool = False
    log_dir: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingConfig:
        return cls(
            verbosity=int(data.get("verbosity", 0)),
            log_to_file=bool(data.get("log_to_file", False)),
            log_dir=data.get("log_dir"),
        )


@dataclass
class CartographerConfig:
    """Top-level configuration."""

    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CartographerConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary with optional ``providers``, ``retry`` and
                ``logging`` sections.

        Returns:
            CartographerConfig instance.
        """
        return cls(
            providers=ProvidersConfig.from_dict(dict(data.get("providers") or {})),
            retry=RetryConfig.from_dict(dict(data.get("retry") or {})),
            logging=LoggingConfig.from_dict(dict(data.get("logging") or {})),
        )


def load_config(config_path: Path | None = None) -> CartographerConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the config file. None returns the defaults.

    Returns:
        CartographerConfig instance.

    Raises:
        ConfigError: If the file is missing, empty, or malformed.
    """
    if config_path is None:
        return CartographerConfig()

    if not config_path.exists():
        raise ConfigError(config_path, "File not found")

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ConfigError(config_path, "Empty file")

        return CartographerConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(config_path, str(e)) from e
