"""
Configuration loading and validation for memstat.

Settings live in the ``[memstat]`` table of a TOML file:

    [memstat]
    interval_seconds = 10.0
    statm_path = "/proc/self/statm"
    trace_allocations = false
    log_level = "INFO"
"""

import logging
import sys
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from memstat.errors import ConfigError

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
MAX_INTERVAL_SECONDS = 3600.0
LOG_FORMAT = "%(asctime)s [%(levelname)-5.5s] %(name)s:%(filename)s:%(lineno)d\t %(message)s"


def validate_positive_float(
    value: Any,
    field_name: str,
    max_value: float | None = None,
) -> float:
    """
    Validate that a value is a positive number.

    Args:
        value: Raw value to validate
        field_name: Name used in error messages
        max_value: Optional inclusive upper bound

    Returns:
        The value as a float

    Raises:
        ConfigError: If the value is not a number, not positive or too large
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{field_name} must be a number, got {value!r}", field_name, value)
    if not value > 0:
        raise ConfigError(f"{field_name} must be positive, got {value!r}", field_name, value)
    if max_value is not None and value > max_value:
        raise ConfigError(
            f"{field_name} must be at most {max_value}, got {value!r}", field_name, value
        )
    return float(value)


def validate_choice(value: Any, choices: tuple[str, ...], field_name: str) -> str:
    """Validate that a value is one of ``choices`` (case-insensitive)."""
    if not isinstance(value, str) or value.upper() not in choices:
        raise ConfigError(
            f"{field_name} must be one of {', '.join(choices)}, got {value!r}", field_name, value
        )
    return value.upper()


@dataclass(slots=True, frozen=True)
class MemstatConfig:
    """Validated sampler settings."""

    interval_seconds: float = 10.0
    statm_path: str = "/proc/self/statm"
    trace_allocations: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        validate_positive_float(
            self.interval_seconds, "memstat.interval_seconds", MAX_INTERVAL_SECONDS
        )
        validate_choice(self.log_level, LOG_LEVELS, "memstat.log_level")
        if not isinstance(self.statm_path, str) or not self.statm_path:
            raise ConfigError(
                "memstat.statm_path must be a non-empty string", "memstat.statm_path", self.statm_path
            )
        if not isinstance(self.trace_allocations, bool):
            raise ConfigError(
                "memstat.trace_allocations must be a boolean",
                "memstat.trace_allocations",
                self.trace_allocations,
            )

    def with_overrides(self, **overrides: Any) -> "MemstatConfig":
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def config_from_dict(data: dict[str, Any]) -> MemstatConfig:
    """
    Build a MemstatConfig from the contents of a ``[memstat]`` table.

    Raises:
        ConfigError: On unknown keys or invalid values
    """
    known = {f.name for f in fields(MemstatConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown memstat settings: {', '.join(unknown)}", unknown[0])
    config = MemstatConfig(**data)
    return replace(config, log_level=config.log_level.upper())


def load_config(path: Path | None = None) -> MemstatConfig:
    """
    Load the configuration from a TOML file.

    Args:
        path: File to read. ``None`` returns the defaults.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the file is malformed or holds invalid values
    """
    if path is None:
        return MemstatConfig()

    logger.info("Loading configuration from: %s", path)
    if not path.exists():
        raise FileNotFoundError(f"configuration file not found: {path}")

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"could not parse {path}: {e}") from e

    table = data.get("memstat", {})
    if not isinstance(table, dict):
        raise ConfigError("[memstat] must be a table", "memstat", table)
    return config_from_dict(table)


def configure_logging(level: str = "INFO", handler: logging.Handler | None = None) -> None:
    """
    Configure root logging for the memstat entry point.

    Args:
        level: Log level name
        handler: Handler to log to. Defaults to a stderr stream handler.
    """
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logging.basicConfig(level=validate_choice(level, LOG_LEVELS, "log_level"), handlers=[handler])
