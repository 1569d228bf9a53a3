"""
Exceptions raised while collecting memory metrics.

Source errors describe what went wrong with one counter source during a
sample. Some of them are expected on certain platforms and only mean that a
field is left alone (``reportable = False``); the others make the whole
sample fail with a ``SamplingError``.
"""

from typing import Any


class SourceError(Exception):
    """Base class for failures of a single counter source."""

    reportable = True

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.source = source


class SourceUnavailable(SourceError):
    """The counter source does not exist on this platform."""

    reportable = False


class PageSizeUnknown(SourceError):
    """The memory page size could not be determined."""

    reportable = False


class ParseFailure(SourceError):
    """The counter file did not start with a non-negative integer."""


class SourceReadFailure(SourceError):
    """The counter file could not be read after all retries."""


class ProviderFailure(SourceError):
    """The runtime counter provider could not be queried."""


class SamplingError(Exception):
    """
    Raised by a sample when one or more sources failed.

    Attributes:
        failures: Every reportable failure observed during the sample.
    """

    def __init__(self, failures: list[SourceError] | tuple[SourceError, ...]) -> None:
        self.failures = tuple(failures)
        details = "; ".join(f"{type(f).__name__}: {f}" for f in self.failures)
        super().__init__(f"sample failed ({len(self.failures)} error(s)): {details}")


class ConfigError(ValueError):
    """Exception raised when a configuration value is invalid."""

    def __init__(self, message: str, field_name: str | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.field_name = field_name
        self.value = value
