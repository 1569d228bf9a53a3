"""Counter sources sampled by memstat: the CPython collector and the OS."""

import gc
import logging
import os
import threading
import time
import tracemalloc
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import psutil

from memstat.errors import PageSizeUnknown, ParseFailure, SourceReadFailure, SourceUnavailable
from memstat.models import GC_FIELDS, POOL_FIELDS, RuntimeCounters

logger = logging.getLogger(__name__)

STATM_PATH = "/proc/self/statm"
# Digits in 2**64; anything longer is not a page count
MAX_PAGE_COUNT_DIGITS = 20

# Counters fed by the gc callback
_TIMING_FIELDS = frozenset({"gc_mark_time", "gc_total_mark_time"})
# Counters that need tracemalloc to be tracing
_TRACED_FIELDS = frozenset(
    {"gc_allocd", "gc_freed", "poolmem_bytes_allocated", "poolmem_live_bytes"}
)
_NEVER_SUPPORTED = frozenset(GC_FIELDS + POOL_FIELDS) - _TIMING_FIELDS - _TRACED_FIELDS


class RuntimeCounterSource(Protocol):
    """Anything that can report the runtime's GC counters in one call."""

    def read(self) -> RuntimeCounters: ...


class CPythonCounterSource:
    """
    GC counters of the running CPython interpreter.

    Collection timings come from a ``gc.callbacks`` hook. CPython collects in a
    single pass with no separate sweep, so the duration of a whole collection
    is reported as mark time. Byte counters come from ``tracemalloc`` and are
    only available while it is tracing. Everything else the interpreter does
    not expose is reported as zero and listed in ``unsupported``.
    """

    def __init__(
        self,
        trace_allocations: bool = False,
        clock: Callable[[], int] = time.perf_counter_ns,
    ) -> None:
        """
        Initialize the CPythonCounterSource.

        Args:
            trace_allocations: Start tracemalloc on ``start()`` if it is not
                already tracing. Tracing has a noticeable allocation overhead.
            clock: Monotonic nanosecond clock used to time collections.
        """
        self._trace_allocations = trace_allocations
        self._clock = clock
        # Re-entrant: a collection can be triggered while read() holds it
        self._lock = threading.RLock()
        self._installed = False
        self._started_tracing = False
        self._gc_start_ns = 0
        self._traced_at_start = 0
        self._traced_at_stop = 0
        self._last_duration = 0
        self._total_duration = 0
        self._last_freed = 0

    @property
    def is_installed(self) -> bool:
        """Check if the gc callback is installed."""
        return self._installed

    def start(self) -> None:
        """Install the gc callback and optionally start allocation tracing."""
        if self._installed:
            return

        if self._trace_allocations and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._started_tracing = True

        with self._lock:
            self._traced_at_stop = _traced_bytes()
        gc.callbacks.append(self._on_gc)
        self._installed = True
        logger.debug("Installed gc callback (tracing=%s)", tracemalloc.is_tracing())

    def close(self) -> None:
        """Remove the gc callback and stop tracing if this source started it."""
        if self._installed:
            try:
                gc.callbacks.remove(self._on_gc)
            except ValueError:
                pass  # Removed by someone else
            self._installed = False

        if self._started_tracing:
            tracemalloc.stop()
            self._started_tracing = False

    def __enter__(self) -> "CPythonCounterSource":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _on_gc(self, phase: str, info: dict[str, Any]) -> None:
        now = self._clock()
        with self._lock:
            if phase == "start":
                self._gc_start_ns = now
                self._traced_at_start = _traced_bytes()
            elif phase == "stop":
                duration = max(0, now - self._gc_start_ns)
                traced = _traced_bytes()
                self._last_duration = duration
                self._total_duration += duration
                self._last_freed = max(0, self._traced_at_start - traced)
                self._traced_at_stop = traced

    def read(self) -> RuntimeCounters:
        """Return the current counters."""
        unsupported = set(_NEVER_SUPPORTED)
        if not self._installed:
            unsupported |= _TIMING_FIELDS
        tracing = tracemalloc.is_tracing()
        if not tracing:
            unsupported |= _TRACED_FIELDS

        with self._lock:
            current, peak = tracemalloc.get_traced_memory() if tracing else (0, 0)
            return RuntimeCounters(
                gc_allocd=max(0, current - self._traced_at_stop) if tracing else 0,
                gc_freed=self._last_freed if tracing else 0,
                gc_mark_time=self._last_duration,
                gc_total_mark_time=self._total_duration,
                poolmem_bytes_allocated=peak,
                poolmem_live_bytes=current,
                unsupported=frozenset(unsupported),
            )


def _traced_bytes() -> int:
    if tracemalloc.is_tracing():
        return tracemalloc.get_traced_memory()[0]
    return 0


def system_page_size() -> int:
    """Return the memory page size in bytes, or -1 if it cannot be determined."""
    try:
        return os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return -1


def parse_statm(text: str) -> int:
    """
    Parse the process size in pages from ``/proc/<pid>/statm`` content.

    Only the first whitespace-delimited field is used.

    Raises:
        ParseFailure: If the first field is missing or not a plain integer.
    """
    parts = text.split(maxsplit=1)
    if not parts:
        raise ParseFailure("counter file is empty", source="statm")

    first = parts[0]
    if not (first.isascii() and first.isdigit()):
        raise ParseFailure(f"expected a page count, got {first[:32]!r}", source="statm")
    if len(first) > MAX_PAGE_COUNT_DIGITS:
        raise ParseFailure(f"page count too long ({len(first)} digits)", source="statm")
    return int(first)


class ResidentMemorySource:
    """
    Process memory size read from the Linux ``statm`` counter file.

    The first field of the file is a page count; it is converted to bytes
    with the system page size.
    """

    def __init__(
        self,
        path: str | os.PathLike[str] = STATM_PATH,
        page_size: Callable[[], int] = system_page_size,
        max_attempts: int = 3,
        supported: bool | None = None,
    ) -> None:
        """
        Initialize the ResidentMemorySource.

        Args:
            path: Counter file to read.
            page_size: Returns the page size in bytes, non-positive if unknown.
            max_attempts: How many times to try reading the file.
            supported: Override platform detection (defaults to ``psutil.LINUX``).
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._path = Path(path)
        self._page_size = page_size
        self._max_attempts = max_attempts
        self._supported = psutil.LINUX if supported is None else supported

    @property
    def path(self) -> Path:
        """Get the counter file path."""
        return self._path

    @property
    def supported(self) -> bool:
        """Check if the counter file convention exists on this platform."""
        return self._supported

    def read(self) -> int:
        """
        Return the process memory size in bytes.

        Raises:
            SourceUnavailable: Not a Linux platform.
            PageSizeUnknown: The page size is not positive.
            SourceReadFailure: The file could not be read.
            ParseFailure: The file content is malformed.
        """
        if not self._supported:
            raise SourceUnavailable("statm is only available on Linux", source="statm")

        page_size = self._page_size()
        if page_size <= 0:
            raise PageSizeUnknown(f"invalid page size {page_size}", source="statm")

        return parse_statm(self._read_text()) * page_size

    def _read_text(self) -> str:
        last_error: OSError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._path.read_text(encoding="ascii")
            except UnicodeDecodeError as e:
                raise ParseFailure(f"{self._path} is not ASCII text: {e}", source="statm") from e
            except OSError as e:
                last_error = e
                logger.debug("Reading %s failed (attempt %d): %s", self._path, attempt, e)

        raise SourceReadFailure(
            f"could not read {self._path} after {self._max_attempts} attempts: {last_error}",
            source="statm",
        ) from last_error
