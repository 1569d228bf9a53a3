"""Sampling engine for memstat."""

import logging
import threading
from collections.abc import Callable
from typing import Any

from memstat.config import validate_positive_float
from memstat.errors import (
    PageSizeUnknown,
    ProviderFailure,
    SamplingError,
    SourceError,
    SourceUnavailable,
)
from memstat.models import MemoryMetrics, RuntimeCounters
from memstat.sources import ResidentMemorySource, RuntimeCounterSource

logger = logging.getLogger(__name__)


class MetricsStore:
    """
    Holder of the most recent MemoryMetrics.

    Snapshots are immutable and replaced as a whole, so ``current()`` is a
    single reference read and ``publish()`` a single reference assignment.
    Readers never block and never see a mix of two samples. Writers are
    serialized by MemorySampler, not here.
    """

    def __init__(self, initial: MemoryMetrics | None = None) -> None:
        self._current = initial if initial is not None else MemoryMetrics()

    def current(self) -> MemoryMetrics:
        """Get the latest published snapshot."""
        return self._current

    def publish(self, snapshot: MemoryMetrics) -> None:
        """Replace the current snapshot."""
        self._current = snapshot


class MemorySampler:
    """
    Refreshes a MetricsStore from the runtime and OS counter sources.

    A sample either publishes a complete new snapshot or, if any source
    failed, raises SamplingError and leaves the previous snapshot in place.
    """

    def __init__(
        self,
        store: MetricsStore,
        runtime: RuntimeCounterSource,
        rss: ResidentMemorySource | None = None,
    ) -> None:
        """
        Initialize the MemorySampler.

        Args:
            store: Store the samples are published to.
            runtime: Source of the GC and pool counters.
            rss: Source of the resident memory size. Defaults to ``statm``.
        """
        self._store = store
        self._runtime = runtime
        self._rss = rss if rss is not None else ResidentMemorySource()
        # Serializes direct sample() calls with the periodic loop
        self._lock = threading.Lock()

    @property
    def store(self) -> MetricsStore:
        """Get the store samples are published to."""
        return self._store

    def sample(self) -> MemoryMetrics:
        """
        Take one sample and publish it.

        The snapshot logged is the one being replaced, so each log line
        records the state left by the previous sample.

        Returns:
            The newly published snapshot.

        Raises:
            SamplingError: If a source failed. Nothing is published.
        """
        with self._lock:
            previous = self._store.current()
            logger.info("Updated Memory Metrics: %s", previous)

            failures: list[SourceError] = []
            unsupported: set[str] = set()

            rss_bytes = previous.program_rss_bytes
            try:
                rss_bytes = self._rss.read()
            except SourceUnavailable:
                if _never_collected(previous, "program_rss_bytes"):
                    unsupported.add("program_rss_bytes")
            except PageSizeUnknown as e:
                logger.warning("Skipping resident memory for this sample: %s", e)
                if _never_collected(previous, "program_rss_bytes"):
                    unsupported.add("program_rss_bytes")
            except SourceError as e:
                failures.append(e)

            counters: RuntimeCounters | None = None
            try:
                counters = self._runtime.read()
            except Exception as e:
                failure = ProviderFailure(
                    f"runtime counters unavailable: {e}", source=type(self._runtime).__name__
                )
                failure.__cause__ = e
                failures.append(failure)

            if failures or counters is None:
                raise SamplingError(failures)

            snapshot = MemoryMetrics.from_counters(
                counters,
                program_rss_bytes=rss_bytes,
                sequence=previous.sequence + 1,
                unsupported=frozenset(unsupported),
            )
            self._store.publish(snapshot)
            return snapshot


def _never_collected(snapshot: MemoryMetrics, name: str) -> bool:
    return snapshot.sequence == 0 or name in snapshot.unsupported


class PeriodicSampler:
    """
    Runs a MemorySampler on a fixed interval in a daemon thread.

    The first sample is taken one interval after ``start()``. Failed samples
    are logged and do not stop the loop; ``stop()`` does.
    """

    def __init__(
        self,
        sampler: MemorySampler,
        interval: float,
        wait: Callable[[float], bool] | None = None,
    ) -> None:
        """
        Initialize the PeriodicSampler.

        Args:
            sampler: Sampler to invoke.
            interval: Seconds between samples. Must be positive.
            wait: Blocks for up to the given seconds and returns True once
                stop was requested. Defaults to the internal stop event.

        Raises:
            ConfigError: If the interval is not a positive number.
        """
        self._sampler = sampler
        self._interval = validate_positive_float(interval, "interval")
        self._stop_event = threading.Event()
        self._wait = wait if wait is not None else self._stop_event.wait
        self._thread: threading.Thread | None = None
        self._samples_taken = 0
        self._failures = 0

    @property
    def interval(self) -> float:
        """Get the sampling interval in seconds."""
        return self._interval

    @property
    def samples_taken(self) -> int:
        """Get the number of successful samples."""
        return self._samples_taken

    @property
    def failures(self) -> int:
        """Get the number of failed samples."""
        return self._failures

    @property
    def is_running(self) -> bool:
        """Check if the sampling thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="MemorySampler",
        )
        self._thread.start()
        logger.debug("Started memory sampling every %.3fs", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def __enter__(self) -> "PeriodicSampler":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def _run(self) -> None:
        """Main sampling loop running in the background thread."""
        while not self._wait(self._interval):
            if self._stop_event.is_set():
                break
            try:
                self._sampler.sample()
            except SamplingError as e:
                self._failures += 1
                logger.warning("Memory sample failed: %s", e)
            except Exception:
                self._failures += 1
                logger.exception("Unexpected error while sampling memory metrics")
            else:
                self._samples_taken += 1


def start_periodic_sampling(
    sampler: MemorySampler,
    interval: float,
    wait: Callable[[float], bool] | None = None,
) -> PeriodicSampler:
    """Start sampling every ``interval`` seconds and return the running handle."""
    periodic = PeriodicSampler(sampler, interval, wait=wait)
    periodic.start()
    return periodic
