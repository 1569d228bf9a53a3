"""memstat - Live memory metrics viewer built on Textual."""

import argparse
import logging
from pathlib import Path

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Static

from memstat.config import LOG_LEVELS, MemstatConfig, configure_logging, load_config
from memstat.errors import ConfigError, SamplingError
from memstat.models import COUNTER_FIELDS, MemoryMetrics, format_bytes
from memstat.monitor import MemorySampler, MetricsStore, PeriodicSampler
from memstat.sources import CPythonCounterSource, ResidentMemorySource

logger = logging.getLogger(__name__)

# Counters rendered as sizes; the rest are counts or nanoseconds
BYTE_FIELDS = frozenset(
    {
        "gc_allocd",
        "gc_deferred_alloc",
        "gc_freed",
        "gc_total_allocd",
        "poolmem_bytes_allocated",
        "poolmem_live_bytes",
        "bytes_wasted_due_to_pool_fragmentation",
        "program_rss_bytes",
    }
)


def format_counter(name: str, value: int) -> str:
    """Format a counter value for display."""
    if name in BYTE_FIELDS:
        return format_bytes(value).strip()
    if name.endswith("_time"):
        return f"{value / 1_000_000:.3f}ms"
    return str(value)


class SummaryStats(Static):
    """Header widget showing RSS and pool fragmentation."""

    DEFAULT_CSS = """
    SummaryStats {
        height: auto;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize SummaryStats."""
        super().__init__(*args, **kwargs)
        self._snapshot = MemoryMetrics()

    def on_mount(self) -> None:
        """Render the initial (empty) summary."""
        self.update(self._render_summary())

    def update_stats(self, snapshot: MemoryMetrics) -> None:
        """Update the summary from a snapshot."""
        self._snapshot = snapshot
        self.update(self._render_summary())

    def _render_summary(self) -> str:
        snapshot = self._snapshot
        if snapshot.sequence == 0:
            return "Waiting for the first sample..."
        return (
            f"RSS: {format_bytes(snapshot.program_rss_bytes).strip()}  "
            f"Pool waste: {format_bytes(snapshot.bytes_wasted_due_to_pool_fragmentation).strip()}  "
            f"Samples: {snapshot.sequence}"
        )


class CounterTable(Container):
    """Container for the counter data table."""

    DEFAULT_CSS = """
    CounterTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the counter table."""
        yield DataTable(id="counter-table")

    def on_mount(self) -> None:
        """Add one row per counter when mounted."""
        table = self.query_one("#counter-table", DataTable)
        table.cursor_type = "row"
        table.add_column("Counter", key="name", width=44)
        table.add_column("Value", key="value", width=16)
        table.add_column("Status", key="status", width=12)
        for name in COUNTER_FIELDS:
            table.add_row(name, "0", "", key=name)

    def update_counters(self, snapshot: MemoryMetrics) -> None:
        """Update every row using update_cell."""
        table = self.query_one("#counter-table", DataTable)
        for name in COUNTER_FIELDS:
            status = "unsupported" if name in snapshot.unsupported else ""
            table.update_cell(name, "value", format_counter(name, getattr(snapshot, name)))
            table.update_cell(name, "status", status)


class MemstatApp(App):
    """Main memstat application."""

    TITLE = "memstat"
    SUB_TITLE = "Process Memory Metrics"

    CSS = """
    Screen {
        layout: vertical;
    }

    #summary-stats {
        dock: top;
        height: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("s", "sample", "Sample now"),
    ]

    def __init__(self, config: MemstatConfig | None = None) -> None:
        """Initialize the MemstatApp."""
        super().__init__()
        self._config = config if config is not None else MemstatConfig()
        self._source = CPythonCounterSource(trace_allocations=self._config.trace_allocations)
        self._store = MetricsStore()
        self._sampler = MemorySampler(
            self._store,
            self._source,
            ResidentMemorySource(self._config.statm_path),
        )
        self._periodic = PeriodicSampler(self._sampler, self._config.interval_seconds)
        self._shown_sequence = -1

    @property
    def store(self) -> MetricsStore:
        """Get the store the viewer reads from."""
        return self._store

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield SummaryStats(id="summary-stats")
        yield CounterTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start sampling when the app is mounted."""
        self._source.start()
        self._periodic.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Refresh the UI when a new snapshot has been published."""
        snapshot = self._store.current()
        if snapshot.sequence == self._shown_sequence:
            return
        self._shown_sequence = snapshot.sequence
        self.query_one("#summary-stats", SummaryStats).update_stats(snapshot)
        self.query_one(CounterTable).update_counters(snapshot)

    def action_sample(self) -> None:
        """Take a sample immediately."""
        try:
            self._sampler.sample()
        except SamplingError as e:
            logger.warning("Manual sample failed: %s", e)
            self.notify(str(e), severity="error")
            return
        self._check_for_updates()

    def stop_sampling(self) -> None:
        """Stop the background sampler and remove the gc hook."""
        self._periodic.stop()
        self._source.close()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self.stop_sampling()
        self.exit()


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser."""
    parser = argparse.ArgumentParser(prog="memstat", description="Live process memory metrics")
    parser.add_argument("--config", type=Path, help="TOML file with a [memstat] table")
    parser.add_argument("--interval", type=float, help="seconds between samples")
    parser.add_argument(
        "--trace-allocations",
        action="store_true",
        default=None,
        help="enable tracemalloc to collect byte counters",
    )
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="log level")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for memstat application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config).with_overrides(
            interval_seconds=args.interval,
            trace_allocations=args.trace_allocations,
            log_level=args.log_level,
        )
    except (ConfigError, FileNotFoundError) as e:
        parser.error(str(e))

    configure_logging(config.log_level, handler=TextualHandler())
    app = MemstatApp(config)
    try:
        app.run()
    finally:
        app.stop_sampling()


if __name__ == "__main__":
    main()
