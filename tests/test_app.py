"""Tests for the memstat application."""

import pytest
from textual.widgets import DataTable

from memstat.app import CounterTable, MemstatApp, build_parser, format_counter, main
from memstat.config import MemstatConfig
from memstat.models import COUNTER_FIELDS, MemoryMetrics


def test_format_counter_bytes():
    """Test byte counters use a size unit."""
    assert format_counter("program_rss_bytes", 5242880).endswith("M")


def test_format_counter_time():
    """Test nanosecond counters are shown in milliseconds."""
    assert format_counter("gc_total_mark_time", 2_500_000) == "2.500ms"


def test_format_counter_count():
    """Test plain counters are shown as integers."""
    assert format_counter("gc_malloc", 42) == "42"


def test_parser_defaults_to_none():
    """Test unset options do not override the configuration."""
    args = build_parser().parse_args([])
    assert args.config is None
    assert args.interval is None
    assert args.trace_allocations is None
    assert args.log_level is None


def test_main_rejects_invalid_interval(capsys):
    """Test a non-positive interval is rejected before the app starts."""
    with pytest.raises(SystemExit) as exc_info:
        main(["--interval", "0"])
    assert exc_info.value.code == 2
    assert "interval_seconds" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_app_creation():
    """Test MemstatApp can be instantiated."""
    app = MemstatApp()
    assert app.title == "memstat"
    assert app.sub_title == "Process Memory Metrics"
    assert app.store.current() == MemoryMetrics()


@pytest.mark.asyncio
async def test_app_compose():
    """Test MemstatApp composes correctly."""
    app = MemstatApp()
    async with app.run_test() as pilot:
        assert pilot.app.query_one("#summary-stats") is not None
        table = pilot.app.query_one("#counter-table", DataTable)
        assert table.row_count == len(COUNTER_FIELDS)
        app.stop_sampling()


@pytest.mark.asyncio
async def test_app_quit_binding():
    """Test that 'q' binding stops sampling and quits."""
    app = MemstatApp()
    async with app.run_test() as pilot:
        await pilot.press("q")
        assert not app._periodic.is_running
        assert not app._source.is_installed


@pytest.mark.asyncio
async def test_app_sample_binding():
    """Test that 's' takes a sample immediately."""
    app = MemstatApp(MemstatConfig(interval_seconds=3600.0))
    async with app.run_test() as pilot:
        await pilot.press("s")
        await pilot.pause()
        assert app.store.current().sequence == 1
        app.stop_sampling()


@pytest.mark.asyncio
async def test_counter_table_update():
    """Test CounterTable shows snapshot values and unsupported status."""
    app = MemstatApp(MemstatConfig(interval_seconds=3600.0))
    async with app.run_test() as pilot:
        counter_table = pilot.app.query_one(CounterTable)
        snapshot = MemoryMetrics(
            gc_malloc=12,
            sequence=1,
            unsupported=frozenset({"gc_bigalloc"}),
        )

        counter_table.update_counters(snapshot)
        await pilot.pause()

        table = pilot.app.query_one("#counter-table", DataTable)
        assert table.get_cell("gc_malloc", "value") == "12"
        assert table.get_cell("gc_bigalloc", "status") == "unsupported"
        assert table.get_cell("gc_malloc", "status") == ""
        app.stop_sampling()
