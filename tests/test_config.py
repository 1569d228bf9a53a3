"""Tests for configuration loading and validation."""

import logging

import pytest

from memstat.config import (
    MemstatConfig,
    config_from_dict,
    configure_logging,
    load_config,
    validate_choice,
    validate_positive_float,
)
from memstat.errors import ConfigError


class TestValidators:
    """Tests for the validation helpers."""

    @pytest.mark.parametrize("value", [0.1, 1, 3600])
    def test_positive_float_accepts(self, value):
        """Test positive numbers pass and come back as floats."""
        result = validate_positive_float(value, "interval", max_value=3600.0)
        assert result == float(value)
        assert isinstance(result, float)

    @pytest.mark.parametrize("value", [0, -1, -0.001, float("nan"), "1", None, True])
    def test_positive_float_rejects(self, value):
        """Test non-positive and non-numeric values are rejected."""
        with pytest.raises(ConfigError) as exc_info:
            validate_positive_float(value, "interval")
        assert exc_info.value.field_name == "interval"

    def test_positive_float_upper_bound(self):
        """Test values above the maximum are rejected."""
        with pytest.raises(ConfigError, match="at most"):
            validate_positive_float(7200, "interval", max_value=3600.0)

    def test_choice(self):
        """Test choices are matched case-insensitively."""
        assert validate_choice("debug", ("DEBUG", "INFO"), "level") == "DEBUG"
        with pytest.raises(ConfigError):
            validate_choice("verbose", ("DEBUG", "INFO"), "level")


class TestMemstatConfig:
    """Tests for MemstatConfig."""

    def test_defaults(self):
        """Test the default configuration."""
        config = MemstatConfig()
        assert config.interval_seconds == 10.0
        assert config.statm_path == "/proc/self/statm"
        assert config.trace_allocations is False
        assert config.log_level == "INFO"

    def test_rejects_non_positive_interval(self):
        """Test the interval is validated at construction."""
        with pytest.raises(ConfigError) as exc_info:
            MemstatConfig(interval_seconds=0)
        assert exc_info.value.field_name == "memstat.interval_seconds"

    def test_rejects_bad_types(self):
        """Test invalid field types are rejected."""
        with pytest.raises(ConfigError):
            MemstatConfig(trace_allocations="yes")
        with pytest.raises(ConfigError):
            MemstatConfig(statm_path="")
        with pytest.raises(ConfigError):
            MemstatConfig(log_level="LOUD")

    def test_with_overrides_skips_none(self):
        """Test None overrides keep the existing values."""
        config = MemstatConfig(interval_seconds=5.0)

        updated = config.with_overrides(interval_seconds=None, trace_allocations=True)

        assert updated.interval_seconds == 5.0
        assert updated.trace_allocations is True

    def test_with_overrides_validates(self):
        """Test overrides go through validation."""
        with pytest.raises(ConfigError):
            MemstatConfig().with_overrides(interval_seconds=-2.0)


class TestLoadConfig:
    """Tests for load_config and config_from_dict."""

    def test_no_path_returns_defaults(self):
        """Test load_config without a path returns the defaults."""
        assert load_config(None) == MemstatConfig()

    def test_load_file(self, tmp_path):
        """Test values are read from the [memstat] table."""
        path = tmp_path / "memstat.toml"
        path.write_text(
            "[memstat]\n"
            "interval_seconds = 0.5\n"
            'statm_path = "/tmp/statm"\n'
            "trace_allocations = true\n"
            'log_level = "debug"\n'
        )

        config = load_config(path)

        assert config.interval_seconds == 0.5
        assert config.statm_path == "/tmp/statm"
        assert config.trace_allocations is True
        assert config.log_level == "DEBUG"

    def test_missing_table_uses_defaults(self, tmp_path):
        """Test a file without [memstat] yields the defaults."""
        path = tmp_path / "other.toml"
        path.write_text("[something]\nvalue = 1\n")

        assert load_config(path) == MemstatConfig()

    def test_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.toml")

    def test_malformed_file(self, tmp_path):
        """Test invalid TOML is reported as a ConfigError."""
        path = tmp_path / "broken.toml"
        path.write_text("[memstat\ninterval_seconds = ")

        with pytest.raises(ConfigError, match="could not parse"):
            load_config(path)

    def test_invalid_interval_in_file(self, tmp_path):
        """Test a non-positive interval in the file is rejected."""
        path = tmp_path / "memstat.toml"
        path.write_text("[memstat]\ninterval_seconds = 0\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_unknown_keys(self):
        """Test unknown settings are rejected."""
        with pytest.raises(ConfigError, match="unknown memstat settings: poll_rate"):
            config_from_dict({"poll_rate": 2.0})


def test_configure_logging_sets_level():
    """Test configure_logging installs the handler at the requested level."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = []
    try:
        handler = logging.NullHandler()
        configure_logging("warning", handler=handler)

        assert root.level == logging.WARNING
        assert handler in root.handlers
        assert handler.formatter is not None
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
