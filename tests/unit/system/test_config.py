"""
Unit tests for system/config.py.

Covers:
- LedgerSettings: defaults, Decimal coercion, quantums
- MarketDataSettings / LoggingSettings: defaults and conversion
- SystemConfig: load(), merge over defaults, env substitution
- Singleton functions: get_system_config(), reload_system_config()
"""

import logging
from decimal import Decimal
from pathlib import Path

import pytest

from positionledger.system import config as config_module
from positionledger.system.config import (
    CONFIG_ENV_VAR,
    LedgerSettings,
    LoggingSettings,
    MarketDataSettings,
    SystemConfig,
    _deep_merge,
    _substitute_env_vars,
    get_system_config,
    reload_system_config,
)
from positionledger.system.log_system import LoggerFactory, LoggingConfig


@pytest.fixture
def reset_singleton(monkeypatch):
    monkeypatch.setattr(config_module, "_system_config", None)
    LoggerFactory.reset()
    yield
    LoggerFactory.reset()


@pytest.fixture
def config_file(tmp_path) -> Path:
    path = tmp_path / "ledger.yaml"
    path.write_text(
        """
ledger:
  concentration_limit_pct: 25
  max_holdings_per_portfolio: 10
market_data:
  refresh_workers: 2
logging:
  level: DEBUG
""",
        encoding="utf-8",
    )
    return path


class TestLedgerSettings:
    """Test LedgerSettings dataclass."""

    def test_defaults(self):
        """Test LedgerSettings uses the documented defaults."""
        settings = LedgerSettings()

        assert settings.quantity_decimals == 6
        assert settings.price_decimals == 4
        assert settings.percent_decimals == 4
        assert settings.concentration_limit_pct == Decimal("20")
        assert settings.diversified_max_sector_pct == Decimal("40")
        assert settings.day_change_alert_pct == Decimal("5")
        assert settings.max_holdings_per_portfolio == 100
        assert settings.scale_targets_on_split is True
        assert settings.max_commit_retries == 3

    def test_thresholds_coerced_to_decimal(self):
        """Test YAML numbers and strings become Decimal."""
        settings = LedgerSettings(concentration_limit_pct=12.5, day_change_alert_pct="3")  # type: ignore[arg-type]

        assert settings.concentration_limit_pct == Decimal("12.5")
        assert settings.day_change_alert_pct == Decimal("3")

    def test_quantums(self):
        """Test quantums follow the configured decimals."""
        settings = LedgerSettings(price_decimals=2)

        assert settings.quantity_quantum == Decimal("0.000001")
        assert settings.price_quantum == Decimal("0.01")
        assert settings.percent_quantum == Decimal("0.0001")


class TestSections:
    """Test the market data and logging sections."""

    def test_market_data_defaults(self):
        """Test refresh fan-out defaults."""
        settings = MarketDataSettings()

        assert settings.refresh_workers == 8
        assert settings.fetch_timeout_seconds == 5.0

    def test_logging_settings_to_logger_config(self):
        """Test conversion to the log system's LoggingConfig."""
        logger_config = LoggingSettings(level="DEBUG", enable_file=True).to_logger_config()

        assert isinstance(logger_config, LoggingConfig)
        assert logger_config.level == "DEBUG"
        assert logger_config.enable_file is True
        assert logger_config.file_path == Path("logs/positionledger.log")


class TestSystemConfigLoad:
    """Test SystemConfig.load()."""

    def test_load_merges_over_defaults(self, config_file):
        """Test values in the file override defaults and the rest are kept."""
        config = SystemConfig.load(config_file)

        assert config.ledger.concentration_limit_pct == Decimal("25")
        assert config.ledger.max_holdings_per_portfolio == 10
        assert config.ledger.price_decimals == 4
        assert config.market_data.refresh_workers == 2
        assert config.market_data.fetch_timeout_seconds == 5.0
        assert config.logging.level == "DEBUG"

    def test_missing_file_yields_defaults(self, tmp_path):
        """Test a missing file is not an error."""
        config = SystemConfig.load(tmp_path / "missing.yaml")

        assert config == SystemConfig()

    def test_empty_file_yields_defaults(self, tmp_path):
        """Test an empty YAML document is treated as no overrides."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert SystemConfig.load(path) == SystemConfig()

    def test_env_var_selects_file(self, config_file, monkeypatch):
        """Test POSITIONLEDGER_CONFIG is used when no path is given."""
        monkeypatch.setenv(CONFIG_ENV_VAR, str(config_file))

        assert SystemConfig.load().market_data.refresh_workers == 2

    def test_env_placeholders_substituted(self, tmp_path, monkeypatch):
        """Test ${VAR} placeholders are resolved from the environment."""
        monkeypatch.setenv("LEDGER_LOG_DIR", "/var/log/ledger")
        path = tmp_path / "env.yaml"
        path.write_text("logging:\n  file_path: ${LEDGER_LOG_DIR}/ledger.log\n", encoding="utf-8")

        assert SystemConfig.load(path).logging.file_path == "/var/log/ledger/ledger.log"

    def test_unknown_key_rejected(self, tmp_path):
        """Test unknown keys in a section raise TypeError."""
        path = tmp_path / "bad.yaml"
        path.write_text("ledger:\n  no_such_setting: 1\n", encoding="utf-8")

        with pytest.raises(TypeError):
            SystemConfig.load(path)


class TestHelpers:
    """Test merge and substitution helpers."""

    def test_deep_merge_nested(self):
        """Test nested dicts are merged and override wins."""
        base = {"a": {"x": 1, "y": 2}, "b": 1}

        merged = _deep_merge(base, {"a": {"y": 3}, "c": 4})

        assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}
        assert base == {"a": {"x": 1, "y": 2}, "b": 1}

    def test_substitute_env_vars_recursive(self, monkeypatch):
        """Test substitution walks dicts and lists and keeps unknown vars."""
        monkeypatch.setenv("KNOWN", "yes")
        monkeypatch.delenv("UNKNOWN_LEDGER_VAR", raising=False)

        result = _substitute_env_vars({"a": ["${KNOWN}", "${UNKNOWN_LEDGER_VAR}"], "b": 5})

        assert result == {"a": ["yes", "${UNKNOWN_LEDGER_VAR}"], "b": 5}


class TestSingleton:
    """Test get_system_config() and reload_system_config()."""

    def test_get_returns_same_instance(self, reset_singleton, tmp_path, monkeypatch):
        """Test the singleton is loaded once."""
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "missing.yaml"))

        assert get_system_config() is get_system_config()

    def test_explicit_path_reloads(self, reset_singleton, config_file):
        """Test passing a path replaces the singleton."""
        first = get_system_config(config_file)

        assert first.market_data.refresh_workers == 2
        assert get_system_config() is first

    def test_reload_replaces_instance(self, reset_singleton, config_file, tmp_path):
        """Test reload_system_config() builds a new instance."""
        first = get_system_config(config_file)

        second = reload_system_config(tmp_path / "missing.yaml")

        assert second is not first
        assert get_system_config() is second
        assert second.market_data.refresh_workers == 8

    def test_load_applies_logging_section(self, reset_singleton, config_file):
        """Test loading the config configures LoggerFactory from its logging section."""
        get_system_config(config_file)

        assert LoggerFactory.is_configured()
        assert logging.getLogger().level == logging.DEBUG
