"""Tests for centralized logging configuration."""

import json
import logging
from decimal import Decimal
from logging.handlers import RotatingFileHandler

import pytest

from positionledger.events import EventBus, PriceRefreshFailedEvent, TransactionAppliedEvent
from positionledger.system import LoggerFactory, LoggingConfig
from positionledger.system.log_system import _EventFormatters


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before and after each test."""
    LoggerFactory.reset()
    yield
    LoggerFactory.reset()


def test_default_configuration():
    """Test logger factory with default configuration."""
    logger = LoggerFactory.get_logger()

    assert LoggerFactory.is_configured()
    assert hasattr(logger, "info")
    assert hasattr(logger, "warning")

    config = LoggerFactory.get_config()
    assert config.level == "INFO"
    assert config.format == "console"
    assert config.enable_file is False
    assert config.file_level == "WARNING"
    assert config.enable_event_display is True


def test_explicit_configuration():
    """Test configuring logger factory explicitly."""
    LoggerFactory.configure(LoggingConfig(level="DEBUG", format="json"))

    assert LoggerFactory.is_configured()
    assert LoggerFactory.get_config().level == "DEBUG"
    assert LoggerFactory.get_config().format == "json"


def test_auto_configure_on_first_use():
    """Test that logger auto-configures with defaults on first use."""
    assert not LoggerFactory.is_configured()

    LoggerFactory.get_logger("positionledger.test")

    assert LoggerFactory.is_configured()


def test_file_logging_writes_json(tmp_path):
    """Test file output is one JSON object per line."""
    log_file = tmp_path / "ledger.log"
    LoggerFactory.configure(
        LoggingConfig(enable_file=True, file_path=log_file, file_level="DEBUG", file_rotation=False)
    )

    LoggerFactory.get_logger().info("ledger_service.portfolio_created", portfolio_id="pf_001")

    entry = json.loads(log_file.read_text().strip())
    assert entry["event"] == "ledger_service.portfolio_created"
    assert entry["portfolio_id"] == "pf_001"
    assert "log_timestamp" in entry


def test_file_logging_default_path(tmp_path, monkeypatch):
    """Test enabling file logging without a path uses logs/positionledger.log."""
    monkeypatch.chdir(tmp_path)

    LoggerFactory.configure(LoggingConfig(enable_file=True))

    assert str(LoggerFactory.get_config().file_path) == "logs/positionledger.log"
    assert (tmp_path / "logs").is_dir()


def test_file_logging_creates_directory(tmp_path):
    """Test that file logging creates parent directories."""
    log_file = tmp_path / "logs" / "subdir" / "ledger.log"
    LoggerFactory.configure(LoggingConfig(enable_file=True, file_path=log_file, file_rotation=False))

    LoggerFactory.get_logger().warning("in_memory_store.version_conflict")

    assert log_file.exists()


def test_rotating_file_handler(tmp_path):
    """Test rotating file handler configuration."""
    log_file = tmp_path / "rotating.log"
    LoggerFactory.configure(
        LoggingConfig(enable_file=True, file_path=log_file, max_file_size_mb=1, backup_count=3)
    )

    handlers = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    handler = next(h for h in handlers if str(log_file) in h.baseFilename)
    assert handler.maxBytes == 1024 * 1024
    assert handler.backupCount == 3


def test_file_level_independent_from_console_level(tmp_path):
    """Test the file can capture more than the console shows."""
    log_file = tmp_path / "debug.log"
    LoggerFactory.configure(
        LoggingConfig(level="WARNING", enable_file=True, file_path=log_file, file_level="DEBUG", file_rotation=False)
    )
    logger = LoggerFactory.get_logger()

    logger.debug("holding_ledger.recomputed")
    logger.warning("ledger_service.price_refresh_failed")

    events = [json.loads(line)["event"] for line in log_file.read_text().splitlines() if line.strip()]
    assert "holding_ledger.recomputed" in events
    assert "ledger_service.price_refresh_failed" in events


def test_reset_clears_configuration():
    """Test that reset clears configuration."""
    LoggerFactory.configure(LoggingConfig(level="DEBUG"))

    LoggerFactory.reset()

    assert not LoggerFactory.is_configured()
    assert LoggerFactory.get_config().level == "INFO"


class TestEventDisplay:
    """Test colored event rendering on the console."""

    def test_transaction_event_rendered(self, capsys):
        """Test a displayed transaction event is formatted as one line."""
        LoggerFactory.configure(LoggingConfig())
        bus = EventBus(display_events=["transaction_applied"])

        bus.publish(
            TransactionAppliedEvent(
                portfolio_id="pf_001",
                holding_id="h1",
                transaction_id="t1",
                transaction_type="buy",
                symbol="AAPL",
                quantity=Decimal("10"),
                price=Decimal("150"),
            )
        )

        out = capsys.readouterr().out
        assert "Transaction" in out
        assert "AAPL" in out
        assert "BUY" in out
        assert "event.display" not in out

    def test_event_display_disabled(self, capsys):
        """Test display events are dropped when disabled in the config."""
        LoggerFactory.configure(LoggingConfig(enable_event_display=False))
        bus = EventBus(display_events=["*"])

        bus.publish(PriceRefreshFailedEvent(symbol="ZZZ", reason="unavailable"))

        assert "ZZZ" not in capsys.readouterr().out

    def test_format_event_counts_per_type(self):
        """Test each event type has its own counter."""
        counters: dict[str, int] = {}

        _EventFormatters.format_event({"event_type": "status_changed", "entity": "holding"}, counters)
        _EventFormatters.format_event({"event_type": "status_changed", "entity": "holding"}, counters)
        line = _EventFormatters.format_event({"event_type": "price_refresh_failed", "symbol": "ZZZ"}, counters)

        assert counters == {"status_changed": 2, "price_refresh_failed": 1}
        assert "ZZZ" in line

    def test_unknown_event_uses_generic_format(self):
        """Test unknown types fall back to key=value rendering."""
        line = _EventFormatters.format_event({"event_type": "custom", "foo": "bar"}, {})

        assert "foo=bar" in line

    def test_portfolio_format_shows_totals(self):
        """Test the portfolio line includes value and holdings count."""
        line = _EventFormatters.format_portfolio(
            {"portfolio_id": "pf_001", "total_value": "2100", "total_cost": "2000", "total_gain_loss": "100", "active_holdings": 2},
            1,
        )

        assert "$2,100.00" in line
        assert "Holdings: 2" in line
