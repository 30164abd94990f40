"""
System configuration for the ledger engine.

One configuration for the whole engine, loaded from YAML and merged over
built-in defaults:

- LedgerSettings: precision, concentration and diversification thresholds
- MarketDataSettings: bulk price refresh fan-out and timeouts
- LoggingSettings: logging configuration (converted to log_system.LoggingConfig)

Values may reference environment variables with ``${VAR}`` placeholders.
"""

import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from positionledger.system.log_system import LoggerFactory
from positionledger.system.log_system import LoggingConfig as LoggerConfig

DEFAULT_CONFIG_PATH = Path("config/positionledger.yaml")
CONFIG_ENV_VAR = "POSITIONLEDGER_CONFIG"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


@dataclass
class LedgerSettings:
    """Precision and threshold settings for the valuation engine."""

    quantity_decimals: int = 6
    price_decimals: int = 4
    percent_decimals: int = 4
    concentration_limit_pct: Decimal = Decimal("20")
    high_concentration_limit_pct: Decimal = Decimal("30")
    diversified_max_sector_pct: Decimal = Decimal("40")
    day_change_alert_pct: Decimal = Decimal("5")
    max_holdings_per_portfolio: int = 100
    scale_targets_on_split: bool = True
    max_commit_retries: int = 3

    def __post_init__(self) -> None:
        for name in (
            "concentration_limit_pct",
            "high_concentration_limit_pct",
            "diversified_max_sector_pct",
            "day_change_alert_pct",
        ):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                setattr(self, name, Decimal(str(value)))

    @property
    def quantity_quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.quantity_decimals)

    @property
    def price_quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.price_decimals)

    @property
    def percent_quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.percent_decimals)


@dataclass
class MarketDataSettings:
    """Bulk price refresh settings."""

    refresh_workers: int = 8
    fetch_timeout_seconds: float = 5.0


@dataclass
class LoggingSettings:
    """Logging section of the system configuration."""

    level: str = "INFO"
    format: str = "console"
    timestamp_format: str = "compact"
    enable_file: bool = False
    file_path: str = "logs/positionledger.log"
    file_level: str = "WARNING"
    file_rotation: bool = True
    max_file_size_mb: int = 10
    backup_count: int = 3
    enable_event_display: bool = True

    def to_logger_config(self) -> LoggerConfig:
        """Convert to the log system's LoggingConfig."""
        return LoggerConfig(
            level=self.level,  # type: ignore[arg-type]
            format=self.format,  # type: ignore[arg-type]
            timestamp_format=self.timestamp_format,  # type: ignore[arg-type]
            enable_file=self.enable_file,
            file_path=Path(self.file_path),
            file_level=self.file_level,  # type: ignore[arg-type]
            file_rotation=self.file_rotation,
            max_file_size_mb=self.max_file_size_mb,
            backup_count=self.backup_count,
            enable_event_display=self.enable_event_display,
        )


@dataclass
class SystemConfig:
    """Container for all engine configuration sections."""

    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    market_data: MarketDataSettings = field(default_factory=MarketDataSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "SystemConfig":
        """
        Load configuration from YAML, merged over built-in defaults.

        Resolution order for the file: explicit ``path``, then the
        ``POSITIONLEDGER_CONFIG`` environment variable, then
        ``config/positionledger.yaml``. A missing file yields the defaults.

        Args:
            path: Optional path to a YAML configuration file

        Returns:
            Loaded SystemConfig
        """
        if path is None:
            path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
        config_path = Path(path)

        data: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

        merged = _deep_merge(cls._defaults_dict(), _substitute_env_vars(data))
        return cls._from_dict(merged)

    @staticmethod
    def _defaults_dict() -> dict[str, Any]:
        defaults = SystemConfig()
        return {
            "ledger": dict(vars(defaults.ledger)),
            "market_data": dict(vars(defaults.market_data)),
            "logging": dict(vars(defaults.logging)),
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "SystemConfig":
        """Build SystemConfig from a (possibly partial) dictionary."""
        return cls(
            ledger=LedgerSettings(**data.get("ledger", {})),
            market_data=MarketDataSettings(**data.get("market_data", {})),
            logging=LoggingSettings(**data.get("logging", {})),
        )


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``; override wins."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _substitute_env_vars(value: Any) -> Any:
    """Replace ``${VAR}`` placeholders with environment values (undefined vars are kept)."""
    if isinstance(value, dict):
        return {key: _substitute_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda match: os.environ.get(match.group(1), match.group(0)), value)
    return value


_system_config: SystemConfig | None = None


def get_system_config(path: Path | str | None = None) -> SystemConfig:
    """
    Get the system configuration singleton.

    An explicit path always reloads from that file. Each load applies the
    logging section to LoggerFactory.
    """
    global _system_config
    if path is not None or _system_config is None:
        return reload_system_config(path)
    return _system_config


def reload_system_config(path: Path | str | None = None) -> SystemConfig:
    """Force reload of the system configuration singleton."""
    global _system_config
    _system_config = SystemConfig.load(path)
    LoggerFactory.configure(_system_config.logging.to_logger_config())
    return _system_config
