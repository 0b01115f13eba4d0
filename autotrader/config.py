"""Configuration loader for the autotrader.

Static settings come from a YAML file with environment variable
interpolation. Dynamic settings (notification level, take-profit and
stop-loss multipliers) live in a separate small YAML file that the sell
loop re-reads on every iteration, so they can be tuned without a restart.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


@dataclass
class ExchangeConfig:
    """Bittrex exchange settings."""
    base_url: str = "https://api.bittrex.com/v3"
    timeout: int = 10
    max_retries: int = 5
    max_rate_limit_retries: int = 1


@dataclass
class StrategyConfig:
    """Sell strategy parameters."""
    name: str = "standard"  # standard | stop-loss
    dca: bool = False
    hold: List[str] = field(default_factory=list)  # v1 market names, e.g. BTC-ETH
    max_self_trade_retries: int = 50


@dataclass
class SessionConfig:
    """Where the request governor keeps its shared session files."""
    directory: str = "~/.autotrader"


@dataclass
class SweeperConfig:
    reopen_after_days: int = 21
    interval_minutes: int = 60


@dataclass
class LoopConfig:
    poll_interval_seconds: float = 0.0
    settings_file: str = "settings.yaml"


@dataclass
class LoggingConfig:
    log_file: str = "autotrader.log"
    log_level: str = "INFO"
    json_logs: bool = False


@dataclass
class TradingConfig:
    """Complete autotrader configuration."""
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    sweeper: SweeperConfig = field(default_factory=SweeperConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, config_path: str) -> "TradingConfig":
        """Load configuration from YAML file with env var interpolation.

        Args:
            config_path: Path to YAML config file

        Returns:
            TradingConfig instance

        Example YAML:
            strategy:
              name: stop-loss
              dca: true
              hold: [BTC-ETH]
            session:
              directory: "${HOME}/.autotrader"
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        data = yaml.safe_load(raw) or {}

        return cls(
            exchange=ExchangeConfig(**data.get("exchange", {})),
            strategy=StrategyConfig(**data.get("strategy", {})),
            session=SessionConfig(**data.get("session", {})),
            sweeper=SweeperConfig(**data.get("sweeper", {})),
            loop=LoopConfig(**data.get("loop", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        data = {
            "exchange": {
                "base_url": self.exchange.base_url,
                "timeout": self.exchange.timeout,
                "max_retries": self.exchange.max_retries,
                "max_rate_limit_retries": self.exchange.max_rate_limit_retries,
            },
            "strategy": {
                "name": self.strategy.name,
                "dca": self.strategy.dca,
                "hold": list(self.strategy.hold),
                "max_self_trade_retries": self.strategy.max_self_trade_retries,
            },
            "session": {"directory": self.session.directory},
            "sweeper": {
                "reopen_after_days": self.sweeper.reopen_after_days,
                "interval_minutes": self.sweeper.interval_minutes,
            },
            "loop": {
                "poll_interval_seconds": self.loop.poll_interval_seconds,
                "settings_file": self.loop.settings_file,
            },
            "logging": {
                "log_file": self.logging.log_file,
                "log_level": self.logging.log_level,
                "json_logs": self.logging.json_logs,
            },
        }

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


class DynamicSettings(BaseModel):
    """Settings re-read on every loop iteration."""
    level: int = Field(default=2, ge=0, le=3)
    mult: Decimal = Decimal("1.05")
    stop: Decimal = Decimal("0.95")

    @field_validator("mult", "stop", mode="before")
    @classmethod
    def _exact_decimal(cls, v):
        # YAML floats: 1.05 must stay 1.05, not its binary expansion
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("mult")
    @classmethod
    def _mult_above_one(cls, v: Decimal) -> Decimal:
        if v <= 1:
            raise ValueError("mult must be greater than 1")
        return v

    @field_validator("stop")
    @classmethod
    def _stop_below_one(cls, v: Decimal) -> Decimal:
        if not 0 < v < 1:
            raise ValueError("stop must be between 0 and 1")
        return v


class SettingsProvider:
    """Reads DynamicSettings from a YAML file each time it is called.

    A missing file yields the defaults; a malformed or invalid file raises
    (yaml.YAMLError or pydantic.ValidationError).
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path).expanduser() if path else None

    def __call__(self) -> DynamicSettings:
        if self.path is None or not self.path.exists():
            return DynamicSettings()
        with self.path.open("r") as f:
            data = yaml.safe_load(f) or {}
        return DynamicSettings(**data)
