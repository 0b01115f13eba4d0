from decimal import Decimal

import pytest
import yaml
from pydantic import ValidationError

from autotrader.config import DynamicSettings, SettingsProvider, TradingConfig


def test_defaults():
    config = TradingConfig()

    assert config.strategy.name == "standard"
    assert config.strategy.dca is False
    assert config.session.directory == "~/.autotrader"
    assert config.sweeper.reopen_after_days == 21
    assert config.sweeper.interval_minutes == 60
    assert config.exchange.base_url == "https://api.bittrex.com/v3"


def test_from_yaml_with_env_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("AUTOTRADER_HOME", "/var/lib/autotrader")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "strategy:\n"
        "  name: stop-loss\n"
        "  dca: true\n"
        "  hold: [BTC-ETH]\n"
        "session:\n"
        "  directory: ${AUTOTRADER_HOME}/session\n"
        "loop:\n"
        "  poll_interval_seconds: 2.5\n"
    )

    config = TradingConfig.from_yaml(str(config_file))

    assert config.strategy.name == "stop-loss"
    assert config.strategy.dca is True
    assert config.strategy.hold == ["BTC-ETH"]
    assert config.session.directory == "/var/lib/autotrader/session"
    assert config.loop.poll_interval_seconds == 2.5
    assert config.exchange.timeout == 10


def test_from_yaml_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        TradingConfig.from_yaml(str(tmp_path / "absent.yaml"))


def test_to_yaml_writes_loadable_file(tmp_path):
    config = TradingConfig()
    config.strategy.hold = ["BTC-ETH", "USDT-BTC"]
    out = tmp_path / "nested" / "config.yaml"

    config.to_yaml(str(out))

    assert TradingConfig.from_yaml(str(out)).strategy.hold == ["BTC-ETH", "USDT-BTC"]
    assert yaml.safe_load(out.read_text())["sweeper"]["reopen_after_days"] == 21


def test_dynamic_settings_defaults():
    settings = DynamicSettings()

    assert settings.level == 2
    assert settings.mult == Decimal("1.05")
    assert settings.stop == Decimal("0.95")


def test_dynamic_settings_keep_yaml_floats_exact():
    settings = DynamicSettings(**yaml.safe_load("mult: 1.05\nstop: 0.9\n"))

    assert settings.mult == Decimal("1.05")
    assert settings.stop == Decimal("0.9")


@pytest.mark.parametrize("values", [
    {"mult": "1"},
    {"mult": "0.95"},
    {"stop": "1.2"},
    {"stop": "0"},
    {"level": 4},
])
def test_dynamic_settings_reject_invalid_values(values):
    with pytest.raises(ValidationError):
        DynamicSettings(**values)


def test_settings_provider_missing_file_gives_defaults(tmp_path):
    provider = SettingsProvider(str(tmp_path / "settings.yaml"))

    assert provider() == DynamicSettings()


def test_settings_provider_rereads_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("level: 3\nmult: 1.1\n")
    provider = SettingsProvider(str(path))

    assert provider().level == 3

    path.write_text("level: 1\nmult: 1.2\nstop: 0.8\n")
    settings = provider()
    assert settings.level == 1
    assert settings.mult == Decimal("1.2")
    assert settings.stop == Decimal("0.8")


def test_settings_provider_invalid_file_raises(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("mult: 0.5\n")

    with pytest.raises(ValidationError):
        SettingsProvider(str(path))()


def test_setup_logging_writes_file(tmp_path):
    from autotrader.logging_setup import logger, setup_logging

    log_file = tmp_path / "logs" / "autotrader.log"
    setup_logging(log_file=str(log_file), level="DEBUG", enable_console=False)

    logger.info("Order placed | id=o1")
    logger.remove()

    text = log_file.read_text()
    assert "Order placed | id=o1" in text
    assert "pid=" in text
