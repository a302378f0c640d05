"""
Unit tests for configuration management.
"""
from pathlib import Path

from wagate.config import GatewayConfig


def test_config_defaults():
    config = GatewayConfig()
    assert config.port == 3000
    assert config.watchdog_interval == 300
    assert config.reconnect_delay == 10
    assert config.api_key == ""
    assert "127.0.0.1" in config.rate_limit_whitelist


def test_config_environment_override(monkeypatch, tmp_path):
    monkeypatch.setenv("WAGATE_PORT", "8080")
    monkeypatch.setenv("API_KEY", "secret")
    monkeypatch.setenv("WAGATE_AUTH_DIR", str(tmp_path / "auth"))
    monkeypatch.setenv("WAGATE_WATCHDOG_INTERVAL", "60")
    monkeypatch.setenv("WAGATE_RATE_LIMIT_WHITELIST", "10.0.0.1, 10.0.0.2,")

    config = GatewayConfig.from_env()

    assert config.port == 8080
    assert config.api_key == "secret"
    assert config.auth_dir == Path(tmp_path / "auth")
    assert config.watchdog_interval == 60.0
    assert config.rate_limit_whitelist == ["10.0.0.1", "10.0.0.2"]


def test_config_falls_back_to_port(monkeypatch):
    monkeypatch.delenv("WAGATE_PORT", raising=False)
    monkeypatch.setenv("PORT", "4000")

    assert GatewayConfig.from_env().port == 4000
