from __future__ import annotations

from pathlib import Path

import pytest

from theta_bridge.config import ConfigurationError, load_settings

_ENV_NAMES = (
    "THETADATA_BASE_URL",
    "THETA_BRIDGE_REQUEST_TIMEOUT",
    "THETA_BRIDGE_CONNECT_ATTEMPTS",
    "THETA_BRIDGE_IDLE_DELAY",
    "THETA_BRIDGE_EVICTION_AGE",
    "THETA_BRIDGE_SWEEP_INTERVAL",
    "THETA_BRIDGE_PROTECT_IN_FLIGHT",
    "THETA_BRIDGE_HANDLERS_FILE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("THETA_BRIDGE_CONFIG", str(tmp_path / "absent.toml"))


def test_base_url_is_required():
    with pytest.raises(ConfigurationError):
        load_settings()


def test_defaults_from_environment(monkeypatch):
    monkeypatch.setenv("THETADATA_BASE_URL", "http://127.0.0.1:25503/")

    settings = load_settings()

    assert settings.base_url == "http://127.0.0.1:25503"
    assert settings.request_timeout == 30.0
    assert settings.connect_attempts == 2
    assert settings.idle_delay == 0.05
    assert settings.eviction_age == 600.0
    assert settings.protect_in_flight is False
    assert settings.source_path is None


def test_toml_then_env_then_overrides(monkeypatch, tmp_path):
    config = tmp_path / "bridge.toml"
    config.write_text(
        '[bridge]\nbase_url = "http://toml:1"\nrequest_timeout = 5\nprotect_in_flight = true\nunrelated = 1\n',
        encoding="utf-8",
    )
    monkeypatch.setenv("THETA_BRIDGE_CONFIG", str(config))
    monkeypatch.setenv("THETA_BRIDGE_REQUEST_TIMEOUT", "7.5")

    settings = load_settings(connect_attempts=4)

    assert settings.base_url == "http://toml:1"
    assert settings.request_timeout == 7.5
    assert settings.connect_attempts == 4
    assert settings.protect_in_flight is True
    assert settings.source_path == Path(config)


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("THETA_BRIDGE_REQUEST_TIMEOUT", "soon"),
        ("THETA_BRIDGE_CONNECT_ATTEMPTS", "0"),
        ("THETA_BRIDGE_PROTECT_IN_FLIGHT", "maybe"),
        ("THETA_BRIDGE_IDLE_DELAY", "-1"),
    ],
)
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv("THETADATA_BASE_URL", "http://127.0.0.1:25503")
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError):
        load_settings()


def test_unknown_override_is_rejected():
    with pytest.raises(ConfigurationError):
        load_settings(base_url="http://x", colour="blue")


def test_broken_toml_is_reported(monkeypatch, tmp_path):
    config = tmp_path / "bridge.toml"
    config.write_text("[bridge\n", encoding="utf-8")
    monkeypatch.setenv("THETA_BRIDGE_CONFIG", str(config))

    with pytest.raises(ConfigurationError):
        load_settings(base_url="http://x")
