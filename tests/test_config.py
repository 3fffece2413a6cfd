"""Tests for settings, provider presets, errors and logging setup."""
import json
import logging

import pytest

from core.config import Config, QuerySettings, get_settings, reset_settings
from core.errors import (
    AIError,
    AITimeoutError,
    ConfigError,
    ConfigurationError,
    ErrorKind,
    ProviderError,
    error_for,
)
from core.logging import LOGGER_NAME, JsonFormatter, setup_logging


# --- Settings ---

def test_defaults():
    settings = QuerySettings(_env_file=None)
    assert settings.DEFAULT_PROVIDER == "mock"
    assert settings.DEFAULT_TIMEOUT == 15.0
    assert settings.STREAM_TIMEOUT == 30.0
    assert settings.DEFAULT_RETRY == 1
    assert settings.DEFAULT_TEMPERATURE == 0.0
    assert settings.STREAM_RETRY_DELAY == 0.5


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("AIQUERY_DEFAULT_TIMEOUT", "2.5")
    monkeypatch.setenv("AIQUERY_DEFAULT_RETRY", "0")
    settings = QuerySettings(_env_file=None)
    assert settings.DEFAULT_TIMEOUT == 2.5
    assert settings.DEFAULT_RETRY == 0


def test_invalid_environment_raises_config_error(monkeypatch):
    monkeypatch.setenv("AIQUERY_DEFAULT_TIMEOUT", "-1")
    with pytest.raises(ConfigError):
        Config()


def test_get_settings_is_a_singleton():
    assert get_settings() is get_settings()
    first = get_settings()
    reset_settings()
    assert get_settings() is not first


def test_missing_presets_file(tmp_path):
    with pytest.raises(ConfigError):
        Config(config_path=str(tmp_path / "missing.yml"))


def test_invalid_presets_file(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("providers:\n  x:\n    timeout: soon\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        Config(config_path=str(path))


def test_preset_lookup_is_case_insensitive(tmp_path):
    path = tmp_path / "ok.yml"
    path.write_text("providers:\n  acme:\n    base_url: http://acme\n", encoding="utf-8")
    config = Config(config_path=str(path))
    assert config.preset("ACME").base_url == "http://acme"
    assert config.preset("other") is None


# --- Errors ---

def test_error_envelope():
    cause = ValueError("bad")
    error = ProviderError("Provider returned no data", cause=cause)
    assert error.envelope() == {"kind": "provider_error", "message": "Provider returned no data", "cause": cause}
    assert str(error) == "Provider returned no data"


def test_only_configuration_errors_are_final():
    assert ProviderError("x").retryable is True
    assert AITimeoutError("x").retryable is True
    assert ConfigurationError("x").retryable is False


def test_error_for_kind():
    error = error_for("timeout", "slow")
    assert isinstance(error, AITimeoutError)
    assert error.kind is ErrorKind.TIMEOUT
    assert AIError("x", kind=ErrorKind.VALIDATION_ERROR).kind is ErrorKind.VALIDATION_ERROR


# --- Logging ---

def test_json_formatter():
    record = logging.LogRecord(LOGGER_NAME, logging.WARNING, __file__, 1, "fallback used", None, None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["message"] == "fallback used"


def test_setup_logging_with_file(tmp_path):
    log_file = tmp_path / "logs" / "aiquery.log"
    logger = setup_logging("DEBUG", str(log_file))
    try:
        logger.debug("hello")
        for handler in logger.handlers:
            handler.flush()
        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert json.loads(line)["message"] == "hello"
    finally:
        setup_logging()
