"""Tests for runtime settings."""

import logging

import pytest

from valueset_engine.settings import Settings, configure_logging


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.db_path == ":memory:"
        assert settings.prefill_from_requirement is True
        assert settings.bump_rejected_on_mutation is True
        assert settings.configure_logging is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("VALUESET_DB_PATH", "/tmp/valuesets.db")
        monkeypatch.setenv("VALUESET_PREFILL_FROM_REQUIREMENT", "false")
        monkeypatch.setenv("VALUESET_LOG_LEVEL", "debug")
        settings = Settings()
        assert settings.db_path == "/tmp/valuesets.db"
        assert settings.prefill_from_requirement is False
        assert settings.log_level == "debug"


class TestConfigureLogging:
    def test_rejects_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging(Settings(log_level="chatty"))

    def test_lowercase_level_is_applied(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
        configure_logging(Settings(log_level="warning"))
        assert captured["level"] == logging.WARNING
