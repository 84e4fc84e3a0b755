"""Tests for application settings."""
import importlib

import pytest

import backend.app.settings as settings


@pytest.fixture(autouse=True)
def reload_settings(monkeypatch):
    """Reload settings after each test so patched env vars don't leak."""
    yield
    monkeypatch.undo()
    importlib.reload(settings)


def test_database_url_respects_env_var(monkeypatch):
    """DATABASE_URL uses the env var when set."""
    monkeypatch.setenv("DATABASE_URL", "sqlite:////var/data/acls_runs.db")

    importlib.reload(settings)

    assert settings.DATABASE_URL == "sqlite:////var/data/acls_runs.db"


def test_database_url_defaults_to_local_sqlite(monkeypatch):
    """DATABASE_URL falls back to repo-root acls_runs.db when env var is unset."""
    monkeypatch.delenv("DATABASE_URL", raising=False)

    importlib.reload(settings)

    assert settings.DATABASE_URL.startswith("sqlite:///")
    assert settings.DATABASE_URL.endswith("acls_runs.db")


def test_gemini_key_preferred_over_generic_key(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
    monkeypatch.setenv("API_KEY", "generic-key")

    importlib.reload(settings)

    assert settings.GEMINI_API_KEY == "gemini-key"


def test_generic_api_key_fallback(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("API_KEY", "generic-key")

    importlib.reload(settings)

    assert settings.GEMINI_API_KEY == "generic-key"


def test_missing_keys_leave_empty_string(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)

    importlib.reload(settings)

    assert settings.GEMINI_API_KEY == ""


def test_simulator_timing_defaults(monkeypatch):
    for name in ("VIABILITY_TICK_SECONDS", "IDLE_CHECK_SECONDS", "IDLE_THRESHOLD_SECONDS"):
        monkeypatch.delenv(name, raising=False)

    importlib.reload(settings)

    assert settings.VIABILITY_TICK_SECONDS == pytest.approx(0.083)
    assert settings.IDLE_CHECK_SECONDS == 5
    assert settings.IDLE_THRESHOLD_SECONDS == 30
