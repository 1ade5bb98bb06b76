"""Tests for environment-backed settings."""

import pytest

from reportwatch.exceptions import ValidationError
from reportwatch.services.settings import (
    SettingsService,
    clear_settings_cache,
    get_settings_service,
    reset_settings_service,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    reset_settings_service()
    yield
    reset_settings_service()


def test_defaults_come_from_thresholds(monkeypatch):
    for name in ("RATE_LIMIT_INCIDENT_SUBMISSION", "RATE_LIMIT_WINDOW_SECONDS", "AI_ENRICHMENT_ENABLED"):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings_service()

    assert settings.rate_limits.ceilings() == {
        "incident_submission": 10,
        "entity_creation": 20,
        "ai_call": 30,
        "search": 100,
    }
    assert settings.rate_limits.window_seconds == 3600
    assert settings.ai.enabled is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_AI_CALL", "5")
    monkeypatch.setenv("AI_ENRICHMENT_ENABLED", "false")
    monkeypatch.setenv("AI_FALLBACK_PROVIDER", "openai")

    settings = get_settings_service()

    assert settings.rate_limits.ai_call == 5
    assert settings.ai.enabled is False
    assert settings.ai.fallback_provider == "openai"


def test_bad_integer_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_SEARCH", "lots")
    assert get_settings_service().rate_limits.search == 100


def test_secrets_are_not_exposed(monkeypatch):
    monkeypatch.setenv("SERVICE_API_KEY", "super-secret")
    settings = get_settings_service()

    assert "security" not in settings.get_all()
    assert "super-secret" not in repr(settings.security)


def test_update_rate_limits_invalidates_cache():
    settings = SettingsService()
    clear_settings_cache()
    assert settings.get_all()["rate_limits"]["search"] == 100

    settings.update_rate_limits({"search": "250", "unknown_key": 1})

    assert settings.rate_limits.search == 250
    assert settings.get_all()["rate_limits"]["search"] == 250


@pytest.mark.parametrize("config", [{"search": "many"}, {"ai_call": 0}])
def test_update_rate_limits_rejects_bad_values(config):
    with pytest.raises(ValidationError):
        SettingsService().update_rate_limits(config)


def test_update_ai_coerces_types():
    settings = SettingsService()

    result = settings.update_ai({"enabled": "off", "call_timeout_seconds": "2.5", "max_tokens": "300"})

    assert result["enabled"] is False
    assert result["call_timeout_seconds"] == 2.5
    assert result["max_tokens"] == 300


def test_update_ai_rejects_bad_number():
    with pytest.raises(ValidationError):
        SettingsService().update_ai({"max_tokens": "plenty"})
