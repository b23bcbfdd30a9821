"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from app.core.config import Settings, get_settings


def test_settings_has_defaults():
    """Settings should have sensible defaults."""
    settings = Settings()

    assert settings.app_name == "DashAnalytics"
    assert settings.app_env == "development"
    assert settings.debug is False
    assert settings.log_level == "INFO"
    assert settings.log_format == "json"
    assert settings.api_port == 4000


def test_settings_cache_ttl_defaults():
    """Time series entries live 2 minutes, KPI entries 5 minutes."""
    settings = Settings()

    assert settings.cache_timeseries_ttl_seconds == 120
    assert settings.cache_kpi_ttl_seconds == 300
    assert settings.cache_enabled is True


def test_settings_is_development_property():
    """is_development should return True for development env."""
    settings = Settings(app_env="development")
    assert settings.is_development is True
    assert settings.is_production is False


def test_settings_is_production_property():
    """is_production should return True for production env."""
    settings = Settings(app_env="production")
    assert settings.is_development is False
    assert settings.is_production is True


def test_get_settings_returns_singleton():
    """get_settings should return cached singleton."""
    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2


def test_settings_from_environment(monkeypatch):
    """Settings should load from environment variables."""
    monkeypatch.setenv("APP_NAME", "TestApp")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("CACHE_KPI_TTL_SECONDS", "60")
    monkeypatch.setenv("ANALYTICS_STRICT_METRIC_NAMES", "true")

    # Create new settings instance (not cached)
    settings = Settings()

    assert settings.app_name == "TestApp"
    assert settings.debug is True
    assert settings.cache_kpi_ttl_seconds == 60
    assert settings.analytics_strict_metric_names is True


@pytest.mark.parametrize("field", ["cache_timeseries_ttl_seconds", "cache_kpi_ttl_seconds"])
def test_settings_rejects_zero_ttl(field):
    """A TTL below one second is a configuration error."""
    with pytest.raises(ValidationError, match="at least 1 second"):
        Settings(**{field: 0})


def test_settings_rejects_negative_retry_budget():
    with pytest.raises(ValidationError, match="Retry attempts"):
        Settings(store_retry_attempts=-1)
