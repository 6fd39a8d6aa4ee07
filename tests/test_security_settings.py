import pytest

from referral_guard.config.settings import Settings


def _set_required_env(monkeypatch) -> None:
    monkeypatch.setenv("API_TOKEN", "test-api")
    monkeypatch.setenv("ADMIN_TOKEN", "test-admin")


def test_production_requires_security_settings(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    for key in ["API_TOKEN", "ADMIN_TOKEN"]:
        monkeypatch.delenv(key, raising=False)

    with pytest.raises(ValueError) as excinfo:
        Settings(_env_file=None)

    message = str(excinfo.value)
    assert "API_TOKEN" in message
    assert "ADMIN_TOKEN" in message


def test_production_allows_with_required_settings(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    _set_required_env(monkeypatch)

    settings = Settings(_env_file=None)
    assert settings.app_env == "production"


def test_development_allows_missing_tokens(monkeypatch):
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.delenv("API_TOKEN", raising=False)
    monkeypatch.delenv("ADMIN_TOKEN", raising=False)

    settings = Settings(_env_file=None)
    assert settings.api_token is None


def test_cors_origins_are_split(monkeypatch):
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://app.example.com, https://admin.example.com,")

    settings = Settings(_env_file=None)
    assert settings.cors_allow_origins_list == ["https://app.example.com", "https://admin.example.com"]


def test_thresholds_from_env(monkeypatch):
    monkeypatch.setenv("IP_FREQUENCY_LIMIT", "10")
    monkeypatch.setenv("ALERT_COOLDOWN_MINUTES", '{"network_abuse": 5}')

    settings = Settings(_env_file=None)
    assert settings.ip_frequency_limit == 10
    assert settings.alert_cooldown_minutes == {"network_abuse": 5}
