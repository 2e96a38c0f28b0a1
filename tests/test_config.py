import pytest
from pydantic import ValidationError

from talenthive.utils.config_loader import Settings, load_platform_settings, load_settings
from talenthive.utils.tokens import issue_token, verify_token


def test_platform_settings_from_yaml(tmp_path):
    path = tmp_path / "platform.yml"
    path.write_text("platform:\n  commission_rate: 12.5\n  escrow_hold_days: 14\n", encoding="utf-8")

    platform = load_platform_settings(path)

    assert platform.commission_rate == 12.5
    assert platform.escrow_hold_days == 14
    assert platform.currency == "USD"


def test_missing_platform_file_uses_defaults(tmp_path):
    assert load_platform_settings(tmp_path / "absent.yml").commission_rate == 10.0


def test_invalid_platform_file_raises(tmp_path):
    path = tmp_path / "platform.yml"
    path.write_text("commission_rate: 250\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_platform_settings(path)


def test_settings_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("ESCROW_HOLD_DAYS", "3")
    monkeypatch.setenv("CORS_ORIGINS", "https://app.example.com, https://admin.example.com")
    monkeypatch.setenv("USE_POSTGRES", "yes")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/talenthive")
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    monkeypatch.delenv("INTEGRATIONS_MODE", raising=False)

    settings = load_settings(tmp_path / "absent.yml")

    assert settings.escrow_hold_days == 3
    assert settings.platform.escrow_hold_days == 3
    assert settings.cors_origins == ["https://app.example.com", "https://admin.example.com"]
    assert settings.use_postgres is True
    assert settings.use_real_payments is False


def test_payment_mode_selection():
    assert Settings(stripe_secret_key="sk_test_123").use_real_payments is True
    assert Settings(stripe_secret_key="sk_test_123", integrations_mode="mock").use_real_payments is False
    assert Settings(integrations_mode="real").use_real_payments is True


def test_tokens():
    token = issue_token("user-1", "secret")
    assert verify_token(token, "secret") == "user-1"
    assert verify_token(f"Bearer {token}", "secret") == "user-1"
    assert verify_token(token, "other-secret") is None
    assert verify_token("user-1.deadbeef", "secret") is None
    assert verify_token(None, "secret") is None
