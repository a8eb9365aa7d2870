"""Unit tests for core/config.py -- Settings policy."""

import pytest

from core.config import Settings

KEY = "k" * 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValueError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValueError, match="at least 32"):
        Settings(debug=True, secret_key="short")


def test_debug_generates_secret_key() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32
    assert settings.refresh_secret_key == settings.secret_key


def test_defaults() -> None:
    settings = Settings(debug=False, secret_key=KEY, sms_gateway_url="", expose_verification_codes=False)
    assert settings.access_token_expire_seconds == 86400
    assert settings.refresh_token_expire_days == 7
    assert settings.sms_timeout_seconds == 5.0
    assert settings.cookie_secure is True
    assert settings.echo_verification_codes is False


def test_code_echo_needs_debug_and_flag() -> None:
    assert Settings(debug=True, secret_key=KEY, expose_verification_codes=True).echo_verification_codes
    assert not Settings(debug=False, secret_key=KEY, expose_verification_codes=True).echo_verification_codes
    assert not Settings(debug=True, secret_key=KEY, expose_verification_codes=False).echo_verification_codes


def test_debug_cookies_not_secure_unless_forced() -> None:
    assert Settings(debug=True, secret_key=KEY, secure_cookies=False).cookie_secure is False
    assert Settings(debug=True, secret_key=KEY, secure_cookies=True).cookie_secure is True
