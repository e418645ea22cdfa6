from __future__ import annotations

import pytest

from intakeportal.apps.api.main import enforce_security_posture
from intakeportal.core.config import DEV_PORTAL_SESSION_SECRET, Settings
from intakeportal.core.errors import ConfigurationError
from intakeportal.tests.utils.factories import make_settings


def test_defaults_are_flagged_as_insecure() -> None:
    settings = Settings(_env_file=None)
    assert settings.insecure_defaults() == ["magic_link_secret", "portal_session_secret", "operator_session_secret"]


def test_operator_secret_falls_back_to_portal_secret() -> None:
    settings = make_settings(operator_session_secret=None)
    assert settings.resolved_operator_secret() == "test-portal-secret"
    assert settings.insecure_defaults() == []


def test_csv_settings_are_split_and_normalized() -> None:
    settings = make_settings(operator_admin_emails=" A@x.com, b@x.com ,", system_api_keys="k1,,k2")
    assert settings.admin_emails() == ["a@x.com", "b@x.com"]
    assert settings.system_keys() == ["k1", "k2"]


def test_production_refuses_insecure_defaults() -> None:
    settings = make_settings(environment="production", portal_session_secret=DEV_PORTAL_SESSION_SECRET)
    with pytest.raises(ConfigurationError):
        enforce_security_posture(settings)


def test_production_requires_webhook_secret() -> None:
    with pytest.raises(ConfigurationError):
        enforce_security_posture(make_settings(environment="production", webhook_shared_secret=None))


def test_development_only_warns(caplog: pytest.LogCaptureFixture) -> None:
    settings = make_settings(environment="development", magic_link_secret="dev-magic-link-secret-change-me")
    with caplog.at_level("WARNING"):
        enforce_security_posture(settings)
    assert "insecure_default setting=magic_link_secret" in caplog.text


def test_production_with_real_secrets_passes() -> None:
    enforce_security_posture(make_settings(environment="production"))
