from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


# Development fallbacks; any of these surviving into production is a misconfiguration.
DEV_MAGIC_LINK_SECRET = "dev-magic-link-secret-change-me"
DEV_PORTAL_SESSION_SECRET = "dev-portal-session-secret-change-me"
DEV_OPERATOR_SESSION_SECRET = "dev-operator-session-secret-change-me"


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "intakeportal"
    # development | test | production; production refuses insecure fallbacks.
    environment: str = "development"
    log_level: str = "INFO"

    # Select the backing store: memory (single process), sql (SQLAlchemy) or rest (PostgREST).
    persistence_driver: str = "memory"
    database_url: str = "sqlite+aiosqlite:///./intakeportal.db"
    # Bounded pools only apply to non-sqlite engines.
    db_pool_size: int = 5
    db_max_overflow: int = 5
    # REST-to-relational adapter (PostgREST / Supabase compatible).
    rest_base_url: str | None = None
    rest_api_key: str | None = None
    rest_timeout_ms: int = 8000

    # HMAC secrets; unset values fall back to dev constants and are flagged at startup.
    magic_link_secret: str = DEV_MAGIC_LINK_SECRET
    portal_session_secret: str = DEV_PORTAL_SESSION_SECRET
    operator_session_secret: str | None = None

    # Lifetimes are evaluated lazily when a token or session is resolved.
    magic_link_ttl_minutes: int = 30
    portal_session_ttl_hours: int = 24
    operator_session_ttl_hours: int = 12

    portal_cookie_name: str = "intake_portal_session"
    operator_cookie_name: str = "intake_operator_session"
    cookie_secure: bool = False

    password_min_length: int = 10
    default_portal_base_url: str = "http://localhost:3000"

    # Operator allowlists and role passwords (comma-delimited emails).
    operator_admin_emails: str = ""
    operator_editor_emails: str = ""
    operator_admin_password: str | None = None
    operator_editor_password: str | None = None
    # Keys accepted for the pipeline system role.
    system_api_keys: str = ""

    # Shared secret expected on inbound onboarding webhooks.
    webhook_shared_secret: str | None = None

    # outbox records emails only; http also posts them to the provider API.
    email_provider: str = "outbox"
    email_api_url: str | None = None
    email_api_key: str | None = None
    email_timeout_ms: int = 5000

    drive_enabled: bool = False
    drive_base_url: str = "https://drive.google.com"

    final_submit_enforce_readiness: bool = True
    readiness_min_property_photos: int = 5

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    def resolved_operator_secret(self) -> str:
        # Operators share the portal secret unless a dedicated one is configured.
        return self.operator_session_secret or self.portal_session_secret

    def admin_emails(self) -> list[str]:
        return [item.lower() for item in _split_csv(self.operator_admin_emails)]

    def editor_emails(self) -> list[str]:
        return [item.lower() for item in _split_csv(self.operator_editor_emails)]

    def system_keys(self) -> list[str]:
        return _split_csv(self.system_api_keys)

    def insecure_defaults(self) -> list[str]:
        """Return the names of signing secrets still set to their development fallback."""
        flagged: list[str] = []
        if self.magic_link_secret == DEV_MAGIC_LINK_SECRET:
            flagged.append("magic_link_secret")
        if self.portal_session_secret == DEV_PORTAL_SESSION_SECRET:
            flagged.append("portal_session_secret")
        if self.resolved_operator_secret() in {DEV_PORTAL_SESSION_SECRET, DEV_OPERATOR_SESSION_SECRET}:
            flagged.append("operator_session_secret")
        return flagged


@lru_cache
def get_settings() -> Settings:
    return Settings()
