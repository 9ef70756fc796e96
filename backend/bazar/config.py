import json
from typing import Any, Callable

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]


def _parse_env_list(value: Any, normalize: Callable[[str], str], field_name: str) -> list[str]:
    """Accept a JSON list, a comma-separated string, or a real list; drop blanks."""
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            parsed = value.split(",")
        if not isinstance(parsed, list):
            parsed = value.split(",")
        value = parsed
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{field_name} must be a list or comma-separated string")
    cleaned = [normalize(str(item)) for item in value if item is not None]
    return [item for item in cleaned if item]


class Settings(BaseSettings):
    database_url: str
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    refresh_token_expire_minutes: int = 60 * 24 * 30
    allowed_origins: list[str] = DEFAULT_ALLOWED_ORIGINS
    # Accounts listed here are admins even without a user_roles row.
    admin_emails: list[str] = []
    auto_create_tables: bool = False
    auto_run_migrations: bool = False
    sql_debug: bool = False

    email_enabled: bool = True
    smtp_host: str | None = None
    smtp_port: int | None = None
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender: str | None = None
    smtp_use_tls: bool = True

    public_base_url: str = "http://localhost:8080"
    ad_expiry_days: int = 30
    search_result_limit: int = 250
    audit_log_scan_limit: int = 2500
    user_search_limit: int = 200
    email_search_limit: int = 100
    email_event_scan_limit: int = 2000
    view_count_dedupe_seconds: int = 30 * 60

    public_api_rate_limit: int = 60
    public_api_rate_window_seconds: int = 60

    # List fields accept comma-separated strings or JSON lists, so pydantic-settings JSON decoding is off.
    model_config = SettingsConfigDict(
        env_file=".topsecret",
        extra="ignore",
        case_sensitive=False,
        enable_decoding=False,
        env_ignore_empty=True,
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value):
        if value is None or value == "":
            return list(DEFAULT_ALLOWED_ORIGINS)
        return _parse_env_list(value, str.strip, "allowed_origins")

    @field_validator("admin_emails", mode="before")
    @classmethod
    def parse_admin_emails(cls, value):
        if value is None or value == "":
            return []
        return _parse_env_list(value, lambda email: email.strip().lower(), "admin_emails")


settings = Settings()
