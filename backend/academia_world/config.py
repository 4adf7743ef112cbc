import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:4200",
    "http://127.0.0.1:4200",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def _parse_list(value, *, normalize=None):
    normalize = normalize or (lambda item: str(item).strip())
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                return [normalize(item) for item in parsed if str(item).strip()]
        except json.JSONDecodeError:
            pass
        parsed = [normalize(item) for item in value.split(",")]
        return [item for item in parsed if item]
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value if str(item).strip()]
    return None


class Settings(BaseSettings):
    database_url: str
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    allowed_origins: list[str] = DEFAULT_ALLOWED_ORIGINS
    admin_emails: list[str] = []
    auto_create_tables: bool = False
    auto_run_migrations: bool = False

    app_name: str = "Academia World"
    frontend_url: str = "http://localhost:5173"
    email_enabled: bool = True
    smtp_host: str | None = None
    smtp_port: int | None = None
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender: str | None = None
    smtp_use_tls: bool = True
    email_verification_expire_hours: int = 24

    task_queue_poll_interval_seconds: float = 1.0
    task_queue_max_attempts: int = 3
    task_queue_stale_after_seconds: int = 300
    task_queue_job_timeout_seconds: float = 180.0

    # Off by default: the reminder sweep does not deduplicate within a window.
    reminder_dedupe_enabled: bool = False

    storage_root: str = "storage"
    storage_public_url: str = "http://localhost:8000/storage"

    # `allowed_origins` supports comma-separated strings or JSON lists; disable pydantic-settings JSON decoding
    # so our validator can handle both formats.
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
        parsed = _parse_list(value)
        if parsed is None:
            raise ValueError("allowed_origins must be a list or comma-separated string")
        return parsed

    @field_validator("admin_emails", mode="before")
    @classmethod
    def parse_admin_emails(cls, value):
        if value is None or value == "":
            return []
        parsed = _parse_list(value, normalize=lambda item: str(item).strip().lower())
        if parsed is None:
            raise ValueError("admin_emails must be a list or comma-separated string")
        return parsed


settings = Settings()
