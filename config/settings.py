# RfpIngest/config/settings.py

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
ENV_FILE_PATH = os.path.join(PROJECT_ROOT, '.env')


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=ENV_FILE_PATH,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database settings. PostgreSQL is used when ``pghost`` is configured,
    # otherwise everything lives in a local SQLite file.
    database_path: str = Field(default="./rfp_ingest.sqlite")
    pghost: Optional[str] = Field(default=None)
    pgport: int = Field(default=5432)
    pgdatabase: Optional[str] = Field(default=None)
    pguser: Optional[str] = Field(default=None)
    pgpassword: Optional[str] = Field(default=None)
    pgsslmode: Optional[str] = Field(default=None)

    # Outbound email settings
    smtp_host: Optional[str] = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_user: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_use_tls: bool = Field(default=True)
    smtp_use_ssl: bool = Field(default=False)
    smtp_timeout_seconds: float = Field(default=30.0)
    smtp_secret_name: Optional[str] = Field(
        default=None,
        description="AWS Secrets Manager secret holding SMTP_USERNAME/SMTP_PASSWORD.",
    )
    smtp_secret_region: str = Field(default="eu-west-1")
    app_email: str = Field(default="procurement@example.com")

    # IMAP mailbox configuration
    imap_host: Optional[str] = Field(default=None)
    imap_port: int = Field(default=993)
    imap_user: Optional[str] = Field(default=None)
    imap_password: Optional[str] = Field(default=None)
    imap_use_ssl: bool = Field(default=True)
    imap_mailbox: str = Field(default="INBOX")
    imap_idle_timeout_seconds: int = Field(
        default=300,
        description="Upper bound for a single IDLE round before it is re-issued.",
    )
    imap_poll_interval_seconds: int = Field(
        default=60,
        description="Polling cadence used when the server does not advertise IDLE.",
    )
    imap_lookback_days: int = Field(default=7)
    email_listener_enabled: bool = Field(default=True)
    email_listener_workers: int = Field(default=4)

    # Structured-extraction / analysis oracle (OpenAI compatible endpoint)
    llm_base_url: str = Field(default="https://api.openai.com")
    llm_api_key: Optional[str] = Field(default=None)
    llm_model: str = Field(default="gpt-4-turbo-preview")
    llm_timeout_seconds: int = Field(default=120)
    llm_temperature_extraction: float = Field(default=0.3)
    llm_temperature_analysis: float = Field(default=0.4)

    frontend_url: str = Field(default="http://localhost:5173")
    log_dir: str = Field(default=os.path.join(PROJECT_ROOT, "logs"))

    @field_validator("imap_lookback_days", "email_listener_workers", mode="before")
    @classmethod
    def _at_least_one(cls, value):
        try:
            coerced = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("Value must be an integer") from exc
        return max(1, coerced)

    @field_validator("app_email", mode="before")
    @classmethod
    def _normalise_address(cls, value):
        if value is None:
            return value
        return str(value).strip()

    @property
    def imap_configured(self) -> bool:
        return bool(self.imap_host and self.imap_user and self.imap_password)

    @property
    def uses_postgres(self) -> bool:
        return bool(self.pghost)


try:
    settings = Settings()
except Exception as e:
    print(f"!!! FATAL ERROR: Could not load application settings from .env file: {e}")
    raise
