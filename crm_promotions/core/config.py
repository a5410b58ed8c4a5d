from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "CRM Promotions Engine"
    env: str = "dev"
    app_base_url: str = "http://localhost:3000"
    cron_secret: str = "dev-cron-secret"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # DATABASE
    database_url: str = "sqlite:///./crm_promotions.db"
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # EMAIL
    email_transport: Literal["smtp", "log"] = "smtp"
    smtp_host: str | None = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender_email: str | None = None
    smtp_reply_to_email: str | None = None
    smtp_use_starttls: bool = True
    smtp_use_ssl: bool = False
    smtp_timeout_seconds: int = Field(default=20, ge=1, le=120)

    # SMS
    sms_provider_default: str = "stub"
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    twilio_messaging_service_sid: str | None = None
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"
    sms_timeout_seconds: int = Field(default=15, ge=1, le=120)
    sms_max_length: int = Field(default=320, ge=70, le=1600)

    # PROMOTIONS
    delivery_retry_seconds: int = Field(default=300, ge=0, le=86_400)
    delivery_queue_batch_size: int = Field(default=100, ge=1, le=1000)
    delivery_max_attempts: int = Field(default=3, ge=1, le=20)
    high_value_cooldown_days: int = Field(default=30, ge=0, le=365)

    @field_validator(
        "smtp_host",
        "smtp_username",
        "smtp_password",
        "smtp_sender_email",
        "smtp_reply_to_email",
        "twilio_account_sid",
        "twilio_auth_token",
        "twilio_from_number",
        "twilio_messaging_service_sid",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("app_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {"", "change_me", "dev-cron-secret"}
        if self.cron_secret.strip() in weak_secrets or len(self.cron_secret.strip()) < 24:
            raise ValueError("CRON_SECRET must be a strong random value in production")

        if self.email_transport == "log":
            raise ValueError("EMAIL_TRANSPORT=log cannot be used in production")

        if self.smtp_use_ssl and self.smtp_use_starttls:
            raise ValueError("Set only one of SMTP_USE_SSL or SMTP_USE_STARTTLS in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
