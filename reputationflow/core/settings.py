"""Application settings for the ReputationFlow metering service."""
from __future__ import annotations

import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="REPUTATIONFLOW_", case_sensitive=False)

    app_name: str = "ReputationFlow"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(48))
    jwt_algorithm: str = "HS256"

    # Database
    data_dir: Path = Field(default_factory=lambda: Path.cwd() / "instance")
    database_url: str | None = None

    # Twilio (process-level defaults, override tenant/platform stored values)
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_messaging_service_sid: str | None = None
    twilio_api_base: str = "https://api.twilio.com"
    twilio_force_http: bool = False
    transport_timeout_seconds: int = 15
    default_country_code: str | None = None

    # Metering
    metering_mode: Literal["post_send", "reserve"] = "post_send"
    unmetered_policy: Literal["allow_when_absent", "deny_when_absent"] = "allow_when_absent"
    strict_plans: bool = False
    feedback_link_fragments: list[str] = Field(
        default_factory=lambda: ["localhost:5173/feedback", "/feedback?"]
    )

    # Stripe / billing
    stripe_api_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_price_starter: str | None = None
    stripe_price_growth: str | None = None
    stripe_price_pro: str | None = None
    frontend_url: str = "http://localhost:5173"

    # Rate limiting / monitoring
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60
    rate_limit_storage_url: str | None = None
    redis_url: str | None = None
    enable_prometheus: bool = True
    metrics_namespace: str = "reputationflow"

    @property
    def resolved_database_url(self) -> str:
        """Return the configured database URL defaulting to a local SQLite file."""
        if self.database_url:
            if self.database_url.startswith("postgres://"):
                return "postgresql://" + self.database_url[len("postgres://"):]
            return self.database_url

        self.data_dir.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{(self.data_dir / 'reputationflow.db').as_posix()}"

    @property
    def resolved_rate_limit_storage(self) -> str:
        if self.rate_limit_storage_url:
            return self.rate_limit_storage_url
        if self.redis_url:
            return f"redis://{self.redis_url.split('://')[-1]}"
        return "memory://"

    def stripe_price_for(self, plan_id: str) -> str | None:
        return {
            "starter_1m": self.stripe_price_starter,
            "growth_3m": self.stripe_price_growth,
            "pro_6m": self.stripe_price_pro,
        }.get(plan_id)


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


__all__ = ["Settings", "get_settings"]
