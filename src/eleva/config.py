"""Application configuration via pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from eleva.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "Eleva"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    base_url: str | None = Field(
        default=None, description="Public URL of the deployed app, used for schedule destinations"
    )

    # Database (Neon / Postgres)
    db_url: str | None = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "eleva"
    db_user: str = "eleva"
    db_password: str | None = None

    @property
    def database_url(self) -> str:
        if self.db_url:
            return self.db_url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def database_url_sync(self) -> str:
        if self.db_url:
            return self.db_url.replace("+asyncpg", "+psycopg")
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # QStash
    qstash_token: str | None = None
    qstash_api_url: str = "https://qstash.upstash.io/v2"
    qstash_current_signing_key: str | None = None
    qstash_next_signing_key: str | None = None
    schedule_retries: int = 3
    scheduler_timeout_seconds: float = 10.0

    # Shared secret forwarded with every scheduled call
    cron_api_key: str | None = None

    # Novu
    novu_secret_key: str | None = None
    novu_api_url: str = "https://api.novu.co"

    # Stripe
    stripe_secret_key: str | None = None
    stripe_api_url: str = "https://api.stripe.com"

    # Payouts
    payout_max_retries: int = 3
    transfer_claim_timeout_minutes: int = 30
    # Days a payment must age before it is transferred / paid out, per country
    payout_delay_days: dict[str, int] = {"DEFAULT": 7, "PT": 7, "ES": 7, "BR": 30, "US": 2}

    def delay_days_for(self, country: str | None) -> int:
        key = (country or "DEFAULT").upper()
        return self.payout_delay_days.get(key, self.payout_delay_days.get("DEFAULT", 7))

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    def require(self, *names: str) -> None:
        """Raise ConfigurationError if any of the named settings is empty."""
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            env_names = ", ".join(name.upper() for name in missing)
            raise ConfigurationError(f"Missing required configuration: {env_names}")


@lru_cache
def get_settings() -> Settings:
    return Settings()
