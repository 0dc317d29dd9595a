from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ACCESS_TOKEN_PLACEHOLDER = "your_access_token_here"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/niftyguess.db",
        description="SQLAlchemy compatible database URL",
    )
    kite_api_key: str | None = Field(
        default=None,
        description="Kite Connect API key",
    )
    kite_api_secret: str | None = Field(
        default=None,
        description="Kite Connect API secret used to sign request-token exchanges",
    )
    kite_request_token: str | None = Field(
        default=None,
        description="Default request token obtained from the Kite Connect login flow",
    )
    kite_access_token: str | None = Field(
        default=None,
        description="Access token from a previous session, validated by the first quote fetch",
    )
    kite_base_url: AnyUrl = Field(
        default="https://api.kite.trade",
        description="Base URL for the Kite Connect REST API",
    )
    kite_api_version: str = Field(
        default="3",
        description="Value sent in the X-Kite-Version header",
    )
    kite_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every broker request",
        gt=0,
    )
    quote_instrument: str = Field(
        default="NSE:NIFTY 50",
        description="Instrument whose live price anchors the contest",
    )
    price_poll_interval_seconds: int = Field(
        default=60,
        description="Seconds between scheduled quote fetches",
        ge=1,
    )
    price_feed_retry_backoff_seconds: list[float] | tuple[float, ...] | str = Field(
        default_factory=lambda: [30.0, 120.0, 300.0],
        description="Comma-separated list or array of backoff delays (seconds) after consecutive failed fetches",
    )
    prediction_band_ratio: float = Field(
        default=0.3,
        description="Accepted distance from the last close, as a fraction of the close",
        gt=0,
        lt=1,
    )
    leaderboard_size: int = Field(
        default=3,
        description="Number of closest predictions shown on the home view",
        ge=1,
    )
    admin_pin: str | None = Field(
        default=None,
        description="PIN required to open an admin session (admin login is disabled when unset)",
    )
    admin_session_ttl_seconds: float = Field(
        default=12 * 60 * 60,
        description="Lifetime of an admin session token issued by /admin/login",
        gt=0,
    )
    credentials_env_file: str | None = Field(
        default=".env",
        description="Dotenv file where refreshed Kite tokens are written back (set blank to disable)",
    )

    @field_validator("kite_access_token", mode="after")
    @classmethod
    def _drop_placeholder_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        candidate = value.strip()
        if not candidate or candidate == ACCESS_TOKEN_PLACEHOLDER:
            return None
        return candidate

    @field_validator("credentials_env_file", mode="after")
    @classmethod
    def _blank_disables_credentials_file(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("price_feed_retry_backoff_seconds", mode="before")
    @classmethod
    def _parse_retry_backoff(cls, value: Any) -> list[float]:
        if value in (None, "", []):
            return [30.0, 120.0, 300.0]
        if isinstance(value, str):
            tokens = [token.strip() for token in value.split(",") if token.strip()]
            if not tokens:
                raise ValueError("PRICE_FEED_RETRY_BACKOFF_SECONDS must contain at least one value")
            value = tokens
        if isinstance(value, (list, tuple)):
            backoff: list[float] = []
            for item in value:
                try:
                    delay = float(item)
                except (TypeError, ValueError) as exc:
                    raise ValueError("PRICE_FEED_RETRY_BACKOFF_SECONDS entries must be numeric") from exc
                if delay <= 0:
                    raise ValueError("PRICE_FEED_RETRY_BACKOFF_SECONDS entries must be positive")
                backoff.append(delay)
            if not backoff:
                raise ValueError("PRICE_FEED_RETRY_BACKOFF_SECONDS must contain at least one value")
            return backoff
        raise ValueError(
            "PRICE_FEED_RETRY_BACKOFF_SECONDS must be provided as a comma-separated string or list of numbers"
        )

    @property
    def resolved_database_url(self) -> str:
        return str(self.database_url)

    @property
    def price_feed_retry_backoff_schedule(self) -> tuple[float, ...]:
        sequence = tuple(float(value) for value in self.price_feed_retry_backoff_seconds)
        if not sequence:
            return (30.0,)
        return sequence


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
