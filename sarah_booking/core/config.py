# sarah_booking/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read env from .env; ignore unknown keys so extra lines don't crash startup
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- ServiceTitan credentials ---
    ST_CLIENT_ID: str | None = None
    ST_CLIENT_SECRET: str | None = None
    ST_TENANT_ID: str | None = None
    ST_APP_KEY: str | None = None
    ST_AUTH_URL: str = "https://auth.servicetitan.io"
    ST_API_BASE_URL: str = "https://api.servicetitan.io"

    # --- ServiceTitan tenant ids ---
    ST_BUSINESS_UNIT_PLUMBING: int = 40464378
    ST_BUSINESS_UNIT_DRAIN: int = 40472669
    ST_JOB_TYPE_SERVICE: int = 40464992
    ST_JOB_TYPE_DRAIN: int = 79265910
    ST_CAMPAIGN_ID: int = 313
    CAMPAIGN_NUMBERS: str = ""  # comma-separated "dialed_number:campaign_id"
    ST_SERVICE_CALL_SKU_ID: int | None = None
    ST_SERVICE_CALL_SKU_NAME: str = "$79 Standard Service Call"
    ST_SERVICE_CALL_PRICE: float = 79.0

    # --- Outbound HTTP ---
    HTTP_TIMEOUT_SECONDS: float = 10.0
    TOKEN_REFRESH_MARGIN_SECONDS: int = 60
    INBOUND_TIMEOUT_SECONDS: float = 4.0

    # --- Booking rules ---
    DEDUPE_WINDOW_MINUTES: int = 5
    AVAILABILITY_DAYS: int = 5
    AVAILABILITY_SOURCE: str = "capacity"  # "capacity" or "appointments"
    WINDOW_CAPACITY: int = 2
    STRICT_PHONE_MATCH: bool = False
    DEFAULT_STATE: str = "OH"

    # --- Idempotency ledger ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./sarah_booking.db"

    # --- OpenAI (transcript extraction) ---
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    RESPONSE_MAX_TOKENS: int = 512

    # --- Notifications ---
    SLACK_WEBHOOK_URL: str | None = None
    LEAD_MIN_DURATION_MS: int = 30000
    SHORT_CALL_MS: int = 20000

    # --- Security ---
    SARAH_API_KEY: str | None = None

    # --- Monitoring & Logging ---
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    LOG_REQUESTS: bool = False
    MAX_LOG_LENGTH: int = 200
    SLOW_REQUEST_THRESHOLD: float = 2.0

    @property
    def campaign_numbers(self) -> dict[str, int]:
        """Dialed number (last 10 digits) -> campaign id."""
        mapping: dict[str, int] = {}
        for pair in self.CAMPAIGN_NUMBERS.split(","):
            if ":" not in pair:
                continue
            number, campaign_id = pair.rsplit(":", 1)
            digits = "".join(ch for ch in number if ch.isdigit())[-10:]
            if digits and campaign_id.strip().isdigit():
                mapping[digits] = int(campaign_id.strip())
        return mapping

    @property
    def tenant_configured(self) -> bool:
        return bool(self.ST_TENANT_ID)

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")


# Singleton
settings = Settings()
