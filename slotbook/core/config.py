from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Slotbook API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Barbershop booking policy
    SHOP_TIMEZONE: str = "America/Chicago"
    SHOP_BUFFER_MINUTES: int = 15
    SHOP_SLOT_INTERVAL_MINUTES: int = 30
    SHOP_MIN_ADVANCE_HOURS: int = 12
    SHOP_OPERATING_DAYS: str = ""  # comma-separated 0=Sun..6=Sat; empty = governed by availability rules only

    # CDL training policy
    CDL_TIMEZONE: str = "America/New_York"
    CDL_BUFFER_MINUTES: int = 0
    CDL_MIN_ADVANCE_HOURS: int = 24
    CDL_OPERATING_DAYS: str = "0,6"  # weekends
    CDL_DAY_START_HOUR: int = 9
    CDL_DAY_END_HOUR: int = 17

    # Pending (requested) bookings hold their slot until accepted or declined
    PENDING_REQUESTS_BLOCK: bool = True
    AUTO_CONFIRM_PRIVILEGED: bool = True
    CANCELLATION_WINDOW_HOURS: int = 4
    REQUEST_EXPIRY_GRACE_MINUTES: int = 0

    # Stripe (payment intents / setup intents through the stripe SDK)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com"
    STRIPE_CURRENCY: str = "usd"
    STRIPE_TIMEOUT: int = 20
    STRIPE_SANDBOX: bool = False  # If True, skip real Stripe calls and return mock authorizations (local dev)


settings = Settings()
