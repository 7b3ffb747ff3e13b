from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    BUSINESS_NAME: str = "Your Kitchen"
    BUSINESS_TIMEZONE: str = "Africa/Lagos"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    CHECKOUT_STORE_DIR: str = "./data/checkout"

    ORDER_BACKEND_URL: str | None = None
    ORDER_BACKEND_API_KEY: str | None = None
    BACKEND_TIMEOUT_SECONDS: float = 8.0
    READ_RETRY_ATTEMPTS: int = 3
    READ_RETRY_BACKOFF_SECONDS: float = 0.5

    MIN_LEAD_TIME_MINUTES: int = 90
    SLOT_DURATION_MINUTES: int = 60
    MAX_ADVANCE_BOOKING_DAYS: int = 60
    WINDOW_CAPACITY: int = 0  # 0 means unlimited

    REQUIRES_AUTH: bool = False
    ALLOWS_GUEST: bool = True
    SCHEDULES_PICKUP: bool = True
    TERMS_REQUIRED: bool = True
    SUPPORTED_PAYMENT_METHODS: list[str] = ["paystack"]
    VAT_RATE_PERCENT: float = 7.5
    MIN_PHONE_DIGITS: int = 10

    GATEWAY_CHECKOUT_BASE_URL: str = "https://checkout.paystack.com"
    GATEWAY_TIMEOUT_SECONDS: float = 900.0

    SNAPSHOT_DEBOUNCE_SECONDS: float = 1.0
    SNAPSHOT_MAX_AGE_HOURS: int = 24
    MAX_CACHED_SESSIONS: int = 1000

    PUBLIC_BASE_URL: str = "http://localhost:8000"


settings = Settings()
