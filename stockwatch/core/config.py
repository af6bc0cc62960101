from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Stockwatch"
    API_V1_STR: str = "/api/v1"

    # Storage
    DATABASE_URL: str = "sqlite:///./stockwatch.db"
    REDIS_URL: str = ""  # Empty = in-process dedup cache

    # Availability poller
    RUN_SCHEDULER: bool = True
    SCANNER_INTERVAL_SECONDS: int = 120
    SCANNER_INITIAL_DELAY_SECONDS: int = 5
    SCANNER_BATCH_SIZE: int = 25
    SCANNER_PRODUCT_DELAY_MS: int = 250
    HEALTH_CHECK_INTERVAL_MINUTES: int = 5

    # Drop signals
    SIGNAL_DEDUP_TTL_SECONDS: int = 600

    # Circuit breakers (shared defaults for every backend)
    BREAKER_FAILURE_THRESHOLD: int = 5
    BREAKER_RECOVERY_TIMEOUT_SECONDS: float = 60.0
    BREAKER_MONITORING_PERIOD_SECONDS: float = 300.0
    BREAKER_SUCCESS_THRESHOLD: int = 3
    # Re-enabling a backend starts it with a fresh CLOSED breaker
    RESET_BREAKER_ON_REACTIVATE: bool = True

    # Backend credentials (API-keyed backends stay inactive without a key)
    BEST_BUY_API_KEY: str = ""
    WALMART_API_KEY: str = ""

    # Operator API (empty = no token check, for local use only)
    ADMIN_API_TOKEN: str = ""

    # Restock notifications (empty = log-only notifier)
    RESTOCK_WEBHOOK_URL: str = ""

    # Error tracking
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "production"

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
