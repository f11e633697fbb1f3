from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
import os

# Load the project .env regardless of CWD
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
ENV_PATH = os.path.join(BASE_DIR, ".env")
load_dotenv(ENV_PATH)


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./haulops.db"
    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    # Pricing / payment
    DEPOSIT_RATE: float = 0.10
    BALANCE_DUE_DAYS_AFTER_END: int = 7
    BALANCE_DUE_DAYS_FALLBACK: int = 14
    DEFAULT_ETC_PRICE_PER_UNIT: int = 1800
    FREIGHT_CATEGORIES: str = "cold"
    DEFAULT_BEFORE_MATCHING_REFUND_RATE: int = 100
    DEFAULT_AFTER_MATCHING_REFUND_RATE: int = 70
    VAT_RATE: int = 10  # percent, added on top of the closing supply amount

    # Assignment
    DEFAULT_MAX_HELPERS: int = 3
    ORDER_LOCK_TIMEOUT: float = 5.0

    # Background worker
    WORKER_ENABLED: bool = False
    WORKER_POLL_SECONDS: float = 5.0
    NOTIFY_MAX_ATTEMPTS: int = 5

    # Attachments
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None
    AWS_DEFAULT_REGION: str | None = None
    S3_BUCKET: str | None = None
    FILES_DIR: str = os.path.join(BASE_DIR, "files")

    model_config = SettingsConfigDict(
        env_file=ENV_PATH,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def freight_categories(self) -> set[str]:
        return {c.strip() for c in self.FREIGHT_CATEGORIES.split(",") if c.strip()}


def get_settings() -> "Settings":
    return Settings()
