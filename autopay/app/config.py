"""Application configuration using Pydantic Settings (ENV ONLY)."""
from functools import lru_cache
from typing import List
from pydantic import AliasChoices, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings (read from environment variables or .env)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = Field("AutoScroll Autopay")
    ENVIRONMENT: str = Field(
        "development",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
    )
    DEBUG: bool = Field(False)
    LOG_LEVEL: str = Field("INFO")
    HOST: str = Field("0.0.0.0")
    PORT: int = Field(3000)
    API_BASE_URL: str = Field("http://localhost:3000")
    FRONTEND_URL: str = Field("chrome-extension://your-extension-id")
    ALLOWED_ORIGINS: str = Field("")
    INTERNAL_API_TOKEN: str = Field("")

    @computed_field
    @property
    def CORS_ORIGINS(self) -> List[str]:
        origins = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        return origins or ["*"]

    # Database
    DATABASE_URL: str = Field(
        "sqlite:///./autopay.db",
        validation_alias=AliasChoices("DATABASE_URL", "MONGODB_URI"),
    )
    DB_POOL_SIZE: int = Field(5)
    DB_MAX_OVERFLOW: int = Field(10)

    @field_validator("DATABASE_URL")
    @classmethod
    def reject_mongodb_url(cls, value: str) -> str:
        if value.split(":", 1)[0].lower().startswith("mongodb"):
            raise ValueError("DATABASE_URL must be a SQLAlchemy URL (postgresql:// or sqlite://), not a MongoDB URI")
        return value

    # Redis / Celery
    REDIS_URL: str = Field("")
    CELERY_BROKER_URL: str = Field("redis://127.0.0.1:6379/1")
    CELERY_RESULT_BACKEND: str = Field("redis://127.0.0.1:6379/2")

    # razorpay
    RAZORPAY_KEY_ID: str = Field("")
    RAZORPAY_KEY_SECRET: str = Field("")
    RAZORPAY_PLAN_ID: str = Field("")
    RAZORPAY_WEBHOOK_SECRET: str = Field("")
    RAZORPAY_API_BASE: str = Field("https://api.razorpay.com/v1")
    PROVIDER_TIMEOUT_SECONDS: float = Field(10.0)

    @computed_field
    @property
    def WEBHOOK_SECRET(self) -> str:
        # Dashboards without a dedicated webhook secret sign with the key secret.
        return self.RAZORPAY_WEBHOOK_SECRET or self.RAZORPAY_KEY_SECRET

    # Merchant / UPI
    MERCHANT_UPI_ID: str = Field("merchant@paytm")
    MERCHANT_NAME: str = Field("AutoScroll Extension")
    MERCHANT_CODE: str = Field("AUTOSCROLL001")

    # Subscription
    SUBSCRIPTION_PRICE: int = Field(9)  # major units (INR)
    SUBSCRIPTION_TOTAL_COUNT: int = Field(60)
    SUBSCRIPTION_DESCRIPTION: str = Field("AutoScroll Extension - Monthly Subscription")
    TRIAL_DAYS: int = Field(10)

    # Charge scheduler
    CHARGE_MODE: str = Field("provider")  # provider | simulated
    CHARGE_SCHEDULE_HOUR: int = Field(2)
    CHARGE_SCHEDULE_MINUTE: int = Field(0)
    CHARGE_SCHEDULE_TIMEZONE: str = Field("Asia/Kolkata")
    CHARGE_BATCH_SIZE: int = Field(100)
    CHARGE_TICK_MAX_SECONDS: int = Field(300)
    CHARGE_MAX_FAILED_ATTEMPTS: int = Field(3)

    # Advisory locks
    MANDATE_LOCK_TTL_SECONDS: int = Field(30)
    MANDATE_LOCK_WAIT_SECONDS: float = Field(5.0)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
