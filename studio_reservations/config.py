from functools import lru_cache
import os
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    env: str = Field(default="dev", alias="ENV")
    timezone: str = Field(default="America/New_York", alias="TIMEZONE")

    database_url: str = Field(default="", alias="DATABASE_URL")
    postgres_db: str = Field(default="studio", alias="POSTGRES_DB")
    postgres_user: str = Field(default="studio", alias="POSTGRES_USER")
    postgres_password: str = Field(default="studio", alias="POSTGRES_PASSWORD")
    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")

    jwt_secret: str = Field(default="secret", alias="JWT_SECRET")

    cancellation_window_hours: int = Field(default=24, alias="CANCELLATION_WINDOW_HOURS")
    late_cancel_penalty: str = Field(default="lose_credit", alias="LATE_CANCEL_PENALTY")
    no_show_penalty: str = Field(default="lose_credit", alias="NO_SHOW_PENALTY")
    compensation_validity_days: int = Field(default=90, alias="COMPENSATION_VALIDITY_DAYS")
    membership_period_days: int = Field(default=30, alias="MEMBERSHIP_PERIOD_DAYS")
    renewal_lead_hours: int = Field(default=24, alias="RENEWAL_LEAD_HOURS")

    payment_provider: str = Field(default="swipesimple", alias="PAYMENT_PROVIDER")
    payment_webhook_secret: str = Field(default="", alias="PAYMENT_WEBHOOK_SECRET")
    payment_currency: str = Field(default="USD", alias="PAYMENT_CURRENCY")

    notification_webhook_url: str = Field(default="", alias="NOTIFICATION_WEBHOOK_URL")
    notification_timeout_seconds: float = Field(default=10, alias="NOTIFICATION_TIMEOUT_SECONDS")

    cron_secret: str = Field(default="", alias="CRON_SECRET")
    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    expire_sweep_interval_minutes: int = Field(default=60, alias="EXPIRE_SWEEP_INTERVAL_MINUTES")
    renewal_sweep_interval_minutes: int = Field(default=60, alias="RENEWAL_SWEEP_INTERVAL_MINUTES")

    class Config:
        populate_by_name = True

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv(override=False)
    return Settings(**os.environ)
