# medrental/config.py - Configuration management
from dotenv import load_dotenv

load_dotenv()
from typing import Union
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings with validation and environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # Application
    app_name: str = "MedRental Home-Care CRM"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Database
    database_url: str = Field(default="sqlite:///./medrental.db", alias="DATABASE_URL")

    # Security
    secret_key: str = Field(default="dev-secret-key-change-me-in-production-0123456789", alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")

    # Payment follow-up
    payment_term_days: int = Field(default=30, ge=0, alias="PAYMENT_TERM_DAYS")
    overdue_grace_days: int = Field(default=7, ge=0, alias="OVERDUE_GRACE_DAYS")

    # Calendar
    open_rental_horizon_days: int = Field(default=30, ge=0, alias="OPEN_RENTAL_HORIZON_DAYS")
    appointment_due_soon_hours: int = Field(default=24, ge=0, alias="APPOINTMENT_DUE_SOON_HOURS")
    rental_ending_window_days: int = Field(default=7, ge=0, alias="RENTAL_ENDING_WINDOW_DAYS")
    calendar_fetch_timeout_seconds: float = Field(default=10.0, gt=0, alias="CALENDAR_FETCH_TIMEOUT_SECONDS")

    # Patient trackers
    recent_sales_days: int = Field(default=30, ge=0, alias="RECENT_SALES_DAYS")

    # Analytics
    analytics_revenue_months: int = Field(default=6, ge=1, alias="ANALYTICS_REVENUE_MONTHS")
    analytics_growth_months: int = Field(default=12, ge=1, alias="ANALYTICS_GROWTH_MONTHS")
    analytics_top_patients: int = Field(default=20, ge=1, alias="ANALYTICS_TOP_PATIENTS")
    analytics_timeline_limit: int = Field(default=50, ge=1, alias="ANALYTICS_TIMELINE_LIMIT")

    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:3000"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite:///")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_key_length(cls, v):
        if not v or len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
