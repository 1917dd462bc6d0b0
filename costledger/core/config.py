from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "CostLedger Core"
    env: str = "dev"
    log_level: str = "INFO"

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # INVENTORY
    low_stock_default_threshold: int = Field(default=5, ge=0)
    ledger_max_attempts: int = Field(default=3, ge=1, le=10)
    recent_movement_days: int = Field(default=7, ge=1, le=365)

    # HPP / PRICING
    hpp_default_method: Literal["current", "latest", "average"] = "current"
    composition_max_depth: int = Field(default=8, ge=1, le=32)
    pricing_max_markup_percentage: float = Field(default=1000.0, gt=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: str | None) -> str:
        if value is None:
            return "INFO"
        cleaned = str(value).strip().upper()
        return cleaned or "INFO"

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        if self.database_url.lower().startswith("sqlite"):
            # SQLite ignores FOR UPDATE, so ledger writes are not serialized.
            raise ValueError("DATABASE_URL must point at a server database in production")

        if self.ledger_max_attempts < 2:
            raise ValueError("LEDGER_MAX_ATTEMPTS must allow at least one retry in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
