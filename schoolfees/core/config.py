from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    db_echo: bool = Field(False, alias="DB_ECHO")
    db_pool_recycle: int = Field(300, alias="DB_POOL_RECYCLE")  # seconds

    # Used when a pricing configuration is saved without an explicit grace period
    default_grace_period_days: int = Field(5, alias="DEFAULT_GRACE_PERIOD_DAYS", ge=0, le=30)
    # Optimistic-concurrency retries for a single ledger read-modify-write
    ledger_max_retries: int = Field(3, alias="LEDGER_MAX_RETRIES", ge=1)

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: Optional[str] = Field(None, alias="CORS_ORIGINS")  # comma separated; None => "*"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
