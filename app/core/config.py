from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    database_echo: bool = Field(False, alias="DATABASE_ECHO")
    database_pool_recycle: int = Field(300, alias="DATABASE_POOL_RECYCLE")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Tariff used until the first version is activated (smallest currency unit)
    finance_default_monthly_amount: int = Field(300000, alias="FINANCE_DEFAULT_MONTHLY_AMOUNT")
    finance_default_annual_amount: int = Field(3000000, alias="FINANCE_DEFAULT_ANNUAL_AMOUNT")
    finance_min_amount: int = Field(50000, alias="FINANCE_MIN_AMOUNT")
    finance_max_amount: int = Field(50000000, alias="FINANCE_MAX_AMOUNT")

    finance_sync_horizon_months: int = Field(3, alias="FINANCE_SYNC_HORIZON_MONTHS")
    finance_max_future_payment_months: int = Field(3, alias="FINANCE_MAX_FUTURE_PAYMENT_MONTHS")
    finance_max_payment_months: int = Field(36, alias="FINANCE_MAX_PAYMENT_MONTHS")
    finance_sync_chunk_size: int = Field(200, alias="FINANCE_SYNC_CHUNK_SIZE")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
