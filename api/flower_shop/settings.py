# flower_shop/settings.py
"""
Flower Shop settings - PostgreSQL (asyncpg) by default, SQLite for local runs.
"""
from __future__ import annotations
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs)
    # =========================================================================
    SHOP_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "shop-data"),
        validation_alias=AliasChoices("SHOP_DATA_ROOT", "shop_data_root"),
    )

    # =========================================================================
    # Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="flower_shop", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Full async URL, e.g. sqlite+aiosqlite:///./shop.db (overrides DB_* parts)
    DATABASE_URL: str = Field(
        default="",
        validation_alias=AliasChoices("DATABASE_URL", "shop_database_url"),
    )

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")
    # Create missing tables at startup (always on for SQLite URLs)
    DB_CREATE_TABLES: bool = Field(default=False, validation_alias="DB_CREATE_TABLES")

    # =========================================================================
    # Transactions
    # =========================================================================
    TX_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    TX_MAX_WAIT_SECONDS: float = Field(default=2.0, gt=0)

    # =========================================================================
    # Orders
    # =========================================================================
    ORDER_NUMBER_PREFIX: str = Field(default="FL")
    ORDER_NUMBER_MAX_ATTEMPTS: int = Field(default=5, ge=1)

    # =========================================================================
    # Notifications
    # =========================================================================
    NOTIFICATION_URL: str = Field(
        default="",
        description="POST order events here; empty means log-only notifications",
    )
    NOTIFICATION_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    ENVIRONMENT: str = Field(default="production")
    LOG_LEVEL: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

settings = Settings()
