"""Configuration management using Pydantic Settings"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./lending_ledger.db"
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_recycle_seconds: int = 3600

    # Service
    service_name: str = "lending-ledger"
    log_level: str = "INFO"

    # Ledger defaults
    default_annual_yield_rate: float = 0.12
    default_monthly_rate: float = 0.01

    # "reject": refuse withdrawals the active deposits cannot fully absorb
    # "allow": debit the account anyway and report the unallocated remainder
    withdrawal_shortfall_policy: Literal["reject", "allow"] = "reject"

    # Batch import
    rebuild_snapshots_after_import: bool = True


settings = Settings()
