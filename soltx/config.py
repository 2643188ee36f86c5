"""
Configuration for the soltx transaction pipeline.

Settings are loaded from environment variables (and an optional .env file)
using Pydantic v2 BaseSettings, one section per concern.

Usage:
    from soltx.config import get_settings
    print(get_settings().solana.commitment)
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import (
    AnyHttpUrl,
    Field,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ENUMS
# =============================================================================

class LogLevel(str, Enum):
    """Logging level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# BASE CONFIGURATION
# =============================================================================

class BaseConfig(BaseSettings):
    """Base configuration with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


# =============================================================================
# SOLANA RPC CONFIGURATION
# =============================================================================

class SolanaRPCSettings(BaseConfig):
    """Solana RPC connection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SOLANA_",
        env_file=".env",
        extra="ignore",
    )

    rpc_url: AnyHttpUrl = Field(
        default="https://api.devnet.solana.com",
        description="RPC endpoint URL",
    )

    commitment: str = Field(
        default="confirmed",
        pattern="^(processed|confirmed|finalized)$",
        description="Fallback commitment when a request does not set one",
    )

    timeout: int = Field(
        default=30,
        ge=5,
        le=120,
        description="RPC request timeout in seconds",
    )


# =============================================================================
# TRANSACTION CONFIGURATION
# =============================================================================

class TransactionSettings(BaseConfig):
    """Compute budget and lifetime defaults for the transaction pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="TX_",
        env_file=".env",
        extra="ignore",
    )

    compute_unit_limit_multiplier: float = Field(
        default=1.1,
        gt=0,
        le=10,
        description="Multiplier applied to simulated compute units",
    )

    default_compute_units: int = Field(
        default=200_000,
        ge=1,
        le=1_400_000,
        description="Compute unit limit used when simulation reports zero",
    )

    blockhash_max_age_ms: int = Field(
        default=30_000,
        ge=0,
        description="Max age of a cached blockhash before it is ignored",
    )

    send_max_retries: Optional[int] = Field(
        default=None,
        ge=0,
        le=100,
        description="maxRetries forwarded to sendTransaction when a call sets none",
    )

    @field_validator("send_max_retries", mode="before")
    @classmethod
    def parse_optional_int(cls, v: Any) -> Any:
        """Treat empty environment values as unset."""
        if v == "":
            return None
        return v


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

class LoggingSettings(BaseConfig):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )

    format: str = Field(
        default="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        description="Log message format",
    )

    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log date format",
    )

    file_enabled: bool = Field(
        default=False,
        description="Enable file logging",
    )

    file_path: Path = Field(
        default=Path("logs/soltx.log"),
        description="Log file path",
    )

    file_max_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        ge=1024,
        description="Max log file size in bytes",
    )

    file_backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of backup log files",
    )


# =============================================================================
# APPLICATION SETTINGS (MAIN)
# =============================================================================

class Settings(BaseConfig):
    """
    Settings aggregating all configuration sections.

    Usage:
        settings = Settings()
        # or
        settings = get_settings()
    """

    solana: SolanaRPCSettings = Field(default_factory=SolanaRPCSettings)
    transaction: TransactionSettings = Field(default_factory=TransactionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def get_safe_dict(self) -> dict[str, Any]:
        """Settings as a plain dictionary, for logging and debugging."""
        return self.model_dump(mode="json")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


def resolve_commitment(settings: Optional[SolanaRPCSettings] = None) -> str:
    """Commitment from the given RPC settings, or from the live global settings."""
    if settings is not None:
        return settings.commitment
    return get_settings().solana.commitment


def reload_settings() -> Settings:
    """Drop the cached settings and load them again from the environment."""
    get_settings.cache_clear()
    return get_settings()


__all__ = [
    "Settings",
    "SolanaRPCSettings",
    "TransactionSettings",
    "LoggingSettings",
    "LogLevel",
    "get_settings",
    "reload_settings",
    "resolve_commitment",
]
