"""
Configuration management for Alertboard.

This module handles environment variable configuration for the HTTP server
and the embedded alert database.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Database Configuration
    db_path: str = Field(default="alertboard.db", description="Path to the alert database file")
    db_timeout_seconds: float = Field(default=5.0, description="Seconds to wait for the database write lock")
    backup_chunk_size: int = Field(default=64 * 1024, gt=0, description="Chunk size for streamed backups in bytes")
    db_pool_size: int = Field(default=8, gt=0, description="Idle database connections kept for reuse")


# Global configuration instance
config = Config()
