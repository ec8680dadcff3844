"""
Configuration Settings.

This module defines the runtime configuration using Pydantic's BaseSettings.
It automatically loads all configuration from environment variables and .env file
without explicit dotenv loading.
"""

import json
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# =====================================================================
# Grouped Configuration Models
# =====================================================================


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", alias="RELAYFLOW_LOG_LEVEL", description="Console log level")
    format: str = Field(
        default="detailed", alias="RELAYFLOW_LOG_FORMAT", description="Log format (simple, detailed or json)"
    )
    file_dir: str = Field(default="logs", alias="RELAYFLOW_LOG_FILE_DIR", description="Directory for the log file")
    enable_file: bool = Field(
        default=False, alias="RELAYFLOW_ENABLE_FILE_LOGGING", description="Write DEBUG logs to a file as well"
    )

    model_config = {"populate_by_name": True}


class QueueConfig(BaseModel):
    """Queue driver configuration."""

    driver: str = Field(default="memory", alias="QUEUE_DRIVER", description="Queue driver name")
    driver_path: Optional[str] = Field(
        default=None, alias="QUEUE_DRIVER_PATH", description="Explicit module path of the queue driver"
    )
    config: Optional[Dict[str, Any]] = Field(
        default=None, alias="QUEUE_CONFIG_JSON", description="Driver-specific configuration"
    )

    model_config = {"populate_by_name": True}


class EncryptionConfig(BaseModel):
    """Definition config encryption."""

    mode: str = Field(default="none", alias="ENCRYPTION_MODE", description="Encryption mode (none or aes-gcm)")
    master_key_b64: Optional[str] = Field(
        default=None, alias="ENCRYPTION_MASTER_KEY_B64", description="Base64 encoded 32 byte master key"
    )

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Runtime settings model.

    All properties are automatically bound from environment variables and .env file.
    Pydantic's BaseSettings handles dotenv loading automatically via model_config.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # Logging
    # =====================================================================
    log_level: str = Field(default="INFO", alias="RELAYFLOW_LOG_LEVEL")
    log_format: str = Field(default="detailed", alias="RELAYFLOW_LOG_FORMAT")
    log_file_dir: str = Field(default="logs", alias="RELAYFLOW_LOG_FILE_DIR")
    enable_file_logging: bool = Field(default=False, alias="RELAYFLOW_ENABLE_FILE_LOGGING")

    # =====================================================================
    # Plugins
    # =====================================================================
    plugins_path: str = Field(
        default="plugins",
        alias="PLUGINS_PATH",
        description="Directory scanned for plugin packages at startup",
    )
    load_builtin_plugins: bool = Field(
        default=True,
        alias="RELAYFLOW_LOAD_BUILTIN_PLUGINS",
        description="Register the bundled plugins (schedule trigger) at startup",
    )

    # =====================================================================
    # Queue
    # =====================================================================
    queue_driver: str = Field(default="memory", alias="QUEUE_DRIVER")
    queue_driver_path: Optional[str] = Field(default=None, alias="QUEUE_DRIVER_PATH")
    queue_config_json: Annotated[Optional[Dict[str, Any]], NoDecode] = Field(default=None, alias="QUEUE_CONFIG_JSON")

    # =====================================================================
    # Persistence
    # =====================================================================
    database_url: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
        description="Async SQLAlchemy URL; in-memory repositories are used when unset",
    )

    # =====================================================================
    # Encryption
    # =====================================================================
    encryption_mode: str = Field(default="none", alias="ENCRYPTION_MODE")
    encryption_master_key_b64: Optional[str] = Field(default=None, alias="ENCRYPTION_MASTER_KEY_B64")

    @field_validator("queue_config_json", mode="before")
    @classmethod
    def _parse_queue_config(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            return json.loads(value)
        return value

    @field_validator("encryption_mode")
    @classmethod
    def _check_encryption_mode(cls, value: str) -> str:
        mode = value.strip().lower()
        if mode not in {"none", "aes-gcm"}:
            raise ValueError(f"unsupported ENCRYPTION_MODE: {value}")
        return mode

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def logging(self) -> LoggingConfig:
        """Get logging configuration."""
        return LoggingConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def queue(self) -> QueueConfig:
        """Get queue driver configuration."""
        return QueueConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def encryption(self) -> EncryptionConfig:
        """Get config encryption settings."""
        return EncryptionConfig.model_validate(self.model_dump(by_alias=True))


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
