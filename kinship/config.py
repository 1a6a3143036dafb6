"""Application configuration using Pydantic Settings."""

import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Registry database settings."""

    model_config = SettingsConfigDict(env_prefix="KINSHIP_DB_")

    path: str = "data/kinship.db"
    busy_timeout: float = 30.0


class LocationApiSettings(BaseSettings):
    """Geographic lookup service used by the location pass."""

    model_config = SettingsConfigDict(env_prefix="LOCATION_API_")

    base_url: str = "https://india-location-hub.in/api"
    timeout: float = 10.0


class UnionSettings(BaseSettings):
    """Union identifier format."""

    model_config = SettingsConfigDict(env_prefix="UNION_")

    id_prefix: str = "UNION_"
    id_width: int = 4


class LoggingSettings(BaseSettings):
    """Log sinks."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    file: str = "logs/kinship.log"


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database: DatabaseSettings = DatabaseSettings()
    location_api: LocationApiSettings = LocationApiSettings()
    unions: UnionSettings = UnionSettings()
    logging: LoggingSettings = LoggingSettings()


settings = Settings()


def configure_logging(config: LoggingSettings = None, to_file: bool = True) -> None:
    """Route loguru output to stderr and a rotating log file."""
    config = config or settings.logging
    logger.remove()
    logger.add(sys.stderr, level=config.level)

    if to_file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            rotation="10 MB",
            retention=5,
            level=config.level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )
