"""Application configuration."""
import logging
from typing import Optional
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.
    
    Environment variables take precedence over .env file.
    """
    
    APP_NAME: str = "Box Organizer"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    
    # Database
    DATABASE_URL: str = "sqlite:///./box_organizer.db"
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    # Location tree
    MAX_LOCATION_DEPTH: int = 5
    
    # Short IDs and QR batches
    SHORT_ID_MAX_ATTEMPTS: int = 100
    QR_BATCH_MAX: int = 100
    
    # Extra attempts after a TransactionConflict
    TRANSACTION_RETRIES: int = 1
    
    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from settings."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
