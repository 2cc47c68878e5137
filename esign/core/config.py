"""Configuration management using pydantic-settings for type-safe environment variables."""

from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class MessengerProvider(str, Enum):
    """Supported outbound notification providers."""
    EMAIL = "email"
    NONE = "none"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every collaborator of the signing engine (database, blob storage,
    renderer, messenger) is configured here so that a misconfigured
    deployment fails at startup instead of halfway through a signing
    session.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    DATABASE_URL: str = "sqlite:///./esign.db"  # SQLite fallback for development
    DATABASE_ENABLED: bool = True

    # Access tokens
    ESIGN_TOKEN_EXPIRY_DAYS: int = 30  # Long enough for a multi-day signing cycle
    ESIGN_TOKEN_BYTES: int = 32
    ESIGN_PUBLIC_SITE_URL: str = "http://localhost:5173"

    # Blob storage
    ESIGN_STORAGE_PATH: Path = Path("storage/esign")

    # Signed-PDF renderer
    ESIGN_RENDER_URL: Optional[str] = None  # e.g., "http://renderer:8080/render"
    ESIGN_RENDER_API_KEY: Optional[SecretStr] = None
    ESIGN_RENDER_TIMEOUT: int = 60

    # Notifications
    ESIGN_SENDER_NAME: str = "Bridge eSign"
    MESSENGER_PROVIDER: MessengerProvider = MessengerProvider.EMAIL
    MESSENGER_EMAIL_SMTP_HOST: Optional[str] = None
    MESSENGER_EMAIL_SMTP_PORT: int = 587
    MESSENGER_EMAIL_SMTP_USER: Optional[str] = None
    MESSENGER_EMAIL_SMTP_PASSWORD: Optional[SecretStr] = None
    MESSENGER_EMAIL_FROM: Optional[str] = None

    # Server
    LOG_LEVEL: str = "INFO"

    @field_validator('MESSENGER_PROVIDER', mode='before')
    @classmethod
    def validate_messenger_provider(cls, v):
        """Validate messenger provider configuration."""
        if isinstance(v, str):
            try:
                return MessengerProvider(v.lower())
            except ValueError:
                raise ValueError(
                    f"Invalid MESSENGER_PROVIDER: {v}. Must be one of: {[p.value for p in MessengerProvider]}"
                )
        return v

    @field_validator('ESIGN_STORAGE_PATH', mode='before')
    @classmethod
    def validate_storage_path(cls, v):
        """Convert string path to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v

    @field_validator('ESIGN_TOKEN_EXPIRY_DAYS')
    @classmethod
    def validate_token_expiry(cls, v):
        """Token expiry must leave room for at least one signing day."""
        if v < 1:
            raise ValueError("ESIGN_TOKEN_EXPIRY_DAYS must be at least 1")
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        return v.upper()

    def get_secret_value(self, key: str) -> Optional[str]:
        """Get the secret value for a given key."""
        if key == "ESIGN_RENDER_API_KEY":
            return self.ESIGN_RENDER_API_KEY.get_secret_value() if self.ESIGN_RENDER_API_KEY else None
        elif key == "MESSENGER_EMAIL_SMTP_PASSWORD":
            return (
                self.MESSENGER_EMAIL_SMTP_PASSWORD.get_secret_value()
                if self.MESSENGER_EMAIL_SMTP_PASSWORD
                else None
            )
        raise ValueError(f"Unknown secret key: {key}")


# Global settings object
settings = Settings()
