"""Application configuration using Pydantic Settings"""
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class ConfigMissing(Exception):
    """Raised at startup when required environment variables are absent or invalid."""

    def __init__(self, missing: List[str], message: Optional[str] = None):
        self.missing = missing
        super().__init__(
            message or f"Environment variable(s) must be set: {', '.join(missing)}"
        )


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Frigate NVR
    FRIGATE_IP_ADDRESS: str
    FRIGATE_PORT: str

    # Object storage (S3-compatible, e.g. Backblaze B2)
    # Comma-separated list; only "B2" is supported today
    STORAGE_BACKENDS: str
    AWS_REGION: str
    AWS_ENDPOINT: str
    AWS_ACCESS_KEY_ID: str
    AWS_SECRET_ACCESS_KEY: str
    BUCKET_NAME: str

    # Application
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Rotating log files are written only when set
    METRICS_PORT: Optional[int] = None  # Prometheus exporter is started only when set

    @field_validator('LOG_LEVEL', mode='after')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL names a standard logging level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @property
    def websocket_url(self) -> str:
        """Frigate WebSocket endpoint carrying the live event feed."""
        return f"ws://{self.FRIGATE_IP_ADDRESS}:{self.FRIGATE_PORT}/ws"

    @property
    def clip_base_url(self) -> str:
        """Base URL for Frigate's HTTP API (clip downloads)."""
        return f"http://{self.FRIGATE_IP_ADDRESS}:{self.FRIGATE_PORT}"

    @property
    def storage_backend_list(self) -> List[str]:
        """Parse STORAGE_BACKENDS from comma-separated string"""
        return [
            backend.strip().upper()
            for backend in self.STORAGE_BACKENDS.split(",")
            if backend.strip()
        ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


def load_settings(**overrides) -> Settings:
    """
    Load settings from the environment, failing fast on missing values.

    Args:
        **overrides: Explicit values taking precedence over the environment

    Returns:
        Validated Settings instance

    Raises:
        ConfigMissing: If any required variable is absent or invalid
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        missing = [
            ".".join(str(part) for part in error["loc"])
            for error in e.errors()
            if error["type"] == "missing"
        ]
        if missing:
            raise ConfigMissing(missing) from e
        invalid = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
        raise ConfigMissing(invalid, f"Invalid configuration: {e}") from e
