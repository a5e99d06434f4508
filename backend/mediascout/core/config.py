from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "MediaScout"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # SSDP discovery
    SSDP_TIMEOUT: float = 5.0  # overall ceiling for collecting responses
    SSDP_READ_TIMEOUT: float = 1.0  # per-read deadline, first expiry ends the probe
    SSDP_MX: int = 3
    DESCRIPTION_TIMEOUT: float = 5.0  # device description fetch

    # Fallback port scan
    PORT_SCAN_TIMEOUT: float = 0.5  # per health-check attempt
    PORT_SCAN_HOSTS: list[int] = [1, 2, 10, 100, 200, 254]
    PORT_SCAN_PORTS: list[int] = [32400, 8096, 8920]
    DEFAULT_NETWORK_BASE: Optional[str] = None  # e.g. "192.168.1", auto-detect if None

    # Browsing
    BROWSE_TIMEOUT: float = 10.0  # SOAP Browse
    HTTP_BROWSE_TIMEOUT: float = 5.0

    # Discovery runs
    DISCOVERY_INTERVAL: int = 30  # seconds
    EVENT_QUEUE_SIZE: int = 100

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
