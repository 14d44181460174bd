from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

# Application version
VERSION = "0.3.1"


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Utilizes pydantic-settings for robust validation and type-casting.
    """

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8085
    LOG_LEVEL: str = "info"
    RELOAD: bool = False
    DOCS_URL: str = "/docs"
    REDOC_URL: str = "/redoc"
    OPENAPI_URL: str = "/openapi.json"
    ROOT_PATH: str = ""

    # API Authentication (management routes only, /api/hls stays open for players)
    API_TOKEN: Optional[str] = None

    # Manifest rewriting: false = annotate cues, true = drop ad segments
    DEV_SKIP_ENABLED: bool = False

    # Relay failover
    PROXY_PROBE_TIMEOUT_MS: int = 8000
    PROXY_RETRY_DELAY_MS: int = 1000
    PROXY_MAX_ATTEMPTS: int = 3
    HEALTH_FAILURE_THRESHOLD: int = 3
    # Probes issue HEAD requests against this server's own /api/hls route
    LOCAL_PROXY_URL: str = "http://127.0.0.1:8085"

    # Upstream fetching
    DEFAULT_USER_AGENT: str = "Mozilla/5.0 (compatible; HLS-Dev-Sandbox)"
    DEFAULT_CONNECTION_TIMEOUT: float = 10.0
    DEFAULT_READ_TIMEOUT: float = 30.0
    HTTPS_ONLY: bool = True
    # Comma-separated hostnames allowed in addition to the relay catalog
    EXTRA_ALLOWED_HOSTS: str = ""

    # Player sessions
    SESSION_TIMEOUT: int = 300
    CLEANUP_INTERVAL: int = 30

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",  # No prefix, read directly from .env
        extra="ignore"  # Ignore extra environment variables from container
    )

    @property
    def extra_allowed_hosts(self) -> List[str]:
        return [h.strip().lower() for h in self.EXTRA_ALLOWED_HOSTS.split(",") if h.strip()]


# Global settings instance
settings = Settings()
