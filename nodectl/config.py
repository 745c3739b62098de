"""Configuration management for the nodectl application."""
import os
from typing import Tuple
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


def _csv(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


class Config:
    """Application configuration with sensible defaults."""

    # Timeouts (in seconds)
    SSH_CONNECT_TIMEOUT: int = int(os.getenv("SSH_CONNECT_TIMEOUT", "30"))
    HEALTH_COMMAND_TIMEOUT: int = int(os.getenv("HEALTH_COMMAND_TIMEOUT", "10"))
    COMMAND_TIMEOUT: int = int(os.getenv("COMMAND_TIMEOUT", "60"))
    INSTALL_TIMEOUT: int = int(os.getenv("INSTALL_TIMEOUT", "900"))  # 15 minutes

    # Remote node layout
    STATUS_MARKER_PATH: str = os.getenv("STATUS_MARKER_PATH", "/opt/nodectl/status")
    CERT_DIR: str = os.getenv("CERT_DIR", "/opt/nodectl/ssl")
    RUNTIME_SERVICE: str = os.getenv("RUNTIME_SERVICE", "k3s")
    MONITORED_SERVICES: Tuple[str, ...] = _csv(
        os.getenv("MONITORED_SERVICES", "k3s,ssh,systemd-resolved")
    )

    # Background work
    PIPELINE_WARMUP_SECONDS: float = float(os.getenv("PIPELINE_WARMUP_SECONDS", "120"))
    TASK_WORKERS: int = int(os.getenv("TASK_WORKERS", "4"))
    TERMINAL_IDLE_TIMEOUT: int = int(os.getenv("TERMINAL_IDLE_TIMEOUT", "1800"))  # 30 minutes

    # Application defaults
    DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "Europe/Berlin")
    CATALOG_DIR: str = os.getenv("CATALOG_DIR", "")

    # Version lookups
    GITHUB_API_URL: str = os.getenv("GITHUB_API_URL", "https://api.github.com")
    GITHUB_TOKEN: str = os.getenv("GITHUB_TOKEN", "")
    VERSION_CACHE_TTL: int = int(os.getenv("VERSION_CACHE_TTL", "3600"))
    IDENTITY_CACHE_TTL: int = int(os.getenv("IDENTITY_CACHE_TTL", "300"))

    # Local store and API
    STORE_PATH: str = os.getenv("NODECTL_STORE_PATH", "nodectl-store.json")
    API_HOST: str = os.getenv("NODECTL_API_HOST", "127.0.0.1")
    API_PORT: int = int(os.getenv("NODECTL_API_PORT", "8080"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Security
    # Server-side secret; per-account encryption keys are derived from it
    SECRET_KEY: str = os.getenv("NODECTL_SECRET_KEY", "")
    REDACT_KEYS: tuple = ("password", "secret", "token", "credential", "private_key")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        timeouts = {
            "SSH_CONNECT_TIMEOUT": cls.SSH_CONNECT_TIMEOUT,
            "HEALTH_COMMAND_TIMEOUT": cls.HEALTH_COMMAND_TIMEOUT,
            "COMMAND_TIMEOUT": cls.COMMAND_TIMEOUT,
            "INSTALL_TIMEOUT": cls.INSTALL_TIMEOUT,
        }
        invalid = [k for k, v in timeouts.items() if v <= 0]
        if invalid:
            raise ValueError(f"Timeouts must be positive: {', '.join(invalid)}")
        if cls.TASK_WORKERS < 1:
            raise ValueError("TASK_WORKERS must be at least 1")
        if not cls.SECRET_KEY:
            raise ValueError("NODECTL_SECRET_KEY must be set")

# Don't validate on import to allow for dynamic configuration
# Call Config.validate() explicitly when needed
