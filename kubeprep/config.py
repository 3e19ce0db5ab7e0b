"""Configuration management for the kubeprep application."""
import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


class Config:
    """Application configuration with sensible defaults."""

    # Timeouts (in seconds)
    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "30"))
    COMMAND_TIMEOUT: Optional[float] = (
        float(os.environ["COMMAND_TIMEOUT"]) if os.getenv("COMMAND_TIMEOUT") else None
    )

    # Retry configuration
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "1.0"))

    # Upstream access
    GITHUB_TOKEN: str = os.getenv("GITHUB_TOKEN", "")

    # Host minimums
    MIN_CPUS: int = int(os.getenv("MIN_CPUS", "2"))
    MIN_MEMORY_GIB: int = int(os.getenv("MIN_MEMORY_GIB", "2"))

    # Cluster settings
    POD_NETWORK_CIDR: str = os.getenv("POD_NETWORK_CIDR", "192.168.0.0/16")
    PAUSE_IMAGE: str = os.getenv("PAUSE_IMAGE", "registry.k8s.io/pause:3.10")
    CALICO_VERSION: str = os.getenv("CALICO_VERSION", "v3.28.0")

    # Version pins (unset means "latest stable")
    CONTAINERD_VERSION: Optional[str] = _optional("CONTAINERD_VERSION")
    RUNC_VERSION: Optional[str] = _optional("RUNC_VERSION")
    CNI_PLUGINS_VERSION: Optional[str] = _optional("CNI_PLUGINS_VERSION")
    KUBERNETES_VERSION: Optional[str] = _optional("KUBERNETES_VERSION")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    # Security
    REDACT_KEYS: tuple = ("authorization", "token", "password", "secret")

    @classmethod
    def validate(cls) -> None:
        """Validate numeric configuration."""
        problems = []
        if cls.HTTP_TIMEOUT <= 0:
            problems.append("HTTP_TIMEOUT must be positive")
        if cls.MAX_RETRIES < 0:
            problems.append("MAX_RETRIES cannot be negative")
        if cls.RETRY_DELAY < 0:
            problems.append("RETRY_DELAY cannot be negative")
        if problems:
            raise ValueError(f"Invalid configuration: {', '.join(problems)}")

# Don't validate on import to allow for dynamic configuration
# Call Config.validate() explicitly when needed
