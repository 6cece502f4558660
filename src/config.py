"""
Configuration module for rolekeeper.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

STORE_BACKENDS = ("memory", "postgres", "kubernetes")


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "rolekeeper"
    user: str = "rolekeeper"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 5
    max_pool_size: int = 20

    @classmethod
    def from_env(cls):
        """Load from environment variables. The password is checked on use."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "rolekeeper"),
            user=os.getenv("DB_USER", "rolekeeper"),
            password=os.getenv("DB_PASSWORD", ""),
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "5")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "20")),
        )

    def require_password(self) -> None:
        """Raise unless a password is configured."""
        if not self.password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )


@dataclass
class StoreConfig:
    """Backing object store selection."""

    backend: str = "postgres"
    kube_in_cluster: bool = False
    kubeconfig: Optional[str] = None
    timeout: Optional[float] = None  # seconds per store call, None = unbounded

    def __post_init__(self):
        if self.backend not in STORE_BACKENDS:
            raise ValueError(
                f"Unknown store backend '{self.backend}'. "
                f"Expected one of: {', '.join(STORE_BACKENDS)}"
            )

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        timeout = float(os.getenv("STORE_TIMEOUT", "0"))
        return cls(
            backend=os.getenv("STORE_BACKEND", "postgres").lower(),
            kube_in_cluster=os.getenv("KUBE_IN_CLUSTER", "false").lower() == "true",
            kubeconfig=os.getenv("KUBECONFIG") or None,
            timeout=timeout if timeout > 0 else None,
        )


@dataclass
class ControllerConfig:
    """Per-instance reconciliation configuration."""

    max_concurrent_reconciles: int = 5

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    store: StoreConfig
    controller: ControllerConfig
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            store=StoreConfig.from_env(),
            controller=ControllerConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            store=StoreConfig(),
            controller=ControllerConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
