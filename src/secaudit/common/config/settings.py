"""Configuration management - Centralized configuration for secaudit.

Provides environment-aware configuration with sensible defaults.
All configuration is loaded from environment variables with fallbacks.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from secaudit.common.constants import AuditConstants
from secaudit.common.exceptions import ConfigurationError


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AuditStoreType(str, Enum):
    """Audit storage backend types."""
    MEMORY = "memory"
    DYNAMODB = "dynamodb"


def _get_project_root() -> Path:
    """Get the project root directory."""
    # settings.py -> config -> common -> secaudit -> src -> project_root
    current = Path(__file__).resolve()
    return current.parent.parent.parent.parent.parent


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_enum(enum_cls, name: str, default: str):
    raw = os.getenv(name, default)
    try:
        return enum_cls(raw)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigurationError(
            f"{name} must be one of: {allowed}; got {raw!r}"
        ) from e


@dataclass
class Config:
    """Central configuration object for secaudit.

    All settings can be overridden via environment variables prefixed with SECAUDIT_.

    Example:
        SECAUDIT_ENVIRONMENT=production
        SECAUDIT_STORE_TYPE=dynamodb
        SECAUDIT_DYNAMODB_TABLE=security-audit-log
    """

    # Core settings
    environment: Environment = field(
        default_factory=lambda: _env_enum(
            Environment, "SECAUDIT_ENVIRONMENT", "development"
        )
    )
    debug: bool = field(
        default_factory=lambda: os.getenv("SECAUDIT_DEBUG", "false").lower() == "true"
    )
    log_level: LogLevel = field(
        default_factory=lambda: _env_enum(LogLevel, "SECAUDIT_LOG_LEVEL", "INFO")
    )

    # Paths
    project_root: Path = field(default_factory=_get_project_root)

    # Store settings
    store_type: AuditStoreType = field(
        default_factory=lambda: _env_enum(
            AuditStoreType, "SECAUDIT_STORE_TYPE", "memory"
        )
    )
    dynamodb_table: Optional[str] = field(
        default_factory=lambda: os.getenv("SECAUDIT_DYNAMODB_TABLE")
    )
    aws_region: str = field(
        default_factory=lambda: os.getenv("AWS_REGION", "us-east-1")
    )
    aws_profile: Optional[str] = field(
        default_factory=lambda: os.getenv("AWS_PROFILE")
    )

    # Queue settings
    batch_size: int = field(
        default_factory=lambda: _env_int(
            "SECAUDIT_BATCH_SIZE", AuditConstants.BATCH_SIZE
        )
    )
    flush_interval_seconds: float = field(
        default_factory=lambda: _env_float(
            "SECAUDIT_FLUSH_INTERVAL_SECONDS", AuditConstants.FLUSH_INTERVAL_SECONDS
        )
    )
    retry_backoff_base: float = field(
        default_factory=lambda: _env_float(
            "SECAUDIT_RETRY_BACKOFF_BASE", AuditConstants.RETRY_BACKOFF_BASE_SECONDS
        )
    )
    retry_backoff_max: float = field(
        default_factory=lambda: _env_float(
            "SECAUDIT_RETRY_BACKOFF_MAX", AuditConstants.RETRY_BACKOFF_MAX_SECONDS
        )
    )

    # Integrity
    hash_algorithm: str = field(
        default_factory=lambda: os.getenv(
            "SECAUDIT_HASH_ALGORITHM", AuditConstants.HASH_ALGORITHM
        )
    )

    # Retention settings
    retention_policy_file: Optional[Path] = field(
        default_factory=lambda: (
            Path(os.environ["SECAUDIT_RETENTION_POLICY_FILE"])
            if os.getenv("SECAUDIT_RETENTION_POLICY_FILE") else None
        )
    )
    retention_strategy: str = field(
        default_factory=lambda: os.getenv("SECAUDIT_RETENTION_STRATEGY", "combined")
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.store_type == AuditStoreType.DYNAMODB and not self.dynamodb_table:
            raise ConfigurationError(
                "SECAUDIT_DYNAMODB_TABLE must be set when using DynamoDB audit storage"
            )

        if self.batch_size < 1:
            raise ConfigurationError(
                "batch_size must be at least 1",
                details={"batch_size": self.batch_size},
            )

        if self.flush_interval_seconds <= 0:
            raise ConfigurationError(
                "flush_interval_seconds must be positive",
                details={"flush_interval_seconds": self.flush_interval_seconds},
            )

        if self.retry_backoff_max < self.retry_backoff_base:
            raise ConfigurationError(
                "retry_backoff_max must not be smaller than retry_backoff_base",
                details={
                    "retry_backoff_base": self.retry_backoff_base,
                    "retry_backoff_max": self.retry_backoff_max,
                },
            )

        if self.retention_strategy not in ("combined", "severity"):
            raise ConfigurationError(
                "retention_strategy must be 'combined' or 'severity'",
                details={"retention_strategy": self.retention_strategy},
            )

        # Warn about debug in production
        if self.environment == Environment.PRODUCTION and self.debug:
            import warnings
            warnings.warn(
                "Debug mode is enabled in production environment",
                RuntimeWarning,
                stacklevel=2
            )

    @property
    def config_dir(self) -> Path:
        """Get the config directory path."""
        return self.project_root / "config"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT


# Process-wide default instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config: The global configuration singleton.
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
