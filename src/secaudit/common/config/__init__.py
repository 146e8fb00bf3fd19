"""Configuration module - environment driven settings."""

from secaudit.common.config.settings import (
    AuditStoreType,
    Config,
    Environment,
    LogLevel,
    get_config,
    reset_config,
)

__all__ = [
    "AuditStoreType",
    "Config",
    "Environment",
    "LogLevel",
    "get_config",
    "reset_config",
]
