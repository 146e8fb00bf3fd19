"""Common utilities - logging, config, exceptions."""

from secaudit.common.logging import get_logger
from secaudit.common.config import Config, get_config, reset_config
from secaudit.common.exceptions import (
    SecAuditException,
    ConfigurationError,
    ValidationError,
    PersistenceError,
    IntegrityError,
    ContextExtractionError,
)

__all__ = [
    # Logging
    "get_logger",
    # Config
    "Config",
    "get_config",
    "reset_config",
    # Exceptions
    "SecAuditException",
    "ConfigurationError",
    "ValidationError",
    "PersistenceError",
    "IntegrityError",
    "ContextExtractionError",
]
