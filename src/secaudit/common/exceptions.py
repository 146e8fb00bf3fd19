"""Custom exceptions for secaudit.

Provides a hierarchy of exceptions for different error types.
All secaudit exceptions inherit from SecAuditException.
"""

from typing import Any, Dict, Optional


class SecAuditException(Exception):
    """Base exception for all secaudit errors.
    
    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """
    
    def __init__(
        self,
        message: str,
        code: str = "SECAUDIT_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for diagnostics output."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(SecAuditException):
    """Raised when configuration is invalid or missing."""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ValidationError(SecAuditException):
    """Raised when an audit event is malformed or uses unknown enum values."""
    
    def __init__(
        self,
        message: str,
        errors: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        self.errors = list(errors or [])
        details["errors"] = self.errors
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class PersistenceError(SecAuditException):
    """Raised when the audit store fails to read or write records."""
    
    def __init__(
        self,
        message: str,
        operation: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["operation"] = operation
        self.operation = operation
        super().__init__(message, code="PERSISTENCE_ERROR", details=details)


class IntegrityError(SecAuditException):
    """Raised on request when stored audit records fail checksum verification."""
    
    def __init__(
        self,
        message: str,
        corrupted_ids: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        self.corrupted_ids = list(corrupted_ids or [])
        details["corrupted_ids"] = self.corrupted_ids
        super().__init__(message, code="INTEGRITY_ERROR", details=details)


class ContextExtractionError(SecAuditException):
    """Raised when ambient request context cannot be read."""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONTEXT_ERROR", details=details)
