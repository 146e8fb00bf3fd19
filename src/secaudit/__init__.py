"""secaudit - Tamper-evident security audit logging."""

__version__ = "0.1.0"

from secaudit.audit import (
    AuditAction,
    AuditEventType,
    AuditService,
    AuditSeverity,
    create_audit_service,
)

__all__ = [
    "AuditAction",
    "AuditEventType",
    "AuditService",
    "AuditSeverity",
    "create_audit_service",
]
