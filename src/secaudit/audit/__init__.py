"""Audit module - tamper-evident logging of security events.

Events are sealed with a checksum, buffered in a queue and written to a store
in batches. Stored events can be queried, verified and expired by retention
policy.

Components:
- AuditService: High-level facade for logging and querying events
- AuditQueue: Batched, retrying writes to a store
- AuditStore: Abstract base class for storage backends
- InMemoryAuditStore: Process-local store for development and tests
- DynamoDBAuditStore: DynamoDB-backed store
- IntegrityCodec: Canonical encoding and checksums
- RetentionManager: Tiered, age-based deletion
"""

from secaudit.audit.schemas import (
    AuditAction,
    AuditEvent,
    AuditEventType,
    AuditLogContext,
    AuditLogFilter,
    AuditSeverity,
    AuditStats,
    IntegrityReport,
    PaginatedResult,
)
from secaudit.audit.integrity import IntegrityCodec
from secaudit.audit.store import AuditStore, InMemoryAuditStore
from secaudit.audit.dynamodb_store import DynamoDBAuditStore
from secaudit.audit.queue import AuditQueue, FlushResult, FlushTrigger
from secaudit.audit.retention import RetentionManager, RetentionPolicy, RetentionStrategy
from secaudit.audit.context import (
    ContextVarProvider,
    NullContextProvider,
    RequestContext,
    context_from_headers,
    request_context,
)
from secaudit.audit.diagnostics import DiagnosticEvent, DiagnosticKind, LoggingDiagnosticsSink
from secaudit.audit.service import AuditService
from secaudit.audit.config import (
    create_audit_service,
    create_audit_store,
    create_retention_manager,
)

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditEventType",
    "AuditLogContext",
    "AuditLogFilter",
    "AuditSeverity",
    "AuditStats",
    "IntegrityReport",
    "PaginatedResult",
    "IntegrityCodec",
    "AuditStore",
    "InMemoryAuditStore",
    "DynamoDBAuditStore",
    "AuditQueue",
    "FlushResult",
    "FlushTrigger",
    "RetentionManager",
    "RetentionPolicy",
    "RetentionStrategy",
    "ContextVarProvider",
    "NullContextProvider",
    "RequestContext",
    "context_from_headers",
    "request_context",
    "DiagnosticEvent",
    "DiagnosticKind",
    "LoggingDiagnosticsSink",
    "AuditService",
    "create_audit_service",
    "create_audit_store",
    "create_retention_manager",
]
