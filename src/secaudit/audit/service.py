"""Audit Service - entry point for recording and querying security events.

Producers call the ``log_*`` methods; events are resolved against the ambient
request context, sealed with a checksum, validated and handed to the queue.
Logging never raises: failures are reported to the diagnostics sink and the
call returns False.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from secaudit.audit.context import ContextProvider, ContextVarProvider, RequestContext
from secaudit.audit.diagnostics import (
    DiagnosticEvent,
    DiagnosticKind,
    DiagnosticsSink,
    LoggingDiagnosticsSink,
    emit,
)
from secaudit.audit.integrity import IntegrityCodec
from secaudit.audit.queue import AuditQueue, FlushResult
from secaudit.audit.retention import RetentionManager, RetentionPolicy
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
    ensure_utc,
    utc_now,
)
from secaudit.audit.store import AuditStore, InMemoryAuditStore
from secaudit.common.constants import QueryConstants
from secaudit.common.exceptions import ValidationError

logger = logging.getLogger(__name__)

ContextInput = Optional[Union[AuditLogContext, Mapping[str, Any]]]

# Fields that may come from the ambient request context
_AMBIENT_FIELDS = ("user_id", "email", "ip_address", "user_agent", "session_id", "request_id")


def _pydantic_errors(error: PydanticValidationError) -> List[str]:
    return [
        f"{'.'.join(str(loc) for loc in err['loc']) or 'event'}: {err['msg']}"
        for err in error.errors(include_url=False)
    ]


class AuditService:
    """Records security audit events and exposes queries over the store."""

    def __init__(
        self,
        store: Optional[AuditStore] = None,
        queue: Optional[AuditQueue] = None,
        context_provider: Optional[ContextProvider] = None,
        codec: Optional[IntegrityCodec] = None,
        retention: Optional[RetentionManager] = None,
        clock: Callable[[], datetime] = utc_now,
        diagnostics: Optional[DiagnosticsSink] = None,
    ):
        """Initialize audit service.

        Args:
            store: Audit store backend. Creates InMemoryAuditStore if not provided.
            queue: Write queue. Creates one over ``store`` if not provided.
            context_provider: Source of ambient request metadata.
            codec: Checksum codec. Defaults to the store's codec.
            retention: Retention manager. Uses the default policy if not provided.
            clock: Source of event timestamps.
            diagnostics: Sink for absorbed failures.
        """
        self.diagnostics = diagnostics or LoggingDiagnosticsSink(logger)
        self.store = store if store is not None else InMemoryAuditStore(codec=codec)
        self.codec = codec or self.store.codec
        self.queue = queue if queue is not None else AuditQueue(self.store, diagnostics=self.diagnostics)
        self.context_provider = context_provider or ContextVarProvider()
        self.retention = retention if retention is not None else RetentionManager(self.store, clock=clock)
        self.clock = clock

        # Last timestamp handed out, per producer thread
        self._clock_state = threading.local()

    # ========== LIFECYCLE ==========

    def start(self) -> None:
        self.queue.start()

    def shutdown(self, timeout: Optional[float] = None) -> FlushResult:
        """Flush pending events and stop the queue worker."""
        return self.queue.stop(timeout)

    def force_flush_queue(self) -> FlushResult:
        return self.queue.force_flush()

    def __enter__(self) -> "AuditService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ========== EVENT CONSTRUCTION ==========

    def _timestamp(self) -> datetime:
        """Current time, never earlier than the last one on this thread."""
        now = ensure_utc(self.clock())
        last = getattr(self._clock_state, "last", None)
        if last is not None and now < last:
            now = last
        self._clock_state.last = now
        return now

    def _ambient_context(self) -> Optional[RequestContext]:
        try:
            return self.context_provider.current()
        except Exception as e:
            emit(self.diagnostics, DiagnosticEvent(
                kind=DiagnosticKind.CONTEXT_UNAVAILABLE,
                message="Request context unavailable; ambient fields left unset",
                error=e,
            ))
            return None

    @staticmethod
    def _coerce_context(context: ContextInput) -> AuditLogContext:
        if context is None:
            return AuditLogContext()
        if isinstance(context, AuditLogContext):
            return context
        if not isinstance(context, Mapping):
            raise ValidationError(
                "Invalid audit context",
                errors=[f"context: expected a mapping, got {type(context).__name__}"],
            )
        try:
            return AuditLogContext.model_validate(dict(context))
        except PydanticValidationError as e:
            raise ValidationError("Invalid audit context", errors=_pydantic_errors(e)) from e

    def build_event(
        self,
        event_type: Union[AuditEventType, str],
        action: Union[AuditAction, str],
        success: bool = True,
        severity: Union[AuditSeverity, str] = AuditSeverity.INFO,
        context: ContextInput = None,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> AuditEvent:
        """Build and seal an event without queueing it.

        Explicit context values win over ``defaults``, which win over the
        ambient request context. ``defaults["event_data"]`` is merged under
        the caller's event_data.

        Raises:
            ValidationError: If the event is malformed or the action does not
                belong to the event type.
        """
        explicit = self._coerce_context(context)
        defaults = dict(defaults or {})
        ambient = self._ambient_context()

        resolved: Dict[str, Any] = {}
        for name in _AMBIENT_FIELDS:
            value = getattr(explicit, name)
            if value is None:
                value = defaults.get(name)
            if value is None and ambient is not None:
                value = getattr(ambient, name)
            resolved[name] = value

        try:
            event = AuditEvent(
                event_type=event_type,
                action=action,
                success=success,
                severity=severity,
                resource=explicit.resource,
                event_data={**(defaults.get("event_data") or {}), **explicit.event_data},
                created_at=self._timestamp(),
                **resolved,
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid audit event", errors=_pydantic_errors(e)) from e

        errors = event.validation_errors()
        if errors:
            raise ValidationError("Invalid audit event", errors=errors)

        return self.codec.seal(event)

    def _record(
        self,
        event_type: Union[AuditEventType, str],
        action: Union[AuditAction, str],
        success: bool,
        severity: Union[AuditSeverity, str],
        context: ContextInput,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        details = {"event_type": str(getattr(event_type, "value", event_type)),
                   "action": str(getattr(action, "value", action))}
        try:
            event = self.build_event(event_type, action, success, severity, context, defaults)
            self.queue.enqueue(event)
            return True
        except ValidationError as e:
            emit(self.diagnostics, DiagnosticEvent(
                kind=DiagnosticKind.VALIDATION_FAILED,
                message="Dropped invalid audit event",
                error=e,
                details={**details, "errors": e.errors},
            ))
        except Exception as e:
            emit(self.diagnostics, DiagnosticEvent(
                kind=DiagnosticKind.LOG_FAILED,
                message="Failed to record audit event",
                error=e,
                details=details,
            ))
        return False

    # ========== LOGGING ==========

    def log_event(self, raw: Mapping[str, Any]) -> bool:
        """Record an event from a flat mapping.

        ``event_type`` and ``action`` are required; ``success`` and
        ``severity`` default to True and INFO. Remaining keys are context
        fields (user_id, email, resource, event_data, ...).
        """
        try:
            fields = dict(raw)
            event_type = fields.pop("event_type", None)
            action = fields.pop("action", None)
            success = fields.pop("success", True)
            severity = fields.pop("severity", AuditSeverity.INFO)
        except Exception as e:
            emit(self.diagnostics, DiagnosticEvent(
                kind=DiagnosticKind.LOG_FAILED,
                message="Unreadable audit event payload",
                error=e,
            ))
            return False

        if event_type is None or action is None:
            emit(self.diagnostics, DiagnosticEvent(
                kind=DiagnosticKind.VALIDATION_FAILED,
                message="Dropped audit event without event_type or action",
                details={"keys": sorted(str(k) for k in fields)},
            ))
            return False

        return self._record(event_type, action, success, severity, fields)

    def log_auth_event(
        self, action: AuditAction, context: ContextInput = None, success: bool = True
    ) -> bool:
        severity = AuditSeverity.INFO if success else AuditSeverity.WARN
        return self._record(AuditEventType.AUTH, action, success, severity, context)

    def log_security_event(
        self,
        action: AuditAction,
        context: ContextInput = None,
        severity: AuditSeverity = AuditSeverity.ERROR,
    ) -> bool:
        # Security events record a problem, never a success
        return self._record(AuditEventType.SECURITY, action, False, severity, context)

    def log_user_management_event(
        self, action: AuditAction, context: ContextInput = None, success: bool = True
    ) -> bool:
        return self._record(AuditEventType.USER_MGMT, action, success, AuditSeverity.INFO, context)

    def log_data_access_event(
        self, action: AuditAction, context: ContextInput = None, success: bool = True
    ) -> bool:
        return self._record(AuditEventType.DATA_ACCESS, action, success, AuditSeverity.INFO, context)

    def log_system_event(
        self,
        action: AuditAction,
        context: ContextInput = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> bool:
        return self._record(AuditEventType.SYSTEM, action, True, severity, context)

    # ========== COMMON EVENTS ==========
    # Helper fields are defaults; caller context overrides them

    def log_successful_login(self, user_id: str, email: str, context: ContextInput = None) -> bool:
        return self._record(
            AuditEventType.AUTH, AuditAction.LOGIN, True, AuditSeverity.INFO, context,
            defaults={"user_id": user_id, "email": email},
        )

    def log_failed_login(self, email: str, reason: str, context: ContextInput = None) -> bool:
        return self._record(
            AuditEventType.AUTH, AuditAction.LOGIN_FAILED, False, AuditSeverity.WARN, context,
            defaults={"email": email, "event_data": {"reason": reason}},
        )

    def log_password_reset(self, email: str, success: bool, context: ContextInput = None) -> bool:
        action = AuditAction.PASSWORD_RESET_COMPLETED if success else AuditAction.PASSWORD_RESET_FAILED
        severity = AuditSeverity.INFO if success else AuditSeverity.WARN
        return self._record(
            AuditEventType.AUTH, action, success, severity, context,
            defaults={"email": email},
        )

    def log_suspicious_activity(
        self,
        reason: str,
        severity: AuditSeverity = AuditSeverity.ERROR,
        context: ContextInput = None,
    ) -> bool:
        return self._record(
            AuditEventType.SECURITY, AuditAction.SUSPICIOUS_ACTIVITY, False, severity, context,
            defaults={"event_data": {"reason": reason}},
        )

    def log_rate_limit_exceeded(self, action: str, context: ContextInput = None) -> bool:
        return self._record(
            AuditEventType.SECURITY, AuditAction.RATE_LIMIT_EXCEEDED, False, AuditSeverity.WARN, context,
            defaults={"event_data": {"limited_action": action}},
        )

    # ========== QUERIES ==========

    def get_audit_logs(self, query: Optional[AuditLogFilter] = None) -> PaginatedResult:
        return self.store.find_many(query or AuditLogFilter())

    def get_audit_logs_by_user_id(
        self,
        user_id: str,
        limit: int = QueryConstants.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> PaginatedResult:
        return self.store.find_many(AuditLogFilter(user_id=user_id, limit=limit, offset=offset))

    def get_audit_logs_by_request_id(self, request_id: str) -> List[AuditEvent]:
        """All events recorded for one request, oldest first."""
        return self.store.find_by_request_id(request_id)

    def get_failed_logins(
        self,
        ip_address: Optional[str] = None,
        email: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = QueryConstants.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> PaginatedResult:
        return self.store.find_many(AuditLogFilter(
            event_type=AuditEventType.AUTH,
            action=AuditAction.LOGIN_FAILED,
            success=False,
            ip_address=ip_address,
            email=email,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        ))

    def get_suspicious_activity(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = QueryConstants.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> PaginatedResult:
        return self.store.find_many(AuditLogFilter(
            event_type=AuditEventType.SECURITY,
            severity=AuditSeverity.ERROR,
            success=False,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        ))

    def get_audit_stats(self, query: Optional[AuditLogFilter] = None) -> AuditStats:
        return self.store.get_stats(query)

    def verify_audit_log_integrity(self, ids: Sequence[str]) -> IntegrityReport:
        """Recompute checksums of stored events.

        Returns a report of verified, corrupted and missing ids; never raises
        on a mismatch.
        """
        return self.store.verify_integrity(list(ids))

    # ========== RETENTION ==========

    def get_retention_policy(self) -> RetentionPolicy:
        return self.retention.get_policy()

    def set_retention_policy(self, overrides: Union[RetentionPolicy, Mapping[str, Any]]) -> RetentionPolicy:
        return self.retention.set_policy(overrides)

    def cleanup_expired_logs(self) -> int:
        return self.retention.cleanup()

    def run_scheduled_cleanup(self) -> Optional[int]:
        """Run retention cleanup and record the outcome as a system event.

        Intended for a scheduler. Returns the deleted count, or None if the
        cleanup failed (the failure goes to diagnostics).
        """
        try:
            deleted = self.cleanup_expired_logs()
        except Exception as e:
            emit(self.diagnostics, DiagnosticEvent(
                kind=DiagnosticKind.CLEANUP_FAILED,
                message="Scheduled audit log cleanup failed",
                error=e,
            ))
            return None

        self.log_system_event(
            AuditAction.DATA_RETENTION_CLEANUP,
            {"event_data": {
                "operation": "audit_log_cleanup",
                "deleted_records": deleted,
                "strategy": self.retention.get_policy().strategy.value,
            }},
        )
        return deleted

    # ========== INTROSPECTION ==========

    def get_stats(self) -> Dict[str, Any]:
        return {
            "queue": self.queue.get_stats(),
            "store_healthy": self.store.health_check(),
        }
