"""Audit schemas - type definitions for security audit events and queries.
"""

import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator

from secaudit.common.constants import QueryConstants
from secaudit.common.exceptions import IntegrityError


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditEventType(str, Enum):
    """Categories of security events."""
    AUTH = "AUTH"
    USER_MGMT = "USER_MGMT"
    SECURITY = "SECURITY"
    DATA_ACCESS = "DATA_ACCESS"
    SYSTEM = "SYSTEM"


class AuditSeverity(str, Enum):
    """Severity levels for events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AuditAction(str, Enum):
    """Specific security actions."""
    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    LOGIN_LOCKED = "login_locked"
    SESSION_CREATED = "session_created"
    SESSION_EXPIRED = "session_expired"
    SESSION_TERMINATED = "session_terminated"
    SESSION_INVALIDATION = "session_invalidation"

    # Passwords
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_RESET_FAILED = "password_reset_failed"

    # Two-factor authentication
    TWO_FACTOR_ENABLED = "two_factor_enabled"
    TWO_FACTOR_DISABLED = "two_factor_disabled"
    TWO_FACTOR_VERIFIED = "two_factor_verified"
    TWO_FACTOR_FAILED = "two_factor_failed"
    TWO_FACTOR_SETUP = "two_factor_setup"
    TWO_FACTOR_BACKUP_CODES_GENERATED = "two_factor_backup_codes_generated"

    # Email verification
    EMAIL_VERIFICATION_SENT = "email_verification_sent"
    EMAIL_VERIFIED = "email_verified"
    EMAIL_VERIFICATION_FAILED = "email_verification_failed"

    # User management
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    USER_ACTIVATED = "user_activated"
    USER_DEACTIVATED = "user_deactivated"

    # Profile
    PROFILE_CREATE = "profile_create"
    PROFILE_UPDATE = "profile_update"
    PROFILE_DELETE = "profile_delete"
    PROFILE_VIEW = "profile_view"
    PREFERENCES_UPDATE = "preferences_update"
    SOCIAL_LINK_UPDATE = "social_link_update"
    AVATAR_UPLOAD = "avatar_upload"
    AVATAR_UPDATE = "avatar_update"
    AVATAR_DELETE = "avatar_delete"
    AVATAR_UPLOAD_INITIATED = "avatar_upload_initiated"
    AVATAR_UPLOAD_FAILED = "avatar_upload_failed"

    # OAuth account linking
    OAUTH_LINK = "oauth_link"
    OAUTH_LINK_INITIATED = "oauth_link_initiated"
    OAUTH_UNLINK = "oauth_unlink"
    OAUTH_TOKEN_VALIDATION_FAILED = "oauth_token_validation_failed"

    # Security
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    UNAUTHORIZED_MODIFICATION = "unauthorized_modification"
    PERMISSION_DENIED = "permission_denied"
    ANOMALY_DETECTED = "anomaly_detected"
    MALWARE_DETECTED = "malware_detected"

    # Data access
    DATA_VIEWED = "data_viewed"
    DATA_EXPORTED = "data_exported"
    DATA_IMPORTED = "data_imported"
    FILE_ACCESS = "file_access"
    UPLOAD_TOKEN_GENERATED = "upload_token_generated"

    # System
    SYSTEM_CONFIG_CHANGED = "system_config_changed"
    BACKUP_CREATED = "backup_created"
    MAINTENANCE_MODE = "maintenance_mode"
    DATA_RETENTION_CLEANUP = "data_retention_cleanup"


_A = AuditAction

# Actions each event type may carry
EVENT_TYPE_ACTIONS: Dict[AuditEventType, FrozenSet[AuditAction]] = {
    AuditEventType.AUTH: frozenset({
        _A.LOGIN, _A.LOGOUT, _A.LOGIN_FAILED, _A.LOGIN_LOCKED,
        _A.SESSION_CREATED, _A.SESSION_EXPIRED, _A.SESSION_TERMINATED,
        _A.SESSION_INVALIDATION,
        _A.PASSWORD_RESET_REQUESTED, _A.PASSWORD_RESET_COMPLETED,
        _A.PASSWORD_CHANGED, _A.PASSWORD_RESET_FAILED,
        _A.TWO_FACTOR_ENABLED, _A.TWO_FACTOR_DISABLED, _A.TWO_FACTOR_VERIFIED,
        _A.TWO_FACTOR_FAILED, _A.TWO_FACTOR_SETUP,
        _A.TWO_FACTOR_BACKUP_CODES_GENERATED,
        _A.EMAIL_VERIFICATION_SENT, _A.EMAIL_VERIFIED,
        _A.EMAIL_VERIFICATION_FAILED,
    }),
    AuditEventType.USER_MGMT: frozenset({
        _A.USER_CREATED, _A.USER_UPDATED, _A.USER_DELETED,
        _A.USER_ACTIVATED, _A.USER_DEACTIVATED,
        _A.PROFILE_CREATE, _A.PROFILE_UPDATE, _A.PROFILE_DELETE,
        _A.PREFERENCES_UPDATE, _A.SOCIAL_LINK_UPDATE,
        _A.AVATAR_UPLOAD, _A.AVATAR_UPDATE, _A.AVATAR_DELETE,
        _A.OAUTH_LINK, _A.OAUTH_UNLINK,
    }),
    AuditEventType.SECURITY: frozenset({
        _A.SUSPICIOUS_ACTIVITY, _A.RATE_LIMIT_EXCEEDED,
        _A.UNAUTHORIZED_ACCESS, _A.UNAUTHORIZED_MODIFICATION,
        _A.PERMISSION_DENIED, _A.ANOMALY_DETECTED, _A.MALWARE_DETECTED,
        _A.OAUTH_LINK, _A.OAUTH_LINK_INITIATED,
        _A.OAUTH_TOKEN_VALIDATION_FAILED, _A.AVATAR_UPLOAD_FAILED,
        _A.SYSTEM_CONFIG_CHANGED,
    }),
    AuditEventType.DATA_ACCESS: frozenset({
        _A.DATA_VIEWED, _A.DATA_EXPORTED, _A.DATA_IMPORTED,
        _A.PROFILE_VIEW, _A.FILE_ACCESS, _A.AVATAR_UPLOAD_INITIATED,
        _A.UPLOAD_TOKEN_GENERATED,
    }),
    AuditEventType.SYSTEM: frozenset({
        _A.SYSTEM_CONFIG_CHANGED, _A.BACKUP_CREATED, _A.MAINTENANCE_MODE,
        _A.DATA_RETENTION_CLEANUP,
    }),
}

del _A


def is_action_compatible(event_type: AuditEventType, action: AuditAction) -> bool:
    """Check whether an action may be recorded under an event type."""
    return action in EVENT_TYPE_ACTIONS.get(event_type, frozenset())


class AuditEvent(BaseModel):
    """A single immutable security audit event.

    The checksum covers every field except ``id``, ``checksum`` and
    ``persisted_at``, which the store fills in at persistence time.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(
        default=None,
        description="Store-assigned identifier (absent before persistence)"
    )
    event_type: AuditEventType = Field(
        ...,
        description="Category of the event"
    )
    action: AuditAction = Field(
        ...,
        description="Specific action being recorded"
    )
    success: bool = Field(
        default=True,
        description="Outcome of the action"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Actor identity
    user_id: Optional[str] = Field(default=None, description="Acting user ID")
    email: Optional[str] = Field(default=None, description="Acting user email")

    # Request context
    ip_address: Optional[str] = Field(default=None, description="Client IP address")
    user_agent: Optional[str] = Field(default=None, description="Client user agent")
    session_id: Optional[str] = Field(default=None, description="Session ID")
    request_id: Optional[str] = Field(default=None, description="Request ID")

    resource: Optional[str] = Field(
        default=None,
        description="Identifier of the affected object"
    )
    event_data: Dict[str, JsonValue] = Field(
        default_factory=dict,
        description="Structured payload"
    )

    # Integrity
    checksum: Optional[str] = Field(
        default=None,
        description="Digest over the canonical encoding of all other fields"
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the event was created"
    )
    persisted_at: Optional[datetime] = Field(
        default=None,
        description="When the store persisted the event"
    )

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("persisted_at")
    @classmethod
    def _normalize_persisted_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @field_validator("event_data")
    @classmethod
    def _reject_non_finite_numbers(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        # NaN and infinity have no canonical JSON encoding
        json.dumps(value, allow_nan=False)
        return value

    def validation_errors(self) -> List[str]:
        """Return model-level problems with this event (empty when valid)."""
        errors: List[str] = []

        if not is_action_compatible(self.event_type, self.action):
            errors.append(
                f"Event type {self.event_type.value} and action "
                f"{self.action.value} are not compatible"
            )

        if self.checksum is not None and not self.checksum:
            errors.append("Checksum must not be empty")

        return errors

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors()

    def to_json(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return self.model_dump(mode="json")

    @classmethod
    def from_json(cls, data: Union[str, Mapping[str, Any]]) -> "AuditEvent":
        """Deserialize from a JSON string or dict, keeping the stored checksum."""
        if isinstance(data, str):
            data = json.loads(data)
        return cls.model_validate(dict(data))


class AuditLogContext(BaseModel):
    """Caller-supplied context for a convenience logging call."""
    model_config = ConfigDict(extra="forbid")

    user_id: Optional[str] = None
    email: Optional[str] = None
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    resource: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    event_data: Dict[str, JsonValue] = Field(default_factory=dict)


class AuditLogFilter(BaseModel):
    """Query filter with limit/offset pagination."""
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = Field(default=None, description="Exact user ID")
    email: Optional[str] = Field(default=None, description="Case-insensitive substring")
    event_type: Optional[AuditEventType] = None
    action: Optional[AuditAction] = None
    success: Optional[bool] = None
    severity: Optional[AuditSeverity] = None
    ip_address: Optional[str] = None
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    resource: Optional[str] = Field(default=None, description="Case-insensitive substring")
    date_from: Optional[datetime] = Field(default=None, description="Inclusive lower bound")
    date_to: Optional[datetime] = Field(default=None, description="Inclusive upper bound")

    limit: int = Field(default=QueryConstants.DEFAULT_PAGE_SIZE, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("date_from", "date_to")
    @classmethod
    def _normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def matches(self, event: AuditEvent) -> bool:
        """Check whether an event satisfies every set criterion."""
        if self.user_id and event.user_id != self.user_id:
            return False
        if self.email and (
            event.email is None or self.email.lower() not in event.email.lower()
        ):
            return False
        if self.event_type and event.event_type != self.event_type:
            return False
        if self.action and event.action != self.action:
            return False
        if self.success is not None and event.success != self.success:
            return False
        if self.severity and event.severity != self.severity:
            return False
        if self.ip_address and event.ip_address != self.ip_address:
            return False
        if self.session_id and event.session_id != self.session_id:
            return False
        if self.request_id and event.request_id != self.request_id:
            return False
        if self.resource and (
            event.resource is None or self.resource.lower() not in event.resource.lower()
        ):
            return False
        if self.date_from and event.created_at < self.date_from:
            return False
        if self.date_to and event.created_at > self.date_to:
            return False
        return True

    def page_window(self) -> Tuple[int, int, int]:
        """Convert limit/offset into (page, page_size, skip)."""
        page = max(1, self.offset // self.limit + 1)
        page_size = min(self.limit, QueryConstants.MAX_PAGE_SIZE)
        skip = (page - 1) * page_size
        return page, page_size, skip


class PaginatedResult(BaseModel):
    """One page of audit events."""
    data: List[AuditEvent] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = QueryConstants.DEFAULT_PAGE_SIZE
    total_pages: int = 0

    @classmethod
    def from_matches(cls, matches: List[AuditEvent], query: AuditLogFilter) -> "PaginatedResult":
        """Build a page from all matching events already sorted newest first."""
        page, page_size, skip = query.page_window()
        total = len(matches)
        return cls(
            data=matches[skip:skip + page_size],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )


class AuditStats(BaseModel):
    """Aggregated counts over matching events."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    by_event_type: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    recent_activity: List[AuditEvent] = Field(default_factory=list)

    @classmethod
    def from_matches(cls, matches: List[AuditEvent]) -> "AuditStats":
        """Aggregate events already sorted newest first."""
        by_event_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        successful = 0
        for event in matches:
            if event.success:
                successful += 1
            by_event_type[event.event_type.value] = by_event_type.get(event.event_type.value, 0) + 1
            by_severity[event.severity.value] = by_severity.get(event.severity.value, 0) + 1

        return cls(
            total=len(matches),
            successful=successful,
            failed=len(matches) - successful,
            by_event_type=by_event_type,
            by_severity=by_severity,
            recent_activity=matches[:QueryConstants.RECENT_ACTIVITY_LIMIT],
        )


class IntegrityReport(BaseModel):
    """Outcome of checksum verification over a set of stored events."""
    verified: List[str] = Field(default_factory=list)
    corrupted: List[str] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)

    @property
    def is_intact(self) -> bool:
        return not self.corrupted

    def raise_for_corruption(self) -> None:
        """Raise IntegrityError if any record failed verification."""
        if self.corrupted:
            raise IntegrityError(
                f"{len(self.corrupted)} audit record(s) failed integrity verification",
                corrupted_ids=self.corrupted,
            )
