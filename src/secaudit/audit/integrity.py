"""Integrity codec - canonical serialization and checksums for audit events.

The checksum is a plain digest of a canonical JSON encoding. It detects
accidental corruption and tampering by anyone who does not also recompute
the checksum; there is no key or external trust anchor.
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Tuple

from secaudit.audit.schemas import AuditEvent
from secaudit.common.constants import AuditConstants


class IntegrityCodec:
    """Computes and verifies audit event checksums."""

    # Every field except id, checksum and persisted_at
    CHECKSUM_FIELDS: Tuple[str, ...] = (
        "event_type",
        "action",
        "success",
        "severity",
        "user_id",
        "email",
        "ip_address",
        "user_agent",
        "session_id",
        "request_id",
        "resource",
        "event_data",
        "created_at",
    )

    TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

    def __init__(self, hash_algorithm: str = AuditConstants.HASH_ALGORITHM):
        """Initialize codec.

        Args:
            hash_algorithm: Any algorithm accepted by ``hashlib.new``.

        Raises:
            ValueError: If the algorithm is not available.
        """
        hashlib.new(hash_algorithm)
        self.hash_algorithm = hash_algorithm

    def _serialize_value(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).strftime(self.TIMESTAMP_FORMAT)
        if isinstance(value, dict):
            return {str(k): self._serialize_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._serialize_value(item) for item in value]
        return value

    def payload(self, event: AuditEvent) -> Dict[str, Any]:
        """Return the checksum-covered fields in serializable form."""
        return {
            name: self._serialize_value(getattr(event, name))
            for name in self.CHECKSUM_FIELDS
        }

    def canonicalize(self, event: AuditEvent) -> str:
        """Serialize the covered fields with sorted keys and fixed separators."""
        return json.dumps(
            self.payload(event),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )

    def checksum(self, event: AuditEvent) -> str:
        """Compute the hex digest of the canonical encoding."""
        hasher = hashlib.new(self.hash_algorithm)
        hasher.update(self.canonicalize(event).encode("utf-8"))
        return hasher.hexdigest()

    def seal(self, event: AuditEvent) -> AuditEvent:
        """Return a copy of the event with its checksum filled in."""
        return event.model_copy(update={"checksum": self.checksum(event)})

    def verify(self, event: AuditEvent) -> bool:
        """Check the stored checksum against the event's current fields."""
        if not event.checksum:
            return False
        try:
            expected = self.checksum(event)
        except (TypeError, ValueError):
            return False
        return hmac.compare_digest(expected, event.checksum)
