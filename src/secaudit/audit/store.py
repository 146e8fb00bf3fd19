"""Audit Store - Abstraction for audit log persistence.

This module provides an interface for audit storage backends,
decoupling the audit service from specific persistence mechanisms.

Design principles:
- Abstract base class for testability and extensibility
- Bulk writes; ids and persistence timestamps assigned by the store
- Thread-safe operations
- Deletion only in bulk, by age
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from secaudit.audit.integrity import IntegrityCodec
from secaudit.audit.schemas import (
    AuditEvent,
    AuditEventType,
    AuditLogFilter,
    AuditSeverity,
    AuditStats,
    IntegrityReport,
    PaginatedResult,
    ensure_utc,
    utc_now,
)
from secaudit.common.constants import AuditConstants


def new_event_id() -> str:
    """Generate a store-side event identifier."""
    return f"{AuditConstants.EVENT_ID_PREFIX}{uuid4().hex[:12]}"


def newest_first(events: Iterable[AuditEvent]) -> List[AuditEvent]:
    """Sort events by created_at descending."""
    return sorted(events, key=lambda e: e.created_at, reverse=True)


def _detached(events: Iterable[AuditEvent]) -> List[AuditEvent]:
    """Deep copies, so callers cannot reach stored payloads."""
    return [event.model_copy(deep=True) for event in events]


class AuditStore(ABC):
    """Abstract base class for audit storage backends.

    Implementations must provide thread-safe, append-only storage.
    Integrity verification is shared and implemented on top of
    ``find_by_ids``.
    """

    def __init__(self, codec: Optional[IntegrityCodec] = None):
        self.codec = codec or IntegrityCodec()

    @abstractmethod
    def create_many(self, events: Sequence[AuditEvent]) -> int:
        """Persist a batch of events.

        Args:
            events: Sealed events, in the order they should be written

        Returns:
            Number of records persisted

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    def find_many(self, query: Optional[AuditLogFilter] = None) -> PaginatedResult:
        """Retrieve one page of events matching a filter, newest first.

        Args:
            query: Filter and limit/offset pagination

        Returns:
            PaginatedResult for the requested window
        """
        pass

    @abstractmethod
    def find_by_ids(self, ids: Sequence[str]) -> List[AuditEvent]:
        """Load the events with the given ids. Unknown ids are skipped."""
        pass

    @abstractmethod
    def find_by_request_id(self, request_id: str) -> List[AuditEvent]:
        """All events for one request, oldest first."""
        pass

    @abstractmethod
    def count(self, query: Optional[AuditLogFilter] = None) -> int:
        """Count events matching a filter (pagination ignored)."""
        pass

    @abstractmethod
    def get_stats(self, query: Optional[AuditLogFilter] = None) -> AuditStats:
        """Aggregate totals, outcome counts and groupings for a filter."""
        pass

    @abstractmethod
    def delete_older_than(
        self,
        cutoff: datetime,
        severity: Optional[AuditSeverity] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> int:
        """Bulk-delete events created strictly before ``cutoff``.

        Args:
            cutoff: Events with created_at < cutoff are deleted
            severity: Restrict deletion to one severity tier
            event_type: Restrict deletion to one event type tier

        Returns:
            Number of deleted records
        """
        pass

    def find_by_id(self, event_id: str) -> Optional[AuditEvent]:
        found = self.find_by_ids([event_id])
        return found[0] if found else None

    def verify_integrity(self, ids: Sequence[str]) -> IntegrityReport:
        """Recompute checksums for the requested events.

        Never raises on a mismatch; corrupted ids are reported instead.
        """
        found = {event.id: event for event in self.find_by_ids(ids)}
        report = IntegrityReport()
        for event_id in ids:
            event = found.get(event_id)
            if event is None:
                report.missing.append(event_id)
            elif self.codec.verify(event):
                report.verified.append(event_id)
            else:
                report.corrupted.append(event_id)
        return report

    def health_check(self) -> bool:
        return True


class InMemoryAuditStore(AuditStore):
    """Process-local audit store.

    Used for development, tests and as the reference behaviour for other
    backends. Records are kept in insertion order keyed by id.
    """

    def __init__(
        self,
        codec: Optional[IntegrityCodec] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(codec)
        self.clock = clock
        self._records: Dict[str, AuditEvent] = {}
        self._lock = threading.RLock()

    def create_many(self, events: Sequence[AuditEvent]) -> int:
        persisted_at = self.clock()
        created = 0
        with self._lock:
            for event in events:
                event_id = event.id or new_event_id()
                # Replaying an already persisted id is a no-op
                if event_id in self._records:
                    continue
                self._records[event_id] = event.model_copy(
                    update={"id": event_id, "persisted_at": persisted_at}, deep=True
                )
                created += 1
        return created

    def _matching(self, query: Optional[AuditLogFilter]) -> List[AuditEvent]:
        query = query or AuditLogFilter()
        with self._lock:
            records = list(self._records.values())
        return newest_first(e for e in records if query.matches(e))

    def find_many(self, query: Optional[AuditLogFilter] = None) -> PaginatedResult:
        query = query or AuditLogFilter()
        page = PaginatedResult.from_matches(self._matching(query), query)
        page.data = _detached(page.data)
        return page

    def find_by_ids(self, ids: Sequence[str]) -> List[AuditEvent]:
        with self._lock:
            return _detached(self._records[i] for i in ids if i in self._records)

    def find_by_request_id(self, request_id: str) -> List[AuditEvent]:
        matches = self._matching(AuditLogFilter(request_id=request_id))
        return _detached(reversed(matches))

    def count(self, query: Optional[AuditLogFilter] = None) -> int:
        return len(self._matching(query))

    def get_stats(self, query: Optional[AuditLogFilter] = None) -> AuditStats:
        stats = AuditStats.from_matches(self._matching(query))
        stats.recent_activity = _detached(stats.recent_activity)
        return stats

    def delete_older_than(
        self,
        cutoff: datetime,
        severity: Optional[AuditSeverity] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> int:
        cutoff = ensure_utc(cutoff)
        with self._lock:
            expired = [
                event_id for event_id, event in self._records.items()
                if event.created_at < cutoff
                and (severity is None or event.severity == severity)
                and (event_type is None or event.event_type == event_type)
            ]
            for event_id in expired:
                del self._records[event_id]
        return len(expired)

    def replace_record(self, event: AuditEvent) -> None:
        """Overwrite a stored record in place.

        Only for simulating storage-level tampering in tests and drills.
        """
        if event.id is None:
            raise ValueError("Cannot replace a record without an id")
        with self._lock:
            if event.id not in self._records:
                raise KeyError(event.id)
            self._records[event.id] = event.model_copy(deep=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
