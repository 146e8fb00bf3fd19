"""Integration tests for secaudit.

End-to-end tests that run events through the service, queue and store.
"""

import threading
from datetime import timedelta

import pytest

from fixtures.audit_events import BASE_TIME, FixedClock, FlakyStore, RecordingSink
from secaudit.audit.context import request_context
from secaudit.audit.diagnostics import DiagnosticKind
from secaudit.audit.queue import AuditQueue
from secaudit.audit.schemas import AuditAction, AuditLogFilter, AuditSeverity
from secaudit.audit.service import AuditService
from secaudit.audit.store import InMemoryAuditStore


class TestAuditFlowIntegration:
    """Integration tests for the audit flow."""

    @pytest.fixture
    def sink(self):
        return RecordingSink()

    @pytest.fixture
    def store(self):
        return InMemoryAuditStore()

    @pytest.fixture
    def audit_service(self, store, sink):
        """Service with a real worker and short flush interval."""
        queue = AuditQueue(store, batch_size=20, flush_interval=0.05, diagnostics=sink)
        return AuditService(store=store, queue=queue, diagnostics=sink)

    def test_failed_login_burst(self, audit_service):
        """Five failed logins from one address show up in stats and queries."""
        with audit_service:
            for _ in range(5):
                with request_context(ip_address="203.0.113.7", request_id="req_burst"):
                    audit_service.log_failed_login("victim@example.com", "invalid password")

        stats = audit_service.get_audit_stats()
        assert stats.total == 5
        assert stats.failed == 5
        assert stats.by_event_type == {"AUTH": 5}
        assert stats.by_severity == {"WARN": 5}

        failed = audit_service.get_failed_logins(ip_address="203.0.113.7")
        assert failed.total == 5
        assert all(e.event_data == {"reason": "invalid password"} for e in failed.data)

    def test_concurrent_producers(self, audit_service, store, sink):
        """Every event from concurrent producers is persisted once and verifies."""
        producers, per_producer = 8, 50

        def produce(worker: int) -> None:
            for i in range(per_producer):
                audit_service.log_data_access_event(
                    AuditAction.DATA_VIEWED,
                    {"user_id": f"user_{worker}", "resource": f"doc_{i}"},
                )

        with audit_service:
            threads = [threading.Thread(target=produce, args=(w,)) for w in range(producers)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert len(store) == producers * per_producer
        assert sink.events == []

        ids = [e.id for e in store.find_many(AuditLogFilter(limit=1000)).data]
        assert len(set(ids)) == producers * per_producer
        report = audit_service.verify_audit_log_integrity(ids)
        assert report.is_intact
        assert len(report.verified) == producers * per_producer

        per_user = audit_service.get_audit_logs_by_user_id("user_3", limit=10, offset=40)
        assert per_user.total == per_producer
        assert len(per_user.data) == 10

    def test_outage_then_recovery(self, sink):
        """Events survive a failed flush and land once the store recovers."""
        store = FlakyStore(failures=2)
        queue = AuditQueue(store, batch_size=1000, flush_interval=60, retry_backoff_base=0, diagnostics=sink)
        audit_service = AuditService(store=store, queue=queue, diagnostics=sink)

        audit_service.log_suspicious_activity("impossible travel", severity=AuditSeverity.CRITICAL)
        audit_service.log_rate_limit_exceeded("login")

        assert audit_service.force_flush_queue().error is not None
        assert audit_service.force_flush_queue().error is not None
        assert audit_service.shutdown(timeout=1).succeeded

        assert sink.kinds() == [DiagnosticKind.FLUSH_FAILED, DiagnosticKind.FLUSH_FAILED]
        assert len(store) == 2
        assert audit_service.get_suspicious_activity().total == 0
        assert audit_service.get_audit_logs(
            AuditLogFilter(severity=AuditSeverity.CRITICAL)
        ).total == 1

    def test_retention_cleanup_leaves_audit_trail(self, sink):
        """Scheduled cleanup deletes expired events and records itself."""
        clock = FixedClock(BASE_TIME - timedelta(days=400))
        store = InMemoryAuditStore(clock=clock)
        queue = AuditQueue(store, batch_size=1000, flush_interval=60, diagnostics=sink)
        audit_service = AuditService(store=store, queue=queue, clock=clock, diagnostics=sink)

        audit_service.log_successful_login("u1", "a@example.com")
        audit_service.log_suspicious_activity("token replay")
        audit_service.force_flush_queue()

        clock.now = BASE_TIME
        assert audit_service.run_scheduled_cleanup() == 1
        audit_service.force_flush_queue()

        actions = sorted(e.action.value for e in audit_service.get_audit_logs().data)
        assert actions == ["data_retention_cleanup", "suspicious_activity"]
