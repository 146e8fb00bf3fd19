"""Unit tests for the in-memory audit store."""

from datetime import timedelta

import pytest

from fixtures.audit_events import BASE_TIME, make_event
from secaudit.audit.schemas import (
    AuditAction,
    AuditEventType,
    AuditLogFilter,
    AuditSeverity,
)


@pytest.fixture
def populated_store(store):
    """25 login events, one minute apart, newest at BASE_TIME."""
    store.create_many([
        make_event(user_id=f"u{i % 3}", created_at=BASE_TIME - timedelta(minutes=i))
        for i in range(25)
    ])
    return store


class TestCreateMany:
    """Tests for bulk writes."""

    def test_assigns_ids_and_persisted_at(self, store, clock):
        count = store.create_many([make_event(), make_event()])

        stored = store.find_many().data
        assert count == 2
        assert all(e.id.startswith("aud_") and len(e.id) == 16 for e in stored)
        assert len({e.id for e in stored}) == 2
        assert all(e.persisted_at == clock.now for e in stored)

    def test_keeps_checksum(self, store, codec):
        event = make_event(codec=codec)
        store.create_many([event])

        assert store.find_many().data[0].checksum == event.checksum

    def test_replayed_id_not_duplicated(self, store):
        event = make_event().model_copy(update={"id": "aud_fixed000001"})

        assert store.create_many([event]) == 1
        assert store.create_many([event]) == 0
        assert len(store) == 1

    def test_empty_batch(self, store):
        assert store.create_many([]) == 0


class TestFindMany:
    """Tests for filtered, paginated queries."""

    def test_pages_of_ten(self, populated_store):
        pages = [
            populated_store.find_many(AuditLogFilter(limit=10, offset=offset))
            for offset in (0, 10, 20)
        ]

        assert [len(p.data) for p in pages] == [10, 10, 5]
        assert [p.page for p in pages] == [1, 2, 3]
        assert all(p.total == 25 and p.total_pages == 3 for p in pages)

    def test_newest_first(self, populated_store):
        data = populated_store.find_many(AuditLogFilter(limit=25)).data

        timestamps = [e.created_at for e in data]
        assert timestamps == sorted(timestamps, reverse=True)
        assert timestamps[0] == BASE_TIME

    def test_pages_do_not_overlap(self, populated_store):
        first = populated_store.find_many(AuditLogFilter(limit=10, offset=0)).data
        second = populated_store.find_many(AuditLogFilter(limit=10, offset=10)).data

        assert not {e.id for e in first} & {e.id for e in second}

    def test_default_limit(self, store):
        store.create_many([make_event() for _ in range(60)])

        result = store.find_many()
        assert len(result.data) == 50
        assert result.total == 60

    def test_filter_by_user(self, populated_store):
        result = populated_store.find_many(AuditLogFilter(user_id="u0"))

        assert result.total == 9
        assert all(e.user_id == "u0" for e in result.data)

    def test_filter_by_date_range(self, populated_store):
        result = populated_store.find_many(AuditLogFilter(
            date_from=BASE_TIME - timedelta(minutes=4),
            date_to=BASE_TIME - timedelta(minutes=2),
        ))

        assert result.total == 3

    def test_filter_by_outcome_and_severity(self, store):
        store.create_many([
            make_event(action=AuditAction.LOGIN_FAILED, success=False, severity=AuditSeverity.WARN),
            make_event(),
        ])

        result = store.find_many(AuditLogFilter(success=False, severity=AuditSeverity.WARN))
        assert result.total == 1
        assert result.data[0].action == AuditAction.LOGIN_FAILED


class TestLookups:
    """Tests for id and request lookups, count and stats."""

    def test_find_by_ids_skips_unknown(self, populated_store):
        known = populated_store.find_many(AuditLogFilter(limit=2)).data

        found = populated_store.find_by_ids([known[0].id, "aud_missing", known[1].id])
        assert [e.id for e in found] == [known[0].id, known[1].id]

    def test_find_by_id(self, populated_store):
        event = populated_store.find_many().data[0]

        assert populated_store.find_by_id(event.id) == event
        assert populated_store.find_by_id("aud_missing") is None

    def test_find_by_request_id_oldest_first(self, store):
        store.create_many([
            make_event(request_id="req_1", created_at=BASE_TIME),
            make_event(request_id="req_1", created_at=BASE_TIME - timedelta(seconds=5)),
            make_event(request_id="req_2"),
        ])

        events = store.find_by_request_id("req_1")
        assert len(events) == 2
        assert events[0].created_at < events[1].created_at

    def test_count_ignores_pagination(self, populated_store):
        assert populated_store.count(AuditLogFilter(limit=5)) == 25
        assert populated_store.count(AuditLogFilter(user_id="u1")) == 8

    def test_get_stats(self, store):
        store.create_many([
            make_event(action=AuditAction.LOGIN_FAILED, success=False, severity=AuditSeverity.WARN)
            for _ in range(5)
        ])

        stats = store.get_stats()
        assert stats.total == 5
        assert stats.failed == 5
        assert stats.successful == 0
        assert stats.by_event_type == {"AUTH": 5}
        assert stats.by_severity == {"WARN": 5}
        assert len(stats.recent_activity) == 5


class TestVerifyIntegrity:
    """Tests for checksum verification of stored records."""

    def test_report_buckets(self, store, codec):
        store.create_many([make_event(codec=codec, user_id=f"u{i}") for i in range(3)])
        ids = [e.id for e in store.find_many().data]
        tampered = store.find_by_id(ids[1]).model_copy(update={"user_id": "attacker"})
        store.replace_record(tampered)

        report = store.verify_integrity(ids + ["aud_missing"])

        assert sorted(report.verified) == sorted([ids[0], ids[2]])
        assert report.corrupted == [ids[1]]
        assert report.missing == ["aud_missing"]
        assert not report.is_intact

    def test_unsealed_record_is_corrupted(self, store):
        from secaudit.audit.schemas import AuditEvent

        store.create_many([AuditEvent(event_type=AuditEventType.AUTH, action=AuditAction.LOGIN)])
        event_id = store.find_many().data[0].id

        assert store.verify_integrity([event_id]).corrupted == [event_id]

    def test_query_results_are_detached(self, store, codec):
        event = make_event(codec=codec, request_id="req_1", event_data={"rows": 10, "tables": ["users"]})
        store.create_many([event])
        event_id = store.find_many().data[0].id

        store.find_many().data[0].event_data["rows"] = 999
        store.find_by_id(event_id).event_data["tables"].append("payments")
        store.find_by_request_id("req_1")[0].event_data["rows"] = 0
        store.get_stats().recent_activity[0].event_data.clear()

        assert store.find_by_id(event_id).event_data == {"rows": 10, "tables": ["users"]}
        assert store.verify_integrity([event_id]).verified == [event_id]

    def test_written_records_are_detached(self, store, codec):
        event = make_event(codec=codec, event_data={"rows": 10})
        store.create_many([event])
        event_id = store.find_many().data[0].id

        event.event_data["rows"] = 999

        assert store.verify_integrity([event_id]).is_intact

    def test_replace_unknown_record(self, store):
        with pytest.raises(KeyError):
            store.replace_record(make_event().model_copy(update={"id": "aud_missing"}))


class TestDeleteOlderThan:
    """Tests for age-based bulk deletion."""

    def test_strictly_older_deleted(self, store):
        store.create_many([
            make_event(created_at=BASE_TIME - timedelta(days=10)),
            make_event(created_at=BASE_TIME),
            make_event(created_at=BASE_TIME + timedelta(seconds=1)),
        ])

        deleted = store.delete_older_than(BASE_TIME)

        assert deleted == 1
        assert len(store) == 2

    def test_scoped_to_severity(self, store):
        old = BASE_TIME - timedelta(days=10)
        store.create_many([
            make_event(created_at=old),
            make_event(created_at=old, action=AuditAction.LOGIN_FAILED,
                       success=False, severity=AuditSeverity.WARN),
        ])

        assert store.delete_older_than(BASE_TIME, severity=AuditSeverity.INFO) == 1
        assert store.find_many().data[0].severity == AuditSeverity.WARN

    def test_scoped_to_event_type(self, store):
        old = BASE_TIME - timedelta(days=10)
        store.create_many([
            make_event(created_at=old),
            make_event(created_at=old, event_type=AuditEventType.SECURITY,
                       action=AuditAction.SUSPICIOUS_ACTIVITY),
        ])

        deleted = store.delete_older_than(
            BASE_TIME, severity=AuditSeverity.INFO, event_type=AuditEventType.SECURITY
        )

        assert deleted == 1
        assert store.find_many().data[0].event_type == AuditEventType.AUTH

    def test_nothing_to_delete(self, store):
        assert store.delete_older_than(BASE_TIME) == 0

    def test_health_check(self, store):
        assert store.health_check() is True
