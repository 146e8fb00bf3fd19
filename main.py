#!/usr/bin/env python3
"""Main entry point for secaudit."""

import argparse
import json
import sys
from typing import List, Optional

from secaudit.audit import (
    AuditAction,
    AuditLogFilter,
    AuditService,
    create_audit_service,
    request_context,
)
from secaudit.common.config import get_config
from secaudit.common.logging import get_logger

logger = get_logger(__name__)


def run_demo(service: AuditService) -> int:
    """Record a few representative events and verify them."""
    with request_context(ip_address="203.0.113.7", user_agent="secaudit-demo", request_id="req_demo"):
        service.log_successful_login("user_1", "alice@example.com")
        service.log_failed_login("mallory@example.com", "invalid_password")
        service.log_failed_login("mallory@example.com", "invalid_password")
        service.log_password_reset("alice@example.com", success=True)
        service.log_rate_limit_exceeded("login", {"email": "mallory@example.com"})
        service.log_data_access_event(AuditAction.DATA_EXPORTED, {"user_id": "user_1", "resource": "reports/2026-q3"})

    service.force_flush_queue()

    events = service.get_audit_logs_by_request_id("req_demo")
    report = service.verify_audit_log_integrity([e.id for e in events])

    print(f"\nRecorded {len(events)} events for request req_demo:")
    for event in events:
        print(f"  {event.created_at.isoformat()}  {event.event_type.value:<11} {event.action.value:<26} "
              f"{event.severity.value:<5} success={event.success}")
    print(f"\nIntegrity: {len(report.verified)} verified, {len(report.corrupted)} corrupted")
    print_stats(service)
    return 0 if report.is_intact else 1


def print_stats(service: AuditService, user_id: Optional[str] = None) -> int:
    stats = service.get_audit_stats(AuditLogFilter(user_id=user_id))
    print("\n" + "=" * 60)
    print("AUDIT LOG STATISTICS")
    print("=" * 60)
    print(f"  Total: {stats.total}")
    print(f"  Successful: {stats.successful}")
    print(f"  Failed: {stats.failed}")
    print(f"  By event type: {json.dumps(stats.by_event_type, sort_keys=True)}")
    print(f"  By severity: {json.dumps(stats.by_severity, sort_keys=True)}")
    return 0


def run_cleanup(service: AuditService) -> int:
    deleted = service.run_scheduled_cleanup()
    if deleted is None:
        print("Cleanup failed; see log output")
        return 1
    service.force_flush_queue()
    print(f"Deleted {deleted} expired audit events")
    return 0


def run_verify(service: AuditService, ids: List[str]) -> int:
    report = service.verify_audit_log_integrity(ids)
    print(f"Verified:  {', '.join(report.verified) or '-'}")
    print(f"Corrupted: {', '.join(report.corrupted) or '-'}")
    print(f"Missing:   {', '.join(report.missing) or '-'}")
    return 0 if report.is_intact else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="secaudit - security audit log tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("demo", help="Record sample events and verify them")
    stats_parser = subparsers.add_parser("stats", help="Print aggregate statistics")
    stats_parser.add_argument("--user-id", type=str, default=None, help="Restrict to one user")
    subparsers.add_parser("cleanup", help="Delete events past their retention period")
    verify_parser = subparsers.add_parser("verify", help="Verify checksums of stored events")
    verify_parser.add_argument("ids", nargs="+", help="Event ids to verify")

    args = parser.parse_args(argv)

    config = get_config()
    get_logger("secaudit", config.log_level.value)
    logger.setLevel(config.log_level.value)
    logger.info(f"secaudit initialized in {config.environment.value} mode ({config.store_type.value} store)")

    with create_audit_service(config) as service:
        if args.command == "demo":
            return run_demo(service)
        if args.command == "stats":
            return print_stats(service, args.user_id)
        if args.command == "cleanup":
            return run_cleanup(service)
        return run_verify(service, args.ids)


if __name__ == "__main__":
    sys.exit(main())
