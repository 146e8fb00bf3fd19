"""DynamoDB Audit Store - audit events persisted in a single DynamoDB table."""

import json, logging, os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from secaudit.audit.integrity import IntegrityCodec
from secaudit.audit.schemas import (
    AuditEvent,
    AuditEventType,
    AuditLogFilter,
    AuditSeverity,
    AuditStats,
    PaginatedResult,
    ensure_utc,
    utc_now,
)
from secaudit.audit.store import AuditStore, new_event_id, newest_first
from secaudit.common.exceptions import ConfigurationError, PersistenceError

logger = logging.getLogger(__name__)


class DynamoDBAuditStore(AuditStore):
    """DynamoDB-backed audit store.

    Items are keyed ``pk = PK#AUDIT#<id>`` / ``sk = SK#AUDIT``. Timestamps are
    stored as fixed-width UTC strings so range filters compare lexically, and
    ``event_data`` is kept as its canonical JSON text to avoid Decimal
    round-tripping of numbers.
    """

    DEFAULT_REGION = "us-east-1"
    ENTITY_TYPE = "AUDIT"
    SORT_KEY = "SK#AUDIT"

    def __init__(
        self,
        table_name: Optional[str] = None,
        region: Optional[str] = None,
        aws_profile: Optional[str] = None,
        codec: Optional[IntegrityCodec] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(codec)
        self.table_name = table_name or os.environ.get("SECAUDIT_DYNAMODB_TABLE")
        if not self.table_name:
            raise ConfigurationError("SECAUDIT_DYNAMODB_TABLE required")

        self.region = region or os.environ.get("AWS_REGION", self.DEFAULT_REGION)
        self.clock = clock

        if aws_profile:
            session = boto3.Session(profile_name=aws_profile)
            self.dynamodb = session.resource("dynamodb", region_name=self.region)
        else:
            self.dynamodb = boto3.resource("dynamodb", region_name=self.region)

        self.table = self.dynamodb.Table(self.table_name)
        logger.info(f"DynamoDB audit store initialized: {self.table_name} ({self.region})")

    # ========== ITEM MAPPING ==========

    @staticmethod
    def _format_timestamp(value: datetime) -> str:
        return ensure_utc(value).strftime(IntegrityCodec.TIMESTAMP_FORMAT)

    @staticmethod
    def _parse_timestamp(value: str) -> datetime:
        return datetime.strptime(value, IntegrityCodec.TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)

    def _key(self, event_id: str) -> Dict[str, str]:
        return {"pk": f"PK#{self.ENTITY_TYPE}#{event_id}", "sk": self.SORT_KEY}

    def _to_item(self, event: AuditEvent) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            **self._key(event.id),
            "entity_type": self.ENTITY_TYPE,
            "id": event.id,
            "event_type": event.event_type.value,
            "action": event.action.value,
            "success": event.success,
            "severity": event.severity.value,
            "event_data": json.dumps(
                event.event_data, sort_keys=True, separators=(",", ":"),
                ensure_ascii=False, allow_nan=False,
            ),
            "created_at": self._format_timestamp(event.created_at),
        }
        for name in ("user_id", "email", "ip_address", "user_agent",
                     "session_id", "request_id", "resource", "checksum"):
            value = getattr(event, name)
            if value is not None:
                item[name] = value
        if event.persisted_at is not None:
            item["persisted_at"] = self._format_timestamp(event.persisted_at)
        return item

    def _from_item(self, item: Dict[str, Any]) -> AuditEvent:
        persisted_at = item.get("persisted_at")
        return AuditEvent(
            id=item["id"],
            event_type=item["event_type"],
            action=item["action"],
            success=bool(item.get("success", True)),
            severity=item.get("severity", AuditSeverity.INFO.value),
            user_id=item.get("user_id"),
            email=item.get("email"),
            ip_address=item.get("ip_address"),
            user_agent=item.get("user_agent"),
            session_id=item.get("session_id"),
            request_id=item.get("request_id"),
            resource=item.get("resource"),
            event_data=json.loads(item.get("event_data") or "{}"),
            checksum=item.get("checksum"),
            created_at=self._parse_timestamp(item["created_at"]),
            persisted_at=self._parse_timestamp(persisted_at) if persisted_at else None,
        )

    # ========== SCANS ==========

    def _condition(self, query: AuditLogFilter):
        """Translate the exact-match part of a filter into a scan condition.

        Substring criteria (email, resource) are applied client-side.
        """
        condition = Attr("entity_type").eq(self.ENTITY_TYPE)
        exact = {
            "user_id": query.user_id,
            "event_type": query.event_type.value if query.event_type else None,
            "action": query.action.value if query.action else None,
            "severity": query.severity.value if query.severity else None,
            "ip_address": query.ip_address,
            "session_id": query.session_id,
            "request_id": query.request_id,
        }
        for name, value in exact.items():
            if value:
                condition = condition & Attr(name).eq(value)
        if query.success is not None:
            condition = condition & Attr("success").eq(query.success)
        if query.date_from:
            condition = condition & Attr("created_at").gte(self._format_timestamp(query.date_from))
        if query.date_to:
            condition = condition & Attr("created_at").lte(self._format_timestamp(query.date_to))
        return condition

    def _scan(self, condition, operation: str = "scan", **kwargs) -> List[Dict[str, Any]]:
        """Scan the whole table following LastEvaluatedKey."""
        kwargs["FilterExpression"] = condition
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = self.table.scan(**kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            logger.error(f"{operation} failed: {e}")
            raise PersistenceError(f"Audit {operation} failed", operation=operation) from e
        return items

    def _matching(self, query: Optional[AuditLogFilter]) -> List[AuditEvent]:
        query = query or AuditLogFilter()
        events = (self._from_item(item) for item in self._scan(self._condition(query)))
        return newest_first(e for e in events if query.matches(e))

    # ========== AUDIT STORE ==========

    def create_many(self, events: Sequence[AuditEvent]) -> int:
        persisted_at = self.clock()
        try:
            with self.table.batch_writer(overwrite_by_pkeys=["pk", "sk"]) as batch:
                for event in events:
                    stored = event.model_copy(
                        update={"id": event.id or new_event_id(), "persisted_at": persisted_at}
                    )
                    batch.put_item(Item=self._to_item(stored))
        except ClientError as e:
            logger.error(f"create_many failed: {e}")
            raise PersistenceError(
                f"Failed to persist {len(events)} audit events",
                operation="create_many",
                details={"batch_size": len(events)},
            ) from e
        return len(events)

    def find_many(self, query: Optional[AuditLogFilter] = None) -> PaginatedResult:
        query = query or AuditLogFilter()
        return PaginatedResult.from_matches(self._matching(query), query)

    def find_by_ids(self, ids: Sequence[str]) -> List[AuditEvent]:
        events = []
        for event_id in ids:
            try:
                resp = self.table.get_item(Key=self._key(event_id))
            except ClientError as e:
                logger.error(f"get_item failed: {e}")
                raise PersistenceError(
                    "Audit lookup failed", operation="find_by_ids", details={"id": event_id}
                ) from e
            if item := resp.get("Item"):
                events.append(self._from_item(item))
        return events

    def find_by_request_id(self, request_id: str) -> List[AuditEvent]:
        return list(reversed(self._matching(AuditLogFilter(request_id=request_id))))

    def count(self, query: Optional[AuditLogFilter] = None) -> int:
        return len(self._matching(query))

    def get_stats(self, query: Optional[AuditLogFilter] = None) -> AuditStats:
        return AuditStats.from_matches(self._matching(query))

    def delete_older_than(
        self,
        cutoff: datetime,
        severity: Optional[AuditSeverity] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> int:
        condition = (
            Attr("entity_type").eq(self.ENTITY_TYPE)
            & Attr("created_at").lt(self._format_timestamp(cutoff))
        )
        if severity is not None:
            condition = condition & Attr("severity").eq(severity.value)
        if event_type is not None:
            condition = condition & Attr("event_type").eq(event_type.value)

        items = self._scan(condition, operation="delete_older_than", ProjectionExpression="pk, sk")
        try:
            with self.table.batch_writer() as batch:
                for item in items:
                    batch.delete_item(Key={"pk": item["pk"], "sk": item["sk"]})
        except ClientError as e:
            logger.error(f"delete_older_than failed: {e}")
            raise PersistenceError(
                "Audit retention delete failed", operation="delete_older_than"
            ) from e
        return len(items)

    def health_check(self) -> bool:
        try:
            self.table.table_status
            return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False
