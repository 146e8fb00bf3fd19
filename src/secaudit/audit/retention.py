"""Retention Manager - age-based deletion of audit events by tier."""

import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from secaudit.audit.schemas import AuditEventType, AuditSeverity, utc_now
from secaudit.audit.store import AuditStore
from secaudit.common.constants import RetentionConstants
from secaudit.common.exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)


class RetentionStrategy(str, Enum):
    """How severity and event type tiers combine."""
    # Each (severity, event type) pair keeps records for the longer of its two periods
    COMBINED = "combined"
    # Severity tiers only; event type tiers are ignored
    SEVERITY = "severity"


class RetentionPolicy(BaseModel):
    """Retention periods in days, per severity and per event type.

    This is the in-memory representation of retention_policy.yaml.
    """
    version: str = "1.0.0"
    strategy: RetentionStrategy = RetentionStrategy.COMBINED
    default_days: int = Field(default=RetentionConstants.DEFAULT_RETENTION_DAYS, ge=1)
    severity: Dict[AuditSeverity, int] = Field(
        default_factory=lambda: dict(RetentionConstants.SEVERITY_RETENTION_DAYS),
        validate_default=True,
    )
    event_type: Dict[AuditEventType, int] = Field(
        default_factory=lambda: dict(RetentionConstants.EVENT_TYPE_RETENTION_DAYS),
        validate_default=True,
    )

    @field_validator("severity", "event_type")
    @classmethod
    def _positive_days(cls, value: Dict[Any, int]) -> Dict[Any, int]:
        for tier, days in value.items():
            if days < 1:
                raise ValueError(f"Retention for {getattr(tier, 'value', tier)} must be at least 1 day")
        return value

    def severity_days(self, severity: AuditSeverity) -> int:
        return self.severity.get(severity, self.default_days)

    def event_type_days(self, event_type: AuditEventType) -> int:
        return self.event_type.get(event_type, self.default_days)

    def retention_days_for(self, severity: AuditSeverity, event_type: AuditEventType) -> int:
        """Days a record with this severity and event type is kept."""
        if self.strategy == RetentionStrategy.SEVERITY:
            return self.severity_days(severity)
        return max(self.severity_days(severity), self.event_type_days(event_type))

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "RetentionPolicy":
        """Load and validate a policy from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Retention policy file not found: {path}")

        with open(path, "r") as f:
            raw_config = yaml.safe_load(f) or {}

        try:
            return cls.model_validate(raw_config)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid retention policy file: {path}",
                details={"errors": e.errors(include_url=False)},
            ) from e


class RetentionManager:
    """Applies a retention policy to an audit store."""

    DEFAULT_POLICY_FILE = Path(__file__).parent.parent.parent.parent / "config" / RetentionConstants.POLICY_FILENAME

    def __init__(
        self,
        store: AuditStore,
        policy: Optional[RetentionPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.clock = clock
        self._policy = policy or RetentionPolicy()

    @classmethod
    def from_yaml(
        cls,
        store: AuditStore,
        policy_file: Optional[Union[str, Path]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "RetentionManager":
        policy = RetentionPolicy.from_yaml(policy_file or cls.DEFAULT_POLICY_FILE)
        return cls(store, policy=policy, clock=clock)

    def get_policy(self) -> RetentionPolicy:
        """Return a copy of the active policy."""
        return self._policy.model_copy(deep=True)

    def set_policy(self, overrides: Union[RetentionPolicy, Mapping[str, Any]]) -> RetentionPolicy:
        """Merge overrides into the active policy.

        Tier dictionaries are merged key by key; other fields are replaced.

        Raises:
            ValidationError: If the merged policy is invalid. The active
                policy is left unchanged.
        """
        if isinstance(overrides, RetentionPolicy):
            overrides = overrides.model_dump(exclude_unset=True)

        merged = self._policy.model_dump()
        for key, value in overrides.items():
            if key in ("severity", "event_type") and isinstance(value, Mapping):
                tier = dict(merged[key])
                tier.update(value)
                merged[key] = tier
            else:
                merged[key] = value

        try:
            self._policy = RetentionPolicy.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid retention policy",
                errors=[err["msg"] for err in e.errors(include_url=False)],
            ) from e

        logger.info(f"Retention policy updated (strategy={self._policy.strategy.value})")
        return self.get_policy()

    def retention_days_for(self, severity: AuditSeverity, event_type: AuditEventType) -> int:
        return self._policy.retention_days_for(severity, event_type)

    def cleanup(self) -> int:
        """Delete every record older than its tier allows.

        Returns:
            Total number of deleted records across tiers.
        """
        now = self.clock()
        policy = self._policy
        deleted = 0

        if policy.strategy == RetentionStrategy.SEVERITY:
            for severity in AuditSeverity:
                cutoff = now - timedelta(days=policy.severity_days(severity))
                deleted += self.store.delete_older_than(cutoff, severity=severity)
        else:
            for severity in AuditSeverity:
                for event_type in AuditEventType:
                    days = policy.retention_days_for(severity, event_type)
                    deleted += self.store.delete_older_than(
                        now - timedelta(days=days),
                        severity=severity,
                        event_type=event_type,
                    )

        logger.info(f"Retention cleanup removed {deleted} audit events")
        return deleted
