"""Audit layer initialization.

Factory functions that assemble the audit components from a ``Config``
(environment-driven by default, see ``secaudit.common.config``).
"""

import logging
from typing import Optional

from secaudit.audit.diagnostics import DiagnosticsSink
from secaudit.audit.integrity import IntegrityCodec
from secaudit.audit.queue import AuditQueue
from secaudit.audit.retention import RetentionManager, RetentionPolicy, RetentionStrategy
from secaudit.audit.service import AuditService
from secaudit.audit.store import AuditStore, InMemoryAuditStore
from secaudit.common.config import AuditStoreType, Config, get_config
from secaudit.common.constants import RetentionConstants

logger = logging.getLogger(__name__)


def create_audit_store(
    config: Optional[Config] = None,
    store_type: Optional[AuditStoreType] = None,
) -> AuditStore:
    """Create the configured audit store backend.

    Args:
        config: Configuration to use. Uses the process default if not provided.
        store_type: Overrides ``config.store_type``.

    Returns:
        Configured AuditStore instance
    """
    config = config or get_config()
    store_type = AuditStoreType(store_type or config.store_type)
    codec = IntegrityCodec(config.hash_algorithm)

    if store_type == AuditStoreType.MEMORY:
        if config.is_production:
            logger.warning("In-memory audit store in production; events are lost on restart")
        return InMemoryAuditStore(codec=codec)

    if store_type == AuditStoreType.DYNAMODB:
        from secaudit.audit.dynamodb_store import DynamoDBAuditStore

        return DynamoDBAuditStore(
            table_name=config.dynamodb_table,
            region=config.aws_region,
            aws_profile=config.aws_profile,
            codec=codec,
        )

    raise ValueError(f"Unknown storage type: {store_type}")


def create_retention_manager(store: AuditStore, config: Optional[Config] = None) -> RetentionManager:
    """Create a retention manager.

    Loads ``config.retention_policy_file`` when set, otherwise the policy
    shipped in ``config/retention_policy.yaml``. A configured file must
    exist; a missing shipped file falls back to the built-in tiers.
    """
    config = config or get_config()

    if config.retention_policy_file:
        policy = RetentionPolicy.from_yaml(config.retention_policy_file)
    else:
        default_file = config.config_dir / RetentionConstants.POLICY_FILENAME
        if default_file.exists():
            policy = RetentionPolicy.from_yaml(default_file)
        else:
            logger.warning(f"Retention policy file not found at {default_file}; using built-in defaults")
            policy = RetentionPolicy()

    # The configured strategy always wins over the file
    policy = policy.model_copy(update={"strategy": RetentionStrategy(config.retention_strategy)})
    return RetentionManager(store, policy=policy)


def create_audit_service(
    config: Optional[Config] = None,
    store: Optional[AuditStore] = None,
    diagnostics: Optional[DiagnosticsSink] = None,
) -> AuditService:
    """Assemble an AuditService from configuration.

    The service is returned unstarted; call ``start()`` or use it as a
    context manager.
    """
    config = config or get_config()
    store = store if store is not None else create_audit_store(config)

    queue = AuditQueue(
        store,
        batch_size=config.batch_size,
        flush_interval=config.flush_interval_seconds,
        retry_backoff_base=config.retry_backoff_base,
        retry_backoff_max=config.retry_backoff_max,
        diagnostics=diagnostics,
    )

    return AuditService(
        store=store,
        queue=queue,
        codec=store.codec,
        retention=create_retention_manager(store, config),
        diagnostics=diagnostics,
    )


__all__ = [
    "create_audit_store",
    "create_retention_manager",
    "create_audit_service",
]
