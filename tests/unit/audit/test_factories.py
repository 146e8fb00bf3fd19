"""Tests for assembling audit components from configuration."""

import os
from unittest.mock import patch

import pytest

from secaudit.audit.config import create_audit_service, create_audit_store, create_retention_manager
from secaudit.audit.retention import RetentionPolicy, RetentionStrategy
from secaudit.audit.schemas import AuditSeverity
from secaudit.audit.store import InMemoryAuditStore
from secaudit.common.config import AuditStoreType, Config, Environment
from secaudit.common.exceptions import ConfigurationError


@pytest.fixture
def config():
    with patch.dict(os.environ, {}, clear=True):
        return Config(batch_size=10, flush_interval_seconds=2.0, hash_algorithm="sha512")


class TestCreateAuditStore:
    """Tests for backend selection."""

    def test_memory_store(self, config):
        store = create_audit_store(config)

        assert isinstance(store, InMemoryAuditStore)
        assert store.codec.hash_algorithm == "sha512"

    def test_memory_store_in_production_warns(self, caplog):
        with patch.dict(os.environ, {}, clear=True):
            config = Config(environment=Environment.PRODUCTION)

        with caplog.at_level("WARNING", logger="secaudit.audit.config"):
            create_audit_store(config)

        assert "In-memory audit store in production" in caplog.text

    def test_dynamodb_store(self, config):
        config.dynamodb_table = "security-audit-log"
        config.aws_region = "eu-west-1"

        with patch("boto3.resource") as mock_resource:
            store = create_audit_store(config, store_type=AuditStoreType.DYNAMODB)

        assert store.table_name == "security-audit-log"
        mock_resource.assert_called_once_with("dynamodb", region_name="eu-west-1")


class TestCreateRetentionManager:
    """Tests for retention policy loading."""

    def test_default_policy(self, config):
        manager = create_retention_manager(InMemoryAuditStore(), config)

        assert manager.get_policy().strategy == RetentionStrategy.COMBINED
        assert manager.get_policy() == RetentionPolicy.from_yaml(config.config_dir / "retention_policy.yaml")

    def test_policy_loaded_from_config_dir(self, config, tmp_path):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "retention_policy.yaml").write_text("severity:\n  INFO: 30\n")
        config.project_root = tmp_path

        policy = create_retention_manager(InMemoryAuditStore(), config).get_policy()

        assert policy.severity[AuditSeverity.INFO] == 30

    def test_missing_shipped_policy_uses_builtin_tiers(self, config, tmp_path, caplog):
        config.project_root = tmp_path

        with caplog.at_level("WARNING", logger="secaudit.audit.config"):
            policy = create_retention_manager(InMemoryAuditStore(), config).get_policy()

        assert policy == RetentionPolicy()
        assert "Retention policy file not found" in caplog.text

    def test_policy_file_and_strategy_override(self, config, tmp_path):
        policy_file = tmp_path / "retention.yaml"
        policy_file.write_text("strategy: combined\nseverity:\n  INFO: 7\n")
        config.retention_policy_file = policy_file
        config.retention_strategy = "severity"

        policy = create_retention_manager(InMemoryAuditStore(), config).get_policy()

        assert policy.strategy == RetentionStrategy.SEVERITY
        assert policy.severity[AuditSeverity.INFO] == 7

    def test_missing_policy_file(self, config, tmp_path):
        config.retention_policy_file = tmp_path / "missing.yaml"

        with pytest.raises(ConfigurationError):
            create_retention_manager(InMemoryAuditStore(), config)


class TestCreateAuditService:
    """Tests for service assembly."""

    def test_wires_configured_queue(self, config):
        service = create_audit_service(config)

        assert service.queue.batch_size == 10
        assert service.queue.flush_interval == 2.0
        assert service.queue.store is service.store
        assert service.retention.store is service.store
        assert service.codec is service.store.codec

    def test_uses_given_store(self, config):
        store = InMemoryAuditStore()

        service = create_audit_service(config, store=store)

        assert service.store is store

    def test_service_is_unstarted(self, config):
        service = create_audit_service(config)

        assert not service.queue.is_running
