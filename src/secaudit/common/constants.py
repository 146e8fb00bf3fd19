"""Centralized constants for secaudit configuration."""


# ===== QUEUE & FLUSHING =====
class AuditConstants:
    BATCH_SIZE = 100
    FLUSH_INTERVAL_SECONDS = 5.0
    STOP_TIMEOUT_SECONDS = 10.0
    HASH_ALGORITHM = "sha256"
    
    # Backoff applied to timer/size triggered flushes after failures
    RETRY_BACKOFF_BASE_SECONDS = 5.0
    RETRY_BACKOFF_MAX_SECONDS = 300.0
    
    # Identifier prefixes
    EVENT_ID_PREFIX = "aud_"
    REQUEST_ID_PREFIX = "req_"


# ===== QUERY LIMITS =====
class QueryConstants:
    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 1000
    RECENT_ACTIVITY_LIMIT = 10


# ===== RETENTION (days) =====
class RetentionConstants:
    POLICY_FILENAME = "retention_policy.yaml"
    DEFAULT_RETENTION_DAYS = 365
    SEVERITY_RETENTION_DAYS = {
        "INFO": 90,
        "WARN": 180,
        "ERROR": 365,
        "CRITICAL": 1095,  # 3 years
    }
    EVENT_TYPE_RETENTION_DAYS = {
        "AUTH": 180,
        "USER_MGMT": 365,
        "SECURITY": 1095,  # 3 years
        "DATA_ACCESS": 365,
        "SYSTEM": 365,
    }
