"""API - FastAPI integration for the audit service.

- install_audit_context: middleware binding per-request audit context
- create_app: application whose lifespan starts and stops the service
"""

from secaudit.api.gateway import create_app, get_audit_service
from secaudit.api.middleware import install_audit_context

__all__ = [
    "create_app",
    "get_audit_service",
    "install_audit_context",
]
