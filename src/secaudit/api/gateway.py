"""API Gateway - FastAPI application hosting the audit service."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException, Request

from secaudit import __version__
from secaudit.api.middleware import install_audit_context
from secaudit.audit.config import create_audit_service
from secaudit.audit.service import AuditService

logger = logging.getLogger(__name__)


def get_audit_service(request: Request) -> AuditService:
    """Return the service bound to the application."""
    return request.app.state.audit_service


def create_app(service: Optional[AuditService] = None, title: str = "secaudit") -> FastAPI:
    """Build an application whose lifespan owns the audit service.

    Startup starts the queue worker; shutdown flushes pending events and
    stops it.

    Args:
        service: Audit service to host. Built from configuration if not provided.
        title: Application title.
    """
    service = service if service is not None else create_audit_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Audit service starting up...")
        service.start()
        app.state.audit_ready = True
        logger.info("Audit service ready")

        yield

        logger.info("Audit service shutting down...")
        app.state.audit_ready = False
        result = service.shutdown()
        if result.error is not None:
            logger.error(f"Final audit flush failed: {result.error}")
        logger.info("Audit service shutdown complete")

    app = FastAPI(title=title, version=__version__, lifespan=lifespan)
    app.state.audit_service = service
    app.state.audit_ready = False
    install_audit_context(app)

    @app.get("/health")
    async def health_check(request: Request) -> dict:
        """Health check endpoint with queue statistics."""
        stats = get_audit_service(request).get_stats()
        return {
            "status": "healthy" if stats["store_healthy"] else "degraded",
            "service": title,
            **stats,
        }

    @app.get("/ready")
    async def readiness_check(request: Request) -> dict:
        """Returns 503 until the lifespan has started the service."""
        if not request.app.state.audit_ready:
            raise HTTPException(status_code=503, detail="not_ready")
        return {"status": "ready", "service": title}

    return app
