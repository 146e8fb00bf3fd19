"""Request context middleware for FastAPI applications."""

import logging
from typing import Optional

from fastapi import FastAPI, Request

from secaudit.audit.context import (
    RequestContext,
    bind_request_context,
    context_from_headers,
    generate_request_id,
    reset_request_context,
)
from secaudit.common.exceptions import ContextExtractionError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_COOKIE = "session_id"


def _request_context(request: Request, session_cookie: str) -> RequestContext:
    client_host: Optional[str] = request.client.host if request.client else None
    try:
        return context_from_headers(
            request.headers,
            client_host=client_host,
            session_id=request.cookies.get(session_cookie),
        )
    except ContextExtractionError as e:
        logger.debug(f"Falling back to minimal request context: {e}")
        return RequestContext(ip_address=client_host, request_id=generate_request_id())


def install_audit_context(app: FastAPI, session_cookie: str = DEFAULT_SESSION_COOKIE) -> FastAPI:
    """Bind an audit request context around every HTTP request.

    Audit events logged while handling the request pick up the client IP,
    user agent, session and request ids. The request id is echoed back in
    the ``X-Request-ID`` response header.
    """

    @app.middleware("http")
    async def bind_audit_context(request: Request, call_next):
        context = _request_context(request, session_cookie)
        request.state.request_id = context.request_id

        token = bind_request_context(context)
        try:
            response = await call_next(request)
        finally:
            reset_request_context(token)

        response.headers["X-Request-ID"] = context.request_id
        return response

    return app
