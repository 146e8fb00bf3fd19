"""Request context - ambient request metadata for audit events.

A web layer binds a ``RequestContext`` for the duration of a request; the
audit service reads it through a ``ContextProvider`` to fill in IP address,
user agent, session and request ids the caller did not pass explicitly.
"""

import ipaddress, logging
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, replace
from typing import Iterator, Mapping, Optional, Protocol
from uuid import uuid4

from secaudit.common.constants import AuditConstants
from secaudit.common.exceptions import ContextExtractionError

logger = logging.getLogger(__name__)


# Checked in order; the first header present wins
CLIENT_IP_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "x-client-ip",
    "cf-connecting-ip",
    "x-forwarded",
    "forwarded-for",
    "forwarded",
)

REQUEST_ID_HEADER = "x-request-id"
USER_AGENT_HEADER = "user-agent"


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None


class ContextProvider(Protocol):
    def current(self) -> Optional[RequestContext]:
        """Return the active request context, or None outside a request."""
        ...


_current_request: ContextVar[Optional[RequestContext]] = ContextVar(
    "secaudit_request_context", default=None
)


def bind_request_context(context: RequestContext) -> Token:
    return _current_request.set(context)


def reset_request_context(token: Token) -> None:
    _current_request.reset(token)


def get_request_context() -> Optional[RequestContext]:
    return _current_request.get()


@contextmanager
def request_context(context: Optional[RequestContext] = None, **fields) -> Iterator[RequestContext]:
    """Bind a request context for the enclosed block.

    Example:
        with request_context(ip_address="203.0.113.7", request_id="req_1"):
            service.log_auth_event(AuditAction.LOGIN, ...)
    """
    context = replace(context, **fields) if context else RequestContext(**fields)
    token = bind_request_context(context)
    try:
        yield context
    finally:
        reset_request_context(token)


class ContextVarProvider:
    """Reads the context bound with ``request_context`` or the API middleware."""

    def current(self) -> Optional[RequestContext]:
        return _current_request.get()


class NullContextProvider:
    """Provider for non-request callers such as jobs and scripts."""

    def current(self) -> Optional[RequestContext]:
        return None


def generate_request_id() -> str:
    return f"{AuditConstants.REQUEST_ID_PREFIX}{uuid4().hex[:12]}"


def _clean_ip_candidate(candidate: str) -> str:
    """Strip RFC 7239 ``for=`` syntax, quotes, brackets and ports."""
    value = candidate.strip()
    for part in value.split(";"):
        part = part.strip()
        if part.lower().startswith("for="):
            value = part[4:]
            break
    value = value.strip().strip('"')
    if value.startswith("["):
        # [2001:db8::1]:443
        return value[1:].split("]", 1)[0]
    if value.count(":") == 1:
        # 203.0.113.7:8080
        return value.split(":", 1)[0]
    return value


def is_public_ip(value: str) -> bool:
    try:
        return ipaddress.ip_address(value).is_global
    except ValueError:
        return False


def extract_client_ip(headers: Mapping[str, str]) -> Optional[str]:
    """Pick the client IP from proxy headers.

    Within the first header present, the first public address is preferred;
    if none is public the first listed address is returned.
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    for header in CLIENT_IP_HEADERS:
        value = lowered.get(header)
        if not value:
            continue
        candidates = [_clean_ip_candidate(p) for p in value.split(",") if p.strip()]
        if not candidates:
            continue
        for candidate in candidates:
            if is_public_ip(candidate):
                return candidate
        return candidates[0]
    return None


def context_from_headers(
    headers: Mapping[str, str],
    client_host: Optional[str] = None,
    session_id: Optional[str] = None,
) -> RequestContext:
    """Build a request context from HTTP headers.

    Args:
        headers: Request headers (any case).
        client_host: Socket peer address, used when no proxy header is set.
        session_id: Session identifier resolved by the caller.

    Raises:
        ContextExtractionError: If the headers cannot be read.
    """
    try:
        lowered = {key.lower(): value for key, value in headers.items()}
        return RequestContext(
            ip_address=extract_client_ip(lowered) or client_host,
            user_agent=lowered.get(USER_AGENT_HEADER) or None,
            session_id=session_id,
            request_id=lowered.get(REQUEST_ID_HEADER) or generate_request_id(),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ContextExtractionError(f"Could not read request headers: {e}") from e
