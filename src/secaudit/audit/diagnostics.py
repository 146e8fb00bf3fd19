"""Diagnostics channel for failures absorbed inside the audit subsystem."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class DiagnosticKind:
    VALIDATION_FAILED = "validation_failed"
    FLUSH_FAILED = "flush_failed"
    CONTEXT_UNAVAILABLE = "context_unavailable"
    LOG_FAILED = "log_failed"
    CLEANUP_FAILED = "cleanup_failed"


@dataclass(frozen=True)
class DiagnosticEvent:
    kind: str
    message: str
    error: Optional[BaseException] = None
    details: Dict[str, Any] = field(default_factory=dict)


DiagnosticsSink = Callable[[DiagnosticEvent], None]


class LoggingDiagnosticsSink:
    """Default sink: writes diagnostics to the standard logger."""

    # Context lookups fail on every call outside a request scope
    QUIET_KINDS = frozenset({DiagnosticKind.CONTEXT_UNAVAILABLE})

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def __call__(self, event: DiagnosticEvent) -> None:
        level = logging.DEBUG if event.kind in self.QUIET_KINDS else logging.ERROR
        suffix = f": {event.error}" if event.error is not None else ""
        self.log.log(
            level,
            f"[{event.kind}] {event.message}{suffix}",
            extra={"audit_diagnostics": event.details},
        )


def emit(sink: DiagnosticsSink, event: DiagnosticEvent) -> None:
    """Deliver a diagnostic without letting a faulty sink raise."""
    try:
        sink(event)
    except Exception as e:
        logger.error(f"Diagnostics sink failed while reporting {event.kind}: {e}")
