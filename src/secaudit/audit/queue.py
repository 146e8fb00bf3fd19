"""Audit Queue - buffered, batched persistence of audit events."""

import atexit, logging, threading, time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Optional

from secaudit.audit.diagnostics import (
    DiagnosticEvent,
    DiagnosticKind,
    DiagnosticsSink,
    LoggingDiagnosticsSink,
    emit,
)
from secaudit.audit.schemas import AuditEvent
from secaudit.audit.store import AuditStore
from secaudit.common.constants import AuditConstants

logger = logging.getLogger(__name__)


class FlushTrigger(str, Enum):
    SIZE = "size"
    TIMER = "timer"
    FORCED = "forced"


@dataclass(frozen=True)
class FlushResult:
    """Outcome of one flush attempt."""
    trigger: FlushTrigger
    attempted: int = 0
    persisted: int = 0
    requeued: int = 0
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return not self.skipped and self.error is None


class AuditQueue:
    """In-memory buffer that flushes audit events to a store in batches.

    Delivery is at-least-once: a failed bulk write puts the whole batch back
    at the front of the buffer, ahead of anything enqueued meanwhile.
    """

    DEFAULT_BATCH_SIZE = AuditConstants.BATCH_SIZE
    DEFAULT_FLUSH_INTERVAL = AuditConstants.FLUSH_INTERVAL_SECONDS
    DEFAULT_STOP_TIMEOUT = AuditConstants.STOP_TIMEOUT_SECONDS

    def __init__(
        self,
        store: AuditStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        retry_backoff_base: float = AuditConstants.RETRY_BACKOFF_BASE_SECONDS,
        retry_backoff_max: float = AuditConstants.RETRY_BACKOFF_MAX_SECONDS,
        diagnostics: Optional[DiagnosticsSink] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """Initialize audit queue.

        Args:
            store: Audit store backend receiving bulk writes.
            batch_size: Buffer length that triggers a flush.
            flush_interval: Seconds between periodic flushes.
            retry_backoff_base: First delay after a failed flush. 0 disables backoff.
            retry_backoff_max: Upper bound for the exponential delay.
            diagnostics: Sink for absorbed flush failures.
            monotonic: Clock used for backoff deadlines.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be positive")

        self.store = store
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.retry_backoff_base = retry_backoff_base
        self.retry_backoff_max = retry_backoff_max
        self.diagnostics = diagnostics or LoggingDiagnosticsSink(logger)
        self._monotonic = monotonic

        self._buffer: Deque[AuditEvent] = deque()
        self._lock = threading.Lock()
        self._flushing = False

        # Worker coordination
        self._wake_event = threading.Event()
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

        # Retry state
        self._consecutive_failures = 0
        self._next_attempt_at = 0.0

        # Statistics
        self._events_enqueued = 0
        self._events_persisted = 0
        self._failed_flushes = 0
        self._events_requeued = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background flush worker."""
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._stop_event.clear()
            self._wake_event.clear()
            self._worker = threading.Thread(
                target=self._worker_loop,
                name="AuditQueueFlusher",
                daemon=True,
            )
            self._worker.start()

        atexit.register(self.stop)
        logger.info(
            f"Audit queue started (batch_size={self.batch_size}, "
            f"flush_interval={self.flush_interval}s)"
        )

    def stop(self, timeout: Optional[float] = None) -> FlushResult:
        """Flush remaining events, then cancel the worker.

        Args:
            timeout: Maximum time to wait for the worker. Uses default if None.

        Returns:
            Result of the last flush attempt.
        """
        timeout = timeout if timeout is not None else self.DEFAULT_STOP_TIMEOUT

        # Final flush happens before the worker is cancelled
        result = self.force_flush()

        self._stop_event.set()
        self._wake_event.set()
        worker = self._worker
        if worker is not None and worker.is_alive() and worker is not threading.current_thread():
            worker.join(timeout=timeout)
            if worker.is_alive():
                logger.warning("Audit queue worker did not stop cleanly")
        self._worker = None

        # Pick up events that raced in or were requeued by an in-flight flush
        if self.queue_size:
            result = self.force_flush()
        if self.queue_size:
            logger.warning(f"{self.queue_size} audit events remain queued after shutdown")

        atexit.unregister(self.stop)
        logger.info(
            f"Audit queue stopped. Persisted: {self._events_persisted}, "
            f"failed flushes: {self._failed_flushes}"
        )
        return result

    def _worker_loop(self) -> None:
        """Background loop: flush on every interval tick or size wake-up."""
        while not self._stop_event.is_set():
            woken = self._wake_event.wait(timeout=self.flush_interval)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break

            trigger = FlushTrigger.SIZE if woken else FlushTrigger.TIMER
            try:
                self.flush(trigger)
            except Exception as e:
                logger.error(f"Unexpected error in audit queue worker: {e}")

            # Producers outpacing a single batch keep the worker going
            if self.queue_size >= self.batch_size and not self._in_backoff():
                self._wake_event.set()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def enqueue(self, event: AuditEvent) -> None:
        """Append an event to the buffer.

        Never rejects and never waits on the store. Reaching the batch size
        wakes the worker, or hands the flush to a short-lived thread when no
        worker is running.
        """
        with self._lock:
            self._buffer.append(event)
            self._events_enqueued += 1
            threshold_reached = len(self._buffer) >= self.batch_size and not self._flushing

        if threshold_reached:
            if self.is_running:
                self._wake_event.set()
            else:
                threading.Thread(
                    target=self.flush,
                    args=(FlushTrigger.SIZE,),
                    name="AuditQueueSizeFlush",
                    daemon=True,
                ).start()

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def _in_backoff(self) -> bool:
        return self._monotonic() < self._next_attempt_at

    def _backoff_delay(self) -> float:
        if self.retry_backoff_base <= 0 or self._consecutive_failures == 0:
            return 0.0
        delay = self.retry_backoff_base * (2 ** (self._consecutive_failures - 1))
        return min(delay, self.retry_backoff_max)

    def flush(self, trigger: FlushTrigger = FlushTrigger.FORCED) -> FlushResult:
        """Write the current buffer contents to the store in one call.

        Only one flush runs at a time; a request arriving while another is in
        flight returns a skipped result immediately. Size and timer triggers
        honour the retry backoff, forced flushes do not.
        """
        with self._lock:
            if self._flushing:
                return FlushResult(trigger, skipped=True, skip_reason="in_progress")
            if not self._buffer:
                return FlushResult(trigger, skipped=True, skip_reason="empty")
            if trigger != FlushTrigger.FORCED and self._in_backoff():
                return FlushResult(trigger, skipped=True, skip_reason="backoff")

            self._flushing = True
            batch = list(self._buffer)
            self._buffer.clear()

        succeeded = False
        persisted = 0
        failures = 0
        error: Optional[Exception] = None
        try:
            persisted = self.store.create_many(batch)
            succeeded = True
        except Exception as e:
            error = e
        finally:
            with self._lock:
                if succeeded:
                    self._consecutive_failures = 0
                    self._next_attempt_at = 0.0
                    self._events_persisted += persisted
                else:
                    # Whole batch goes back in front, original order preserved
                    self._buffer.extendleft(reversed(batch))
                    self._consecutive_failures += 1
                    self._failed_flushes += 1
                    self._events_requeued += len(batch)
                    self._next_attempt_at = self._monotonic() + self._backoff_delay()
                self._flushing = False
                failures = self._consecutive_failures

        if error is not None:
            emit(self.diagnostics, DiagnosticEvent(
                kind=DiagnosticKind.FLUSH_FAILED,
                message=f"Failed to flush {len(batch)} audit events; batch requeued",
                error=error,
                details={
                    "trigger": trigger.value,
                    "batch_size": len(batch),
                    "consecutive_failures": failures,
                },
            ))
            return FlushResult(
                trigger, attempted=len(batch), requeued=len(batch), error=error
            )

        logger.debug(f"Flushed {persisted} audit events ({trigger.value})")
        return FlushResult(trigger, attempted=len(batch), persisted=persisted)

    def force_flush(self) -> FlushResult:
        """Flush now, ignoring any retry backoff."""
        return self.flush(FlushTrigger.FORCED)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Get queue statistics."""
        with self._lock:
            return {
                "queue_size": len(self._buffer),
                "events_enqueued": self._events_enqueued,
                "events_persisted": self._events_persisted,
                "events_requeued": self._events_requeued,
                "failed_flushes": self._failed_flushes,
                "consecutive_failures": self._consecutive_failures,
                "flushing": self._flushing,
                "running": self.is_running,
            }

    @property
    def queue_size(self) -> int:
        """Current number of buffered events."""
        with self._lock:
            return len(self._buffer)

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    @property
    def is_running(self) -> bool:
        """Whether the background worker is running."""
        worker = self._worker
        return worker is not None and worker.is_alive() and not self._stop_event.is_set()

    def __len__(self) -> int:
        return self.queue_size
