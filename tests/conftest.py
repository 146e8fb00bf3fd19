"""Shared fixtures for secaudit tests."""

import pytest

from fixtures.audit_events import FixedClock, RecordingSink
from secaudit.audit.context import NullContextProvider
from secaudit.audit.integrity import IntegrityCodec
from secaudit.audit.queue import AuditQueue
from secaudit.audit.service import AuditService
from secaudit.audit.store import InMemoryAuditStore
from secaudit.common.config import reset_config


@pytest.fixture(autouse=True)
def _reset_global_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def codec():
    return IntegrityCodec()


@pytest.fixture
def store(codec, clock):
    return InMemoryAuditStore(codec=codec, clock=clock)


@pytest.fixture
def queue(store, sink):
    """Unstarted queue with a batch size large enough to never trigger."""
    return AuditQueue(store, batch_size=1000, flush_interval=60, diagnostics=sink)


@pytest.fixture
def service(store, queue, clock, sink):
    """Unstarted service without ambient request context."""
    return AuditService(
        store=store,
        queue=queue,
        context_provider=NullContextProvider(),
        clock=clock,
        diagnostics=sink,
    )
