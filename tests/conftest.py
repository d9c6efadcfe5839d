"""Shared pytest fixtures for helmsman tests."""

from datetime import UTC, datetime, timedelta

import pytest

from helmsman.application.audit_emitter import AuditEmitter
from helmsman.application.claims import ClaimManager
from helmsman.application.lifecycle import RunLifecycle
from helmsman.infrastructure.persistence.audit_log import InMemoryAuditLog
from helmsman.infrastructure.persistence.filesystem import FilesystemRunStore
from helmsman.infrastructure.persistence.memory import InMemoryRunStore

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock; call it to get the current time."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def fs_store(tmp_path) -> FilesystemRunStore:
    return FilesystemRunStore(tmp_path / ".helmsman")


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def emitter(audit_log: InMemoryAuditLog) -> AuditEmitter:
    return AuditEmitter(audit_log)


@pytest.fixture
def lifecycle(memory_store, emitter, clock) -> RunLifecycle:
    return RunLifecycle(memory_store, emitter, clock=clock)


@pytest.fixture
def claims(memory_store, emitter, clock) -> ClaimManager:
    return ClaimManager(memory_store, emitter, clock=clock)
