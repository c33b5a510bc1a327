"""
Pytest configuration and shared fixtures.

Provides fixtures for users, sample records, a controllable persistence
backend, in-process sessions and isolated config environments.
"""

import asyncio
import os
from datetime import date, datetime, timezone
from typing import Any

import pytest

from folio.core.collaborators import InMemoryNotificationInbox, LocalBroadcastChannel
from folio.core.config.models import FolioConfig, SyncConfig
from folio.core.errors import PersistenceError
from folio.core.events import EventBus
from folio.core.records.backend import SoftDeleteResult
from folio.core.records.memory_backend import MemoryBackend
from folio.core.records.models import ChangeEntry, Priority, Record, Status, User
from folio.core.session import Session

# Fixed evaluation time used across tests (a Wednesday)
NOW = datetime(2025, 11, 12, 10, 0, tzinfo=timezone.utc)


# ==============================================================================
# Users
# ==============================================================================


@pytest.fixture
def dana():
    """Owner of most sample records."""
    return User(id="u_dana", name="Dana", team="Auto")


@pytest.fixture
def lee():
    """A second user who edits Dana's records."""
    return User(id="u_lee", name="Lee", team="POS")


@pytest.fixture
def users(dana, lee):
    return [dana, lee, User(id="u_sam", name="Sam")]


# ==============================================================================
# Sample Data Fixtures
# ==============================================================================


@pytest.fixture
def record(dana):
    """A single in-progress record owned by Dana."""
    return Record(
        id="Q425-001",
        title="Billing revamp",
        owner_id=dana.id,
        quarter="Q4 2025",
        status=Status.IN_PROGRESS,
        priority=Priority.P1,
        estimated_effort=4.0,
        actual_effort=1.0,
        eta=date(2025, 12, 15),
        created_at=datetime(2025, 10, 1, tzinfo=timezone.utc),
        last_updated=datetime(2025, 11, 10, tzinfo=timezone.utc),
    )


@pytest.fixture
def sample_records(dana, lee):
    """Records in various states."""
    return [
        Record(
            id="Q425-001",
            title="Billing revamp",
            owner_id=dana.id,
            quarter="Q4 2025",
            status=Status.IN_PROGRESS,
            estimated_effort=4.0,
            actual_effort=1.0,
            eta=date(2025, 11, 1),
            last_updated=datetime(2025, 11, 10, tzinfo=timezone.utc),
        ),
        Record(
            id="Q425-002",
            title="Export fixes",
            owner_id=dana.id,
            quarter="Q4 2025",
            status=Status.NOT_STARTED,
            eta=date(2025, 12, 20),
            last_updated=datetime(2025, 10, 1, tzinfo=timezone.utc),
        ),
        Record(
            id="Q425-003",
            title="POS terminal rollout",
            owner_id=lee.id,
            quarter="Q4 2025",
            status=Status.DONE,
            eta=date(2025, 10, 15),
            last_updated=datetime(2025, 10, 16, tzinfo=timezone.utc),
        ),
    ]


# ==============================================================================
# Persistence Fixtures
# ==============================================================================


class ControlledBackend(MemoryBackend):
    """
    Memory backend whose ``persist`` calls block until the test resolves them.

    Usage:
        backend.hold = True
        task = asyncio.create_task(session.edit_field(...))
        await backend.wait_for_calls(1)
        backend.fail(0)  # or backend.succeed(0)
    """

    def __init__(self, records: list[Record] | None = None) -> None:
        super().__init__(records)
        self.hold = False
        self.calls: list[tuple[Record, asyncio.Future[None]]] = []
        self.fail_next: PersistenceError | None = None
        self.soft_delete_result: SoftDeleteResult | None = None

    async def persist(self, record: Record) -> None:
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        if not self.hold:
            await super().persist(record)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self.calls.append((record, future))
        await future
        await super().persist(record)

    async def wait_for_calls(self, count: int) -> None:
        while len(self.calls) < count:
            await asyncio.sleep(0)

    def succeed(self, index: int) -> None:
        self.calls[index][1].set_result(None)

    def fail(self, index: int, reason: str = "write rejected") -> None:
        record = self.calls[index][0]
        self.calls[index][1].set_exception(PersistenceError(record.id, reason))

    async def soft_delete(self, record_id: str) -> SoftDeleteResult:
        if self.soft_delete_result is not None:
            return self.soft_delete_result
        return await super().soft_delete(record_id)


@pytest.fixture
def backend(sample_records):
    return ControlledBackend(sample_records)


@pytest.fixture
def audit_entries(backend) -> list[ChangeEntry]:
    return backend.audit_log


# ==============================================================================
# Session Fixtures
# ==============================================================================


@pytest.fixture
def fast_config(users):
    """Config with short sync timers so coordinator tests run quickly."""
    return FolioConfig(
        sync=SyncConfig(grace_delay=0.01, pending_timeout=0.2),
        users=users,
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def inbox(bus):
    return InMemoryNotificationInbox(bus)


@pytest.fixture
def make_session(backend, fast_config, bus, inbox, users):
    """
    Factory for sessions sharing one backend, bus and inbox.

    Sessions arm asyncio timers, so tests close them when done.

    Usage:
        session = await make_session(actor=lee)
        ...
        await session.close()
    """

    async def _make(actor: User, **kwargs: Any) -> Session:
        kwargs.setdefault("config", fast_config)
        kwargs.setdefault("clock", lambda: NOW)
        session = Session(
            backend,
            actor=actor,
            broadcast=LocalBroadcastChannel(bus),
            notifications=inbox,
            **kwargs,
        )
        await session.load()
        await session.connect()
        return session

    return _make


# ==============================================================================
# Environment Fixtures
# ==============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """
    Provide a clean environment without FOLIO_* env vars.

    Removes all FOLIO_* environment variables to ensure tests
    don't inherit configuration from the system.
    """
    for key in list(os.environ.keys()):
        if key.startswith("FOLIO_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def isolated_config(clean_env, tmp_path, monkeypatch):
    """
    Provide completely isolated config environment.

    Sets XDG_CONFIG_HOME to a temporary location and clears the config
    cache so tests never load system or user configs.
    """
    config_home = tmp_path / "config"
    config_home.mkdir()
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))

    from folio.core.config import clear_cache

    clear_cache()
    yield config_home
    clear_cache()
