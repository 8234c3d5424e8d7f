"""Pytest configuration and fixtures for the audit engine tests."""

import asyncio
from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from audit_anchor.core.database import close_db, init_db, make_session_factory
from audit_anchor.core.exceptions import AnchorErrorKind, StoreUnavailable
from audit_anchor.handlers.ledger import AnchorResult
from audit_anchor.handlers.service import AuditService
from audit_anchor.handlers.store import AuditStore

VALID_REFERENCE = "ab" * 32


class FakeLedger:
    """In-memory ledger gateway with scriptable outcomes."""

    def __init__(self, result: Optional[AnchorResult] = None):
        self.result = result or AnchorResult.ok(VALID_REFERENCE)
        self.submitted: List[str] = []
        self.anchored = set()
        self.read_error: Optional[Exception] = None
        self.raise_on_anchor: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def anchor(self, digest: str) -> AnchorResult:
        self.submitted.append(digest)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.raise_on_anchor is not None:
            raise self.raise_on_anchor
        if self.result.success:
            self.anchored.add(digest)
        return self.result

    async def is_anchored(self, digest: str) -> bool:
        if self.read_error is not None:
            raise self.read_error
        return digest in self.anchored


class FlakyStore(AuditStore):
    """AuditStore that fails selected calls with StoreUnavailable."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.fail_create_event = False
        self.fail_create_batch = False
        self.update_failures = {}
        self.update_attempts = {}
        self.update_gate: Optional[asyncio.Event] = None
        self.update_started = asyncio.Event()

    async def create_event(self, event):
        if self.fail_create_event:
            raise StoreUnavailable("create_event is down")
        return await super().create_event(event)

    async def create_batch(self, batch):
        if self.fail_create_batch:
            raise StoreUnavailable("create_batch is down")
        return await super().create_batch(batch)

    async def update_event(self, event_id, patch):
        self.update_attempts[event_id] = self.update_attempts.get(event_id, 0) + 1
        self.update_started.set()
        if self.update_gate is not None:
            await self.update_gate.wait()
        remaining = self.update_failures.get(event_id, 0)
        if remaining:
            self.update_failures[event_id] = remaining - 1
            raise StoreUnavailable(f"update_event {event_id} is down")
        return await super().update_event(event_id, patch)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}")
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return FlakyStore(session_factory)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(store, ledger, clock, sleeps):
    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return AuditService(
        store=store,
        ledger=ledger,
        batch_interval=60.0,
        max_batch_size=100,
        poll_interval=0.01,
        anchor_timeout=1.0,
        reconcile_max_retries=2,
        reconcile_backoff_base=0.5,
        clock=clock,
        sleep=record_sleep,
    )


def failing_result(kind: AnchorErrorKind) -> AnchorResult:
    return AnchorResult.failed(kind, f"ledger says {kind.value}")
