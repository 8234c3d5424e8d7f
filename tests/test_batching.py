"""Tests for ingestion, batch processing and reconciliation."""

import asyncio

import pytest

from audit_anchor.core.exceptions import AnchorErrorKind, StoreUnavailable
from audit_anchor.handlers.ingestion import build_event
from audit_anchor.models.audit import AuditEventFilter, BatchStatus
from audit_anchor.utils.hashing import hash_event, hash_pair
from audit_anchor.utils.merkle import build_root

from conftest import VALID_REFERENCE, failing_result


async def log_n(service, n, start=0):
    return [
        await service.log_event(
            actor_id="patient@example.com",
            action="APPOINTMENT_BOOKED",
            resource_id=f"appointment-{i}",
            details={"slot": i},
        )
        for i in range(start, start + n)
    ]


async def test_log_event_stores_and_buffers(service, store):
    stored = await service.log_event("alice", "LOGIN", "session-1", {"ip": "10.0.0.1"})

    assert stored.id is not None
    assert service.get_pending_count() == 1
    assert (await store.get_event(stored.id)).action == "LOGIN"


async def test_store_failure_is_reported_and_not_buffered(service, store):
    store.fail_create_event = True

    with pytest.raises(StoreUnavailable):
        await service.log_event("alice", "LOGIN", "session-1")

    assert service.get_pending_count() == 0


async def test_invalid_event_is_rejected_before_storing(service, store):
    with pytest.raises(ValueError):
        await service.log_event("", "LOGIN", "session-1")

    assert await store.list_events() == []


async def test_end_to_end_four_events(service, store, ledger):
    e1, e2, e3, e4 = await log_n(service, 4)

    outcome = await service.force_batch_now()

    expected = hash_pair(
        hash_pair(hash_event(e1), hash_event(e2)),
        hash_pair(hash_event(e3), hash_event(e4)),
    )
    assert outcome.batch.member_count == 4
    assert outcome.batch.merkle_root == expected
    assert outcome.batch.status == BatchStatus.CONFIRMED
    assert outcome.batch.anchor_reference == VALID_REFERENCE
    assert ledger.submitted == [expected]
    assert service.get_pending_count() == 0

    events = await store.list_events()
    assert [e.merkle_root for e in events] == [expected] * 4
    assert {e.batch_id for e in events} == {outcome.batch.id}
    assert [e.batch_index for e in events] == [0, 1, 2, 3]
    assert all(e.anchor_reference == VALID_REFERENCE for e in events)


async def test_force_batch_on_empty_buffer_is_noop(service, store, ledger):
    assert await service.force_batch_now() is None
    assert ledger.submitted == []
    assert await store.list_batches() == []


async def test_concurrent_force_batch_creates_one_batch(service, store):
    await log_n(service, 3)

    results = await asyncio.gather(service.force_batch_now(), service.force_batch_now())

    assert sum(result is not None for result in results) == 1
    assert len(await store.list_batches()) == 1
    assert service.get_pending_count() == 0


async def test_anchor_failure_still_links_every_event(service, store, ledger):
    ledger.result = failing_result(AnchorErrorKind.UNAVAILABLE)
    events = await log_n(service, 3)

    outcome = await service.force_batch_now()

    root = build_root(events)
    assert outcome.batch.status == BatchStatus.FAILED
    assert outcome.batch.anchor_reference == f"pending-{root[:16]}"
    assert len(await store.list_batches()) == 1
    stored = await store.list_events()
    assert all(e.is_linked for e in stored)
    assert all(e.anchor_reference == f"pending-{root[:16]}" for e in stored)
    assert service.get_pending_count() == 0


async def test_anchor_rejection_degrades_to_failed(service, ledger):
    ledger.result = failing_result(AnchorErrorKind.REJECTED)
    await log_n(service, 1)

    outcome = await service.force_batch_now()

    assert outcome.batch.status == BatchStatus.FAILED


async def test_anchor_exception_degrades_to_failed(service, ledger):
    ledger.raise_on_anchor = RuntimeError("socket closed")
    await log_n(service, 2)

    outcome = await service.force_batch_now()

    assert outcome.batch.status == BatchStatus.FAILED
    assert outcome.batch.anchor_reference.startswith("pending-")
    assert len(outcome.linked_ids) == 2


async def test_anchor_timeout_degrades_to_failed(service, ledger):
    service.processor.anchor_timeout = 0.01
    ledger.gate = asyncio.Event()
    await log_n(service, 1)

    outcome = await service.force_batch_now()

    assert outcome.batch.status == BatchStatus.FAILED
    assert not service.is_processing


async def test_redundant_anchor_counts_as_confirmed(service, ledger):
    ledger.result = failing_result(AnchorErrorKind.REDUNDANT)
    events = await log_n(service, 2)

    outcome = await service.force_batch_now()

    assert outcome.batch.status == BatchStatus.CONFIRMED
    assert outcome.batch.anchor_reference == f"redundant-{build_root(events)[:16]}"


async def test_event_logged_during_run_waits_for_next_batch(service, store, ledger):
    first = await log_n(service, 2)
    ledger.gate = asyncio.Event()

    run = asyncio.create_task(service.force_batch_now())
    await ledger.started.wait()
    assert service.is_processing

    late = await service.log_event("bob", "LOGIN", "session-9")
    ledger.gate.set()
    outcome = await run

    assert outcome.batch.member_count == 2
    assert outcome.batch.merkle_root == build_root(first)
    assert service.get_pending_count() == 1
    assert not (await store.get_event(late.id)).is_linked

    ledger.gate = None
    second = await service.force_batch_now()
    assert second.batch.member_count == 1
    assert (await store.get_event(late.id)).batch_id == second.batch.id


async def test_reconciliation_retries_with_backoff(service, store, sleeps):
    events = await log_n(service, 2)
    store.update_failures[events[0].id] = 2

    outcome = await service.force_batch_now()

    assert outcome.failures == []
    assert sorted(outcome.linked_ids) == sorted(e.id for e in events)
    assert store.update_attempts[events[0].id] == 3
    assert sleeps == [0.5, 1.0]


async def test_reconciliation_gives_up_without_blocking_others(service, store, sleeps):
    events = await log_n(service, 3)
    store.update_failures[events[1].id] = 10

    outcome = await service.force_batch_now()

    assert outcome.failed_ids == [events[1].id]
    assert outcome.linked_ids == [events[0].id, events[2].id]
    assert store.update_attempts[events[1].id] == 3
    assert service.get_pending_count() == 0
    assert not (await store.get_event(events[1].id)).is_linked
    assert (await store.get_event(events[2].id)).is_linked


async def test_missing_event_is_not_retried(service, store, sleeps):
    events = await log_n(service, 1)
    original_id = events[0].id
    events[0].id = 9999

    outcome = await service.force_batch_now()

    assert outcome.failed_ids == [9999]
    assert store.update_attempts[9999] == 1
    assert sleeps == []
    assert not (await store.get_event(original_id)).is_linked


async def test_events_without_id_are_dropped(service, store, ledger):
    events = await log_n(service, 2)
    events[0].id = None

    outcome = await service.force_batch_now()

    assert outcome.batch.member_count == 1
    assert outcome.batch.merkle_root == hash_event(events[1])
    assert service.get_pending_count() == 0


async def test_run_with_only_invalid_entries_clears_them(service, store, ledger):
    events = await log_n(service, 1)
    events[0].id = None

    assert await service.force_batch_now() is None
    assert service.get_pending_count() == 0
    assert ledger.submitted == []


async def test_batch_store_failure_keeps_buffer(service, store, ledger):
    await log_n(service, 2)
    store.fail_create_batch = True

    with pytest.raises(StoreUnavailable):
        await service.force_batch_now()

    assert service.get_pending_count() == 2
    assert not service.is_processing

    store.fail_create_batch = False
    ledger.result = failing_result(AnchorErrorKind.REDUNDANT)
    outcome = await service.force_batch_now()

    assert outcome.batch.status == BatchStatus.CONFIRMED
    assert service.get_pending_count() == 0


async def test_reaching_max_batch_size_runs_batch_eagerly(service, store):
    service.accumulator.max_batch_size = 3

    await log_n(service, 2)
    assert await store.list_batches() == []

    await log_n(service, 1, start=2)
    batches = await store.list_batches()
    assert len(batches) == 1
    assert batches[0].member_count == 3
    assert service.get_pending_count() == 0


async def test_eager_batch_failure_does_not_fail_ingestion(service, store):
    service.accumulator.max_batch_size = 1
    store.fail_create_batch = True

    stored = await service.log_event("alice", "LOGIN", "session-1")

    assert stored.id is not None
    assert service.get_pending_count() == 1


async def test_recover_unlinked_rebuffers_orphans(service, store):
    orphan = await store.create_event(build_event("alice", "LOGIN", "session-1"))
    buffered = await service.log_event("bob", "LOGIN", "session-2")

    assert await service.recover_unlinked() == 1
    assert service.get_pending_count() == 2
    assert service.accumulator.contains(orphan.id)
    assert service.accumulator.contains(buffered.id)

    assert await service.recover_unlinked() == 0

    await service.force_batch_now()
    assert await store.list_events(AuditEventFilter(unlinked=True)) == []


async def test_recover_unlinked_respects_min_age(service, store):
    orphan = await store.create_event(build_event("alice", "LOGIN", "session-1"))

    assert await service.recover_unlinked(min_age=3600) == 0
    assert service.get_pending_count() == 0

    assert await service.recover_unlinked(min_age=0) == 1
    assert service.accumulator.contains(orphan.id)
