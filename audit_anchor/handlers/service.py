"""
Audit service: the single per-process owner of the buffer, scheduler and
batch processor.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from audit_anchor.core.config import Settings
from audit_anchor.handlers import ingestion, verification
from audit_anchor.handlers.accumulator import BatchScheduler, EventAccumulator
from audit_anchor.handlers.ledger import LedgerAnchorClient
from audit_anchor.handlers.processor import BatchOutcome, BatchProcessor
from audit_anchor.handlers.store import AuditStore
from audit_anchor.models.audit import AuditEvent, AuditEventFilter, Category, Outcome, Severity
from audit_anchor.utils.time import seconds_ago

logger = logging.getLogger(__name__)


class AuditService:
    """Entry point used by request handlers and the application lifespan."""

    def __init__(
        self,
        store: AuditStore,
        ledger: LedgerAnchorClient,
        batch_interval: float = 4 * 60 * 60,
        max_batch_size: int = 1000,
        poll_interval: float = 30.0,
        anchor_timeout: float = 20.0,
        reconcile_max_retries: int = 2,
        reconcile_backoff_base: float = 0.5,
        verify_on_ledger: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.store = store
        self.ledger = ledger
        self.verify_on_ledger = verify_on_ledger
        self.accumulator = EventAccumulator(batch_interval, max_batch_size, clock=clock)
        self.processor = BatchProcessor(
            self.accumulator,
            store,
            ledger,
            anchor_timeout=anchor_timeout,
            reconcile_max_retries=reconcile_max_retries,
            reconcile_backoff_base=reconcile_backoff_base,
            sleep=sleep,
        )
        self.scheduler = BatchScheduler(self.accumulator, self.processor.run_batch, poll_interval)

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: async_sessionmaker) -> "AuditService":
        return cls(
            store=AuditStore(session_factory),
            ledger=LedgerAnchorClient.from_settings(settings),
            batch_interval=settings.batch_interval,
            max_batch_size=settings.max_batch_size,
            poll_interval=settings.poll_interval,
            anchor_timeout=settings.anchor_timeout,
            reconcile_max_retries=settings.reconcile_max_retries,
            reconcile_backoff_base=settings.reconcile_backoff_base,
            verify_on_ledger=settings.verify_on_ledger,
        )

    async def log_event(
        self,
        actor_id: str,
        action: str,
        resource_id: str,
        details: Any = None,
        timestamp: Optional[str] = None,
        severity: Severity = Severity.LOW,
        category: Category = Category.DATA_MODIFICATION,
        outcome: Outcome = Outcome.SUCCESS,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Record an audit event.

        Raises:
            ValueError: if an identifier is blank
            StoreUnavailable: if the event could not be stored
        """
        event = ingestion.build_event(
            actor_id,
            action,
            resource_id,
            details,
            timestamp=timestamp,
            severity=severity,
            category=category,
            outcome=outcome,
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
        )
        return await ingestion.log_event(self.store, self.accumulator, self.processor, event)

    async def force_batch_now(self) -> Optional[BatchOutcome]:
        """Run a batch immediately, bypassing the timer."""
        return await self.processor.run_batch()

    def get_pending_count(self) -> int:
        return len(self.accumulator)

    @property
    def is_processing(self) -> bool:
        return self.accumulator.is_processing

    async def verify_integrity(self, event_id: int) -> bool:
        return await verification.verify_integrity(
            self.store,
            self.ledger,
            event_id,
            check_ledger=self.verify_on_ledger,
        )

    async def recover_unlinked(self, min_age: float = 0.0, limit: int = 500) -> int:
        """
        Re-buffer stored events that were never linked to a batch.

        Covers events whose buffer entry was lost when the process stopped
        before they were batched. Returns the number of events re-buffered.
        """
        orphans = await self.store.list_events(AuditEventFilter(
            unlinked=True,
            created_before=seconds_ago(min_age),
            limit=limit,
        ))

        recovered = 0
        for event in orphans:
            if not self.accumulator.contains(event.id):
                self.accumulator.append(event)
                recovered += 1

        if recovered:
            logger.info("Re-buffered %d unlinked audit events", recovered)
        return recovered

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self, flush: bool = False) -> None:
        """Stop the scheduler, optionally running a final batch."""
        await self.scheduler.stop()
        if flush and self.get_pending_count():
            await self.force_batch_now()
