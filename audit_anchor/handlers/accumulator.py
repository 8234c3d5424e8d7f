"""
In-memory accumulation of stored audit events and the polling scheduler that
decides when a batch is due.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from audit_anchor.models.audit import AuditEvent

logger = logging.getLogger(__name__)


class EventAccumulator:
    """
    FIFO buffer of events waiting to be batched, plus the processing guard.

    Only the batch processor removes events, and only the snapshot it took.
    """

    def __init__(
        self,
        batch_interval: float,
        max_batch_size: int,
        clock: Callable[[], float] = time.monotonic
    ):
        self.batch_interval = batch_interval
        self.max_batch_size = max_batch_size
        self._clock = clock
        self._buffer: List[AuditEvent] = []
        self.is_processing = False
        self.last_processed_at = clock()

    def __len__(self) -> int:
        return len(self._buffer)

    def append(self, event: AuditEvent) -> None:
        self._buffer.append(event)

    def contains(self, event_id: int) -> bool:
        return any(event.id == event_id for event in self._buffer)

    def snapshot(self) -> List[AuditEvent]:
        """Copy of the buffer; later appends do not affect it."""
        return list(self._buffer)

    def remove_snapshot(self, snapshot: List[AuditEvent]) -> None:
        """Drop the events of a finished run, keeping anything appended since."""
        # Appends only ever extend the tail, so the snapshot is still the head.
        del self._buffer[:len(snapshot)]

    def size_reached(self) -> bool:
        return len(self._buffer) >= self.max_batch_size

    def interval_elapsed(self) -> bool:
        return self._clock() - self.last_processed_at >= self.batch_interval

    def is_due(self) -> bool:
        """Whether an idle accumulator should start a batch run now."""
        if self.is_processing or not self._buffer:
            return False
        return self.size_reached() or self.interval_elapsed()

    def mark_processed(self) -> None:
        self.last_processed_at = max(self.last_processed_at, self._clock())


class BatchScheduler:
    """
    Cooperative polling loop that triggers batch runs.

    Timing slack is bounded by the poll interval.
    """

    def __init__(
        self,
        accumulator: EventAccumulator,
        run_batch: Callable[[], Awaitable[object]],
        poll_interval: float
    ):
        self.accumulator = accumulator
        self._run_batch = run_batch
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> bool:
        """Evaluate the trigger once; returns True if a run was started."""
        if not self.accumulator.is_due():
            return False
        await self._run_batch()
        return True

    async def _loop(self) -> None:
        logger.info(
            "Batch scheduler started: poll=%ss interval=%ss max_size=%d",
            self.poll_interval,
            self.accumulator.batch_interval,
            self.accumulator.max_batch_size,
        )
        while True:
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            else:
                return
            try:
                await self.tick()
            except Exception:
                # Events stay buffered; the next tick retries the run.
                logger.exception("Scheduled audit batch run failed")

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop polling, letting an in-flight run finish first."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Batch scheduler stopped")
