"""
Batch processor: drains the accumulator into an anchored, reconciled batch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple

from audit_anchor.core.exceptions import (
    AnchorErrorKind,
    NotFound,
    ReconciliationFailure,
    StoreUnavailable,
)
from audit_anchor.handlers.accumulator import EventAccumulator
from audit_anchor.handlers.ledger import (
    LedgerAnchorClient,
    pending_reference,
    redundant_reference,
)
from audit_anchor.handlers.store import AuditStore
from audit_anchor.models.audit import AuditBatch, AuditEvent, BatchStatus
from audit_anchor.utils.merkle import build_root
from audit_anchor.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """Result of one batch run."""
    batch: AuditBatch
    linked_ids: List[int] = field(default_factory=list)
    failures: List[ReconciliationFailure] = field(default_factory=list)

    @property
    def failed_ids(self) -> List[int]:
        return [failure.event_id for failure in self.failures]


class BatchProcessor:
    """Forms one batch at a time from the accumulator's buffer."""

    def __init__(
        self,
        accumulator: EventAccumulator,
        store: AuditStore,
        ledger: LedgerAnchorClient,
        anchor_timeout: float = 20.0,
        reconcile_max_retries: int = 2,
        reconcile_backoff_base: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.accumulator = accumulator
        self.store = store
        self.ledger = ledger
        self.anchor_timeout = anchor_timeout
        self.reconcile_max_retries = reconcile_max_retries
        self.reconcile_backoff_base = reconcile_backoff_base
        self._sleep = sleep

    async def run_batch(self) -> Optional[BatchOutcome]:
        """
        Run one batch over the current buffer.

        Returns None when there is nothing to do or a run is already in
        progress.

        Raises:
            StoreUnavailable: if the batch record could not be persisted; the
                buffer is left untouched so the next run picks it up again
        """
        accumulator = self.accumulator
        if accumulator.is_processing or len(accumulator) == 0:
            return None

        # Set before the first await so concurrent callers see it.
        accumulator.is_processing = True
        try:
            snapshot = accumulator.snapshot()
            members = [event for event in snapshot if event.id is not None]

            if len(members) < len(snapshot):
                logger.warning(
                    "Dropping %d buffered audit events without a store id",
                    len(snapshot) - len(members),
                )

            if not members:
                accumulator.remove_snapshot(snapshot)
                return None

            outcome = await self._process(members)

            accumulator.remove_snapshot(snapshot)
            accumulator.mark_processed()
            return outcome
        finally:
            accumulator.is_processing = False

    async def _process(self, members: List[AuditEvent]) -> BatchOutcome:
        logger.info("Processing audit batch with %d events", len(members))

        merkle_root = build_root(members)
        anchor_reference, status = await self._anchor(merkle_root)

        batch = await self.store.create_batch(AuditBatch(
            timestamp=utc_now(),
            merkle_root=merkle_root,
            anchor_reference=anchor_reference,
            status=status,
            member_count=len(members),
        ))

        outcome = BatchOutcome(batch=batch)
        for index, event in enumerate(members):
            patch = {
                "batch_id": batch.id,
                "merkle_root": merkle_root,
                "anchor_reference": anchor_reference,
                "batch_index": index,
            }
            try:
                await self._reconcile(event.id, patch)
            except ReconciliationFailure as failure:
                logger.error(str(failure))
                outcome.failures.append(failure)
                continue
            outcome.linked_ids.append(event.id)

        logger.info(
            "Audit batch %s %s: root=%s reference=%s linked=%d failed=%d",
            batch.id,
            status.value,
            merkle_root[:16],
            anchor_reference,
            len(outcome.linked_ids),
            len(outcome.failures),
        )
        return outcome

    async def _anchor(self, merkle_root: str) -> Tuple[str, BatchStatus]:
        """Anchor the root, degrading to a pending placeholder on failure."""
        try:
            result = await asyncio.wait_for(self.ledger.anchor(merkle_root), timeout=self.anchor_timeout)
        except asyncio.TimeoutError:
            logger.warning("Anchoring root %s timed out after %ss", merkle_root[:16], self.anchor_timeout)
            return pending_reference(merkle_root), BatchStatus.FAILED
        except Exception:
            logger.exception("Anchoring root %s raised", merkle_root[:16])
            return pending_reference(merkle_root), BatchStatus.FAILED

        if result.success:
            return result.reference, BatchStatus.CONFIRMED

        if result.error_kind == AnchorErrorKind.REDUNDANT:
            logger.info("Root %s was already anchored", merkle_root[:16])
            return redundant_reference(merkle_root), BatchStatus.CONFIRMED

        logger.warning(
            "Anchoring root %s failed (%s): %s",
            merkle_root[:16],
            result.error_kind.value if result.error_kind else "unknown",
            result.message,
        )
        return pending_reference(merkle_root), BatchStatus.FAILED

    async def _reconcile(self, event_id: int, patch: dict) -> None:
        """
        Write batch linkage onto one event with bounded exponential backoff.

        Raises:
            ReconciliationFailure: once retries are exhausted or the event is gone
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.reconcile_max_retries + 1):
            try:
                await self.store.update_event(event_id, patch)
                return
            except NotFound as e:
                raise ReconciliationFailure(event_id, e) from e
            except StoreUnavailable as e:
                last_error = e
                if attempt < self.reconcile_max_retries:
                    delay = self.reconcile_backoff_base * (2 ** attempt)
                    logger.warning(
                        "Reconciling audit event %s failed (attempt %d), retrying in %.2fs",
                        event_id,
                        attempt + 1,
                        delay,
                    )
                    await self._sleep(delay)

        raise ReconciliationFailure(event_id, last_error)
