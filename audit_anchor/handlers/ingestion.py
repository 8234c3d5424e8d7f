"""
Audit event ingestion handler.
"""

import logging
from typing import Any, Optional

from audit_anchor.core.exceptions import StoreUnavailable
from audit_anchor.handlers.accumulator import EventAccumulator
from audit_anchor.handlers.processor import BatchProcessor
from audit_anchor.handlers.store import AuditStore
from audit_anchor.models.audit import AuditEvent, Category, Outcome, Severity
from audit_anchor.utils.hashing import serialize_details
from audit_anchor.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


def build_event(
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
    Validate inputs and build an unlinked, unsaved audit event.

    Raises:
        ValueError: if an identifier is blank
    """
    for name, value in (("actor_id", actor_id), ("action", action), ("resource_id", resource_id)):
        if not value or not str(value).strip():
            raise ValueError(f"{name} must not be empty")

    return AuditEvent(
        timestamp=timestamp or utc_now_iso(),
        actor_id=actor_id,
        action=action,
        resource_id=resource_id,
        details=serialize_details(details),
        severity=Severity(severity),
        category=Category(category),
        outcome=Outcome(outcome),
        ip_address=ip_address,
        user_agent=user_agent,
        session_id=session_id,
    )


async def log_event(
    store: AuditStore,
    accumulator: EventAccumulator,
    processor: BatchProcessor,
    event: AuditEvent
) -> AuditEvent:
    """
    Durably record an event, then buffer it for batching.

    The event is only buffered once the store has accepted it. Reaching the
    size threshold runs a batch immediately instead of waiting for the poll.

    Raises:
        StoreUnavailable: if the event could not be stored
    """
    stored = await store.create_event(event)
    accumulator.append(stored)

    logger.debug("Audit event logged: %s by %s (id=%s)", stored.action, stored.actor_id, stored.id)

    if accumulator.size_reached():
        try:
            await processor.run_batch()
        except StoreUnavailable:
            # The event is stored; batching will retry on the next trigger.
            logger.exception("Eager audit batch run failed")

    return stored
