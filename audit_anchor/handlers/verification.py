"""
Integrity verification for anchored audit events.
"""

import logging

from audit_anchor.core.exceptions import AnchorUnavailable, StoreUnavailable
from audit_anchor.handlers.ledger import LedgerAnchorClient, is_placeholder, is_valid_reference
from audit_anchor.handlers.store import AuditStore
from audit_anchor.utils.merkle import build_root

logger = logging.getLogger(__name__)


async def verify_integrity(
    store: AuditStore,
    ledger: LedgerAnchorClient,
    event_id: int,
    check_ledger: bool = True
) -> bool:
    """
    Spot-check that an event is part of a batch that is anchored on the ledger.

    Checks, in order:
    1. The event exists and is fully linked
    2. Its reference is a real ledger reference, not a placeholder
    3. Its batch exists and agrees on root and reference
    4. If every member of the batch is linked, recomputing the root from the
       members in leaf order reproduces the batch root
    5. Optionally, the ledger still reports the root as anchored

    Returns:
        True only if every check passes; False if the store cannot be read
    """
    try:
        return await _verify(store, ledger, event_id, check_ledger)
    except StoreUnavailable as e:
        logger.warning("Could not verify audit event %s: %s", event_id, e)
        return False


async def _verify(
    store: AuditStore,
    ledger: LedgerAnchorClient,
    event_id: int,
    check_ledger: bool
) -> bool:
    event = await store.get_event(event_id)
    if not event or not event.is_linked:
        return False

    if is_placeholder(event.anchor_reference) or not is_valid_reference(event.anchor_reference):
        return False

    batch = await store.get_batch(event.batch_id)
    if not batch:
        logger.warning("Audit event %s points at missing batch %s", event_id, event.batch_id)
        return False

    if batch.merkle_root != event.merkle_root or batch.anchor_reference != event.anchor_reference:
        logger.warning("Audit event %s disagrees with batch %s", event_id, batch.id)
        return False

    members = await store.list_batch_members(batch.id)
    if len(members) == batch.member_count and build_root(members) != batch.merkle_root:
        logger.warning("Recomputed root for batch %s does not match", batch.id)
        return False

    if not check_ledger:
        return True

    try:
        return await ledger.is_anchored(batch.merkle_root)
    except AnchorUnavailable as e:
        logger.warning("Could not confirm anchoring of batch %s: %s", batch.id, e)
        return False
