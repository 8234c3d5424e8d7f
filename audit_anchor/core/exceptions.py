"""
Error taxonomy for the audit engine.
"""

from enum import Enum
from typing import Optional


class AnchorErrorKind(str, Enum):
    """Classified anchoring failures reported by the ledger client."""
    REDUNDANT = "redundant"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"


class AuditError(Exception):
    """Base class for audit engine errors."""


class StoreUnavailable(AuditError):
    """The durable store could not complete the call."""


class NotFound(AuditError):
    """The requested record does not exist in the store."""


class AnchorUnavailable(AuditError):
    """The ledger could not be reached or timed out."""


class AnchorRejected(AuditError):
    """The ledger refused the submission."""


class ReconciliationFailure(AuditError):
    """An event could not be linked to its batch after all retries."""

    def __init__(self, event_id: int, cause: Optional[Exception] = None):
        self.event_id = event_id
        self.cause = cause
        super().__init__(f"Failed to reconcile audit event {event_id}: {cause}")
