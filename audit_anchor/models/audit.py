"""
Audit event and batch models - append-only, tamper-evident audit trail.
"""

from sqlmodel import SQLModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum

from audit_anchor.utils.time import utc_now


class Severity(str, Enum):
    """How serious an audited action is."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Category(str, Enum):
    """Broad class of an audited action."""
    AUTHENTICATION = "authentication"
    DATA_ACCESS = "data_access"
    DATA_MODIFICATION = "data_modification"
    SYSTEM = "system"


class Outcome(str, Enum):
    """Result of an audited action."""
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class BatchStatus(str, Enum):
    """Anchoring status of a batch."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class AuditEventBase(SQLModel):
    """Base audit event schema."""
    timestamp: str = Field(..., description="ISO-8601 occurrence time of the audited action")
    actor_id: str = Field(..., min_length=1, description="Who performed the action")
    action: str = Field(..., min_length=1, description="Operation label (e.g., 'PROFILE_UPDATE')")
    resource_id: str = Field(..., min_length=1, description="What was acted upon")
    details: str = Field(default="{}", description="Canonical JSON string of the action payload")
    severity: Severity = Field(default=Severity.LOW)
    category: Category = Field(default=Category.DATA_MODIFICATION)
    outcome: Outcome = Field(default=Outcome.SUCCESS)
    ip_address: Optional[str] = Field(default=None, description="Request origin of the actor")
    user_agent: Optional[str] = Field(default=None)
    session_id: Optional[str] = Field(default=None, index=True)


class AuditEvent(AuditEventBase, table=True):
    """Audit event database table.

    Batch linkage columns stay null until the batch processor reconciles the
    event with the batch it was anchored in.
    """
    __tablename__ = "audit_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    batch_id: Optional[int] = Field(default=None, foreign_key="audit_batches.id", index=True)
    merkle_root: Optional[str] = Field(default=None, index=True)
    anchor_reference: Optional[str] = Field(default=None)
    batch_index: Optional[int] = Field(default=None, description="Leaf position inside the batch")
    created_at: datetime = Field(default_factory=utc_now, index=True)

    @property
    def is_linked(self) -> bool:
        return (
            self.batch_id is not None
            and self.merkle_root is not None
            and self.anchor_reference is not None
        )


class AuditEventCreate(SQLModel):
    """Schema for logging an audit event."""
    actor_id: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    resource_id: str = Field(..., min_length=1)
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = Field(default=None, description="Defaults to the time of logging")
    severity: Severity = Field(default=Severity.LOW)
    category: Category = Field(default=Category.DATA_MODIFICATION)
    outcome: Outcome = Field(default=Outcome.SUCCESS)
    ip_address: Optional[str] = Field(default=None)
    user_agent: Optional[str] = Field(default=None)
    session_id: Optional[str] = Field(default=None)


class AuditEventRead(AuditEventBase):
    """Schema for reading an audit event."""
    id: int
    batch_id: Optional[int] = None
    merkle_root: Optional[str] = None
    anchor_reference: Optional[str] = None
    batch_index: Optional[int] = None
    created_at: datetime


class AuditEventFilter(SQLModel):
    """Filter for listing audit events."""
    actor_id: Optional[str] = None
    action: Optional[str] = None
    resource_id: Optional[str] = None
    severity: Optional[Severity] = None
    category: Optional[Category] = None
    batch_id: Optional[int] = None
    unlinked: Optional[bool] = None
    start: Optional[str] = Field(default=None, description="Inclusive lower bound on timestamp")
    end: Optional[str] = Field(default=None, description="Inclusive upper bound on timestamp")
    created_before: Optional[datetime] = None
    limit: int = Field(default=50, ge=1)
    offset: int = Field(default=0, ge=0)


class AuditBatchBase(SQLModel):
    """Base audit batch schema."""
    timestamp: datetime = Field(..., description="Batch creation time")
    merkle_root: str = Field(..., description="Merkle root over member event digests (lowercase hex)")
    anchor_reference: str = Field(..., description="Ledger reference or placeholder")
    status: BatchStatus = Field(default=BatchStatus.PENDING)
    member_count: int = Field(..., ge=0)


class AuditBatch(AuditBatchBase, table=True):
    """Audit batch database table - written once per batch run."""
    __tablename__ = "audit_batches"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)


class AuditBatchRead(AuditBatchBase):
    """Schema for reading an audit batch."""
    id: int
    created_at: datetime
