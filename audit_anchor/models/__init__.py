# SQLModel database models

from audit_anchor.models.audit import AuditEvent, AuditBatch

__all__ = [
    "AuditEvent",
    "AuditBatch",
]
