"""
Audit trail endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from typing import Any, Dict, List, Optional

from audit_anchor.core.exceptions import StoreUnavailable
from audit_anchor.handlers.service import AuditService
from audit_anchor.models.audit import (
    AuditBatchRead,
    AuditEventCreate,
    AuditEventFilter,
    AuditEventRead,
    BatchStatus,
    Category,
    Severity,
)

router = APIRouter(prefix="/audit", tags=["audit"])


def get_audit_service(request: Request) -> AuditService:
    """Dependency returning the process-wide audit service."""
    return request.app.state.audit_service


def _store_unavailable(e: StoreUnavailable) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(e)
    )


@router.post("/events", response_model=AuditEventRead, status_code=status.HTTP_201_CREATED)
async def log_event_endpoint(
    event: AuditEventCreate,
    service: AuditService = Depends(get_audit_service)
):
    """Record an audit event and queue it for the next batch."""
    try:
        return await service.log_event(
            actor_id=event.actor_id,
            action=event.action,
            resource_id=event.resource_id,
            details=event.details,
            timestamp=event.timestamp,
            severity=event.severity,
            category=event.category,
            outcome=event.outcome,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            session_id=event.session_id,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    except StoreUnavailable as e:
        raise _store_unavailable(e)


@router.get("/events", response_model=List[AuditEventRead])
async def list_events_endpoint(
    actor_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_id: Optional[str] = None,
    severity: Optional[Severity] = None,
    category: Optional[Category] = None,
    batch_id: Optional[int] = None,
    unlinked: Optional[bool] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: AuditService = Depends(get_audit_service)
):
    """List audit events, optionally filtered."""
    event_filter = AuditEventFilter(
        actor_id=actor_id,
        action=action,
        resource_id=resource_id,
        severity=severity,
        category=category,
        batch_id=batch_id,
        unlinked=unlinked,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    try:
        return await service.store.list_events(event_filter)
    except StoreUnavailable as e:
        raise _store_unavailable(e)


@router.get("/events/{event_id}", response_model=AuditEventRead)
async def get_event_endpoint(
    event_id: int,
    service: AuditService = Depends(get_audit_service)
):
    """Get an audit event by ID."""
    try:
        event = await service.store.get_event(event_id)
    except StoreUnavailable as e:
        raise _store_unavailable(e)
    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Audit event {event_id} not found"
        )
    return event


@router.get("/events/{event_id}/verify")
async def verify_event_endpoint(
    event_id: int,
    service: AuditService = Depends(get_audit_service)
) -> Dict[str, Any]:
    """Check that an event is part of a batch anchored on the ledger."""
    valid = await service.verify_integrity(event_id)
    return {"event_id": event_id, "valid": valid}


@router.get("/batches", response_model=List[AuditBatchRead])
async def list_batches_endpoint(
    limit: int = Query(default=20, ge=1, le=500),
    status: Optional[BatchStatus] = None,
    service: AuditService = Depends(get_audit_service)
):
    """List audit batches, newest first."""
    try:
        return await service.store.list_batches(limit=limit, status=status)
    except StoreUnavailable as e:
        raise _store_unavailable(e)


@router.post("/batches/flush")
async def flush_batch_endpoint(
    service: AuditService = Depends(get_audit_service)
) -> Dict[str, Any]:
    """Run a batch now instead of waiting for the scheduler."""
    try:
        outcome = await service.force_batch_now()
    except StoreUnavailable as e:
        raise _store_unavailable(e)

    if outcome is None:
        return {"batch": None, "pending": service.get_pending_count()}

    return {
        "batch": AuditBatchRead.model_validate(outcome.batch, from_attributes=True).model_dump(mode="json"),
        "linked": outcome.linked_ids,
        "failed": outcome.failed_ids,
        "pending": service.get_pending_count(),
    }


@router.get("/pending")
async def pending_endpoint(
    service: AuditService = Depends(get_audit_service)
) -> Dict[str, Any]:
    """Size of the batching buffer."""
    return {
        "pending": service.get_pending_count(),
        "processing": service.is_processing,
    }
