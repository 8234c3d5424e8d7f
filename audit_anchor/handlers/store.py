"""
Event and batch store backed by SQLModel over an async engine.

Every database failure is surfaced as StoreUnavailable so callers never have
to reason about partial writes.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select

from audit_anchor.core.constants import MAX_LIST_LIMIT
from audit_anchor.core.exceptions import NotFound, StoreUnavailable
from audit_anchor.models.audit import AuditBatch, AuditEvent, AuditEventFilter, BatchStatus

logger = logging.getLogger(__name__)

LINKAGE_FIELDS = ("batch_id", "merkle_root", "anchor_reference", "batch_index")


class AuditStore:
    """Durable record of audit events and batches."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create_event(self, event: AuditEvent) -> AuditEvent:
        """Insert an event and return it with its assigned id."""
        try:
            async with self._session_factory() as session:
                session.add(event)
                await session.commit()
                await session.refresh(event)
                return event
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to store audit event: {e}") from e

    async def update_event(self, event_id: int, patch: Dict[str, Any]) -> AuditEvent:
        """Apply a partial update to the batch linkage of an event."""
        unknown = set(patch) - set(LINKAGE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update audit event fields: {sorted(unknown)}")

        try:
            async with self._session_factory() as session:
                event = await session.get(AuditEvent, event_id)
                if not event:
                    raise NotFound(f"Audit event {event_id} not found")

                for field, value in patch.items():
                    setattr(event, field, value)

                await session.commit()
                await session.refresh(event)
                return event
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to update audit event {event_id}: {e}") from e

    async def create_batch(self, batch: AuditBatch) -> AuditBatch:
        """Insert a batch and return it with its assigned id."""
        try:
            async with self._session_factory() as session:
                session.add(batch)
                await session.commit()
                await session.refresh(batch)
                return batch
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to store audit batch: {e}") from e

    async def get_event(self, event_id: int) -> Optional[AuditEvent]:
        try:
            async with self._session_factory() as session:
                return await session.get(AuditEvent, event_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to load audit event {event_id}: {e}") from e

    async def get_batch(self, batch_id: int) -> Optional[AuditBatch]:
        try:
            async with self._session_factory() as session:
                return await session.get(AuditBatch, batch_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to load audit batch {batch_id}: {e}") from e

    async def list_events(self, event_filter: Optional[AuditEventFilter] = None) -> List[AuditEvent]:
        """List events matching a filter, oldest first."""
        event_filter = event_filter or AuditEventFilter()
        statement = select(AuditEvent)

        if event_filter.actor_id:
            statement = statement.where(AuditEvent.actor_id == event_filter.actor_id)
        if event_filter.action:
            statement = statement.where(AuditEvent.action == event_filter.action)
        if event_filter.resource_id:
            statement = statement.where(AuditEvent.resource_id == event_filter.resource_id)
        if event_filter.severity:
            statement = statement.where(AuditEvent.severity == event_filter.severity)
        if event_filter.category:
            statement = statement.where(AuditEvent.category == event_filter.category)
        if event_filter.batch_id is not None:
            statement = statement.where(AuditEvent.batch_id == event_filter.batch_id)
        if event_filter.unlinked is True:
            statement = statement.where(AuditEvent.batch_id.is_(None))
        elif event_filter.unlinked is False:
            statement = statement.where(AuditEvent.batch_id.is_not(None))
        if event_filter.start:
            statement = statement.where(AuditEvent.timestamp >= event_filter.start)
        if event_filter.end:
            statement = statement.where(AuditEvent.timestamp <= event_filter.end)
        if event_filter.created_before:
            statement = statement.where(AuditEvent.created_at <= event_filter.created_before)

        statement = (
            statement.order_by(AuditEvent.id)
            .offset(event_filter.offset)
            .limit(min(event_filter.limit, MAX_LIST_LIMIT))
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to list audit events: {e}") from e

    async def list_batch_members(self, batch_id: int) -> List[AuditEvent]:
        """Linked members of a batch in leaf order."""
        statement = (
            select(AuditEvent)
            .where(AuditEvent.batch_id == batch_id)
            .order_by(AuditEvent.batch_index)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to list members of batch {batch_id}: {e}") from e

    async def list_batches(
        self,
        limit: int = 20,
        status: Optional[BatchStatus] = None
    ) -> List[AuditBatch]:
        """List batches, newest first."""
        statement = select(AuditBatch)

        if status:
            statement = statement.where(AuditBatch.status == status)

        statement = statement.order_by(AuditBatch.id.desc()).limit(min(limit, MAX_LIST_LIMIT))

        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to list audit batches: {e}") from e
