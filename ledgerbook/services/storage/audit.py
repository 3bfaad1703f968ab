"""
Audit log storage on top of the document store.

Events live in users/{uid}/auditLog/{eventId}. Events without an owner
are only logged locally by the AuditLogger.
"""

from typing import Optional
from uuid import UUID

import structlog

from ledgerbook.models.audit import AuditEvent
from ledgerbook.services.storage.interface import (
    AuditStorageInterface,
    DocumentStore,
    Predicate,
    StorageError,
)
from ledgerbook.services.storage.paths import CollectionPaths


logger = structlog.get_logger(__name__)


class DocumentAuditStorage(AuditStorageInterface):
    """
    Document store implementation of audit log storage.

    Audit events are append-only: one single-write batch per event.
    """

    def __init__(self, store: DocumentStore):
        self._store = store

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        if not event.user_id:
            return False

        path = f"{CollectionPaths.audit_log(event.user_id)}/{event.event_id}"
        batch = self._store.batch().set(path, event.to_document())
        try:
            await self._store.commit(batch)
            return True
        except StorageError as e:
            # Audit logging must not break the main flow
            logger.warning(
                "audit_event_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def _query(
        self,
        user_id: str,
        predicates: list[Predicate],
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[AuditEvent]:
        documents = await self._store.query(
            CollectionPaths.audit_log(user_id),
            predicates,
            order_by="timestamp",
            descending=descending,
            limit=limit,
        )
        return [AuditEvent.from_document(document) for document in documents]

    async def get_events_by_correlation_id(
        self,
        user_id: str,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._query(
            user_id,
            [Predicate("correlationId", "==", str(correlation_id))],
        )

    async def get_events_by_entity(
        self,
        user_id: str,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return await self._query(
            user_id,
            [
                Predicate("entityType", "==", entity_type),
                Predicate("entityId", "==", entity_id),
            ],
        )

    async def get_recent_events(
        self,
        user_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._query(user_id, [], descending=True, limit=limit)
