"""
Audit Models for Ledgerbook

Every ledger mutation and every reconciliation outcome is logged for
audit purposes. This provides:
1. Complete traceability of money movements
2. Debugging information when budgets drift
3. A record of consistency failures awaiting repair

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledgerbook.models.ledger import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Users and reference data
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DELETED = "account_deleted"
    BUDGET_CREATED = "budget_created"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_REJECTED = "transaction_rejected"

    # Budget reconciliation
    BUDGETS_RECONCILED = "budgets_reconciled"
    RECONCILIATION_FAILED = "reconciliation_failed"
    DRIFT_REPAIRED = "drift_repaired"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - whose data and which entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected documents"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'budget', 'account')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Document ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one ledger mutation)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_document(self) -> dict:
        """
        Convert to a document for the auditLog collection.

        Keys are camelCase to match the other collections.
        """
        return {
            "eventId": str(self.event_id),
            "timestamp": self.timestamp,
            "eventType": self.event_type.value,
            "severity": self.severity.value,
            "userId": self.user_id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "correlationId": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "isUserAction": self.is_user_action,
        }

    @classmethod
    def from_document(cls, document: dict) -> 'AuditEvent':
        return cls(
            event_id=UUID(document["eventId"]),
            timestamp=document["timestamp"],
            event_type=AuditEventType(document["eventType"]),
            severity=AuditSeverity(document["severity"]),
            user_id=document.get("userId"),
            entity_type=document.get("entityType"),
            entity_id=document.get("entityId"),
            correlation_id=(
                UUID(document["correlationId"]) if document.get("correlationId") else None
            ),
            description=document["description"],
            details=document.get("details") or {},
            error_code=document.get("errorCode"),
            error_message=document.get("errorMessage"),
            is_user_action=document.get("isUserAction", False),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(user_id, txn, correlation_id)
        event = AuditEventBuilder.reconciliation_failed(user_id, ...)
    """

    @staticmethod
    def user_created(user_id: str, email: str, category_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_CREATED,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description=f"User created with {category_count} default categories",
            details={"email": email, "category_count": category_count},
            is_user_action=True,
        )

    @staticmethod
    def user_updated(user_id: str, changed_fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_UPDATED,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description=f"User updated: {', '.join(changed_fields)}",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def user_deleted(user_id: str, deleted: dict[str, int]) -> AuditEvent:
        """`deleted` counts the removed documents per collection."""
        return AuditEvent(
            event_type=AuditEventType.USER_DELETED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description=f"User and {sum(deleted.values())} documents deleted",
            details={"deleted": deleted},
            is_user_action=True,
        )

    @staticmethod
    def account_created(
        user_id: str,
        account_id: str,
        account_type: str,
        balance: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"{account_type} account created with balance {balance}",
            details={"account_type": account_type, "initial_balance": balance},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(
        user_id: str,
        account_id: str,
        cascaded_transactions: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=(
                f"Account deactivated, {cascaded_transactions} transactions soft-deleted"
            ),
            details={"cascaded_transactions": cascaded_transactions},
            is_user_action=True,
        )

    @staticmethod
    def budget_created(
        user_id: str,
        budget_id: str,
        name: str,
        allocation_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CREATED,
            user_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget created: {name}",
            details={"allocation_count": allocation_count},
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        user_id: str,
        transaction_id: str,
        account_id: str,
        category_id: str,
        transaction_type: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{transaction_type} of {amount} recorded",
            details={
                "account_id": account_id,
                "category_id": category_id,
                "type": transaction_type,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        transaction_id: str,
        changed_fields: list[str],
        balance_moved: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated: {', '.join(changed_fields) or 'no changes'}",
            details={
                "changed_fields": changed_fields,
                "balance_moved": balance_moved,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        transaction_id: str,
        account_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction soft-deleted, {amount} reversed",
            details={"account_id": account_id, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def transaction_rejected(
        user_id: str,
        error_kind: str,
        message: str,
        correlation_id: UUID,
        transaction_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction rejected: {error_kind}",
            error_code=error_kind,
            error_message=message,
            is_user_action=True,
        )

    @staticmethod
    def budgets_reconciled(
        user_id: str,
        category_id: str,
        budget_ids: list[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGETS_RECONCILED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"{len(budget_ids)} budget(s) reconciled",
            details={"budget_ids": budget_ids},
        )

    @staticmethod
    def reconciliation_failed(
        user_id: str,
        category_id: str,
        budget_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Budget reconciliation failed after ledger commit",
            details={"category_id": category_id},
            error_code="CONSISTENCY_FAILURE",
            error_message=error_message,
        )

    @staticmethod
    def drift_repaired(
        user_id: str,
        category_id: str,
        budget_ids: list[str],
        changes: dict[str, dict[str, str]],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """`changes` maps "budget_id/allocation_key" to its old and new spent."""
        return AuditEvent(
            event_type=AuditEventType.DRIFT_REPAIRED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"{len(changes)} allocation(s) recomputed from transactions",
            details={"budget_ids": budget_ids, "changes": changes},
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
