"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every reconciliation outcome
is logged. This provides:
1. Complete traceability of money movements
2. A record of stale budgets waiting for a repair run
3. Per-user history of their interactions

The audit logger:
- Never fails a ledger operation because an audit write failed
- Ties a transaction commit and its budget writes together by correlation ID
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledgerbook.config import get_settings
from ledgerbook.models.audit import AuditEvent, AuditEventBuilder
from ledgerbook.services.storage import AuditStorageInterface


logging.basicConfig(
    format="%(message)s",
    level=getattr(logging, get_settings().app.log_level.upper(), logging.INFO),
)

# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The user's auditLog collection (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_user_created(
        self,
        user_id: str,
        email: str,
        category_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.user_created(
            user_id=user_id,
            email=email,
            category_count=category_count,
        ))

    async def log_user_updated(self, user_id: str, changed_fields: list[str]) -> None:
        await self.log(AuditEventBuilder.user_updated(
            user_id=user_id,
            changed_fields=changed_fields,
        ))

    async def log_user_deleted(self, user_id: str, deleted: dict[str, int]) -> None:
        await self.log(AuditEventBuilder.user_deleted(
            user_id=user_id,
            deleted=deleted,
        ))

    async def log_account_created(
        self,
        user_id: str,
        account_id: str,
        account_type: str,
        balance: str,
    ) -> None:
        await self.log(AuditEventBuilder.account_created(
            user_id=user_id,
            account_id=account_id,
            account_type=account_type,
            balance=balance,
        ))

    async def log_account_deleted(
        self,
        user_id: str,
        account_id: str,
        cascaded_transactions: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.account_deleted(
            user_id=user_id,
            account_id=account_id,
            cascaded_transactions=cascaded_transactions,
            correlation_id=correlation_id,
        ))

    async def log_budget_created(
        self,
        user_id: str,
        budget_id: str,
        name: str,
        allocation_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.budget_created(
            user_id=user_id,
            budget_id=budget_id,
            name=name,
            allocation_count=allocation_count,
        ))

    async def log_transaction_created(
        self,
        user_id: str,
        transaction_id: str,
        account_id: str,
        category_id: str,
        transaction_type: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        """Log a committed transaction create."""
        await self.log(AuditEventBuilder.transaction_created(
            user_id=user_id,
            transaction_id=transaction_id,
            account_id=account_id,
            category_id=category_id,
            transaction_type=transaction_type,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_updated(
        self,
        user_id: str,
        transaction_id: str,
        changed_fields: list[str],
        balance_moved: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(
            user_id=user_id,
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            balance_moved=balance_moved,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        user_id: str,
        transaction_id: str,
        account_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            account_id=account_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_rejected(
        self,
        user_id: str,
        error_kind: str,
        message: str,
        correlation_id: UUID,
        transaction_id: Optional[str] = None,
    ) -> None:
        """Log a mutation refused before any write."""
        await self.log(AuditEventBuilder.transaction_rejected(
            user_id=user_id,
            error_kind=error_kind,
            message=message,
            correlation_id=correlation_id,
            transaction_id=transaction_id,
        ))

    async def log_budgets_reconciled(
        self,
        user_id: str,
        category_id: str,
        budget_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budgets_reconciled(
            user_id=user_id,
            category_id=category_id,
            budget_ids=budget_ids,
            correlation_id=correlation_id,
        ))

    async def log_reconciliation_failed(
        self,
        user_id: str,
        category_id: str,
        budget_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a budget left stale after a committed ledger write."""
        await self.log(AuditEventBuilder.reconciliation_failed(
            user_id=user_id,
            category_id=category_id,
            budget_id=budget_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_drift_repaired(
        self,
        user_id: str,
        category_id: str,
        budget_ids: list[str],
        changes: dict[str, dict[str, str]],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.drift_repaired(
            user_id=user_id,
            category_id=category_id,
            budget_ids=budget_ids,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            user_id=user_id,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a ledger mutation and pass it through
    the engine and the reconciler.
    """
    return uuid4()
