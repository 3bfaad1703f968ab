"""
Main Orchestrator for Ledgerbook

This module ties together all the components and defines the
end-to-end flows for:
1. Transactions (validate → commit ledger batch → reconcile budgets)
2. Accounts, categories and budgets (including the delete cascades)
3. Budget repair (recompute spent from the transaction log)
4. Dashboard analytics (read-only)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every mutation gets a correlation id shared by all of its audit events
- Rejected mutations are audited before the error reaches the caller
- Storage failures surface as InternalLedgerError, never as raw client errors

Callers talk to LedgerService only; the engine, the reconciler and the
stores are wired here.
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Optional, Type, TypeVar, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError
from tenacity.wait import wait_base

from ledgerbook.audit import AuditLogger, create_correlation_id
from ledgerbook.config import LedgerSettings, get_settings
from ledgerbook.errors import (
    InternalLedgerError,
    LedgerError,
    validation_error_from_pydantic,
)
from ledgerbook.ledger import BudgetReconciler, LedgerEngine
from ledgerbook.ledger.engine import BALANCE_FIELDS
from ledgerbook.models import (
    Account,
    AccountInput,
    AccountType,
    Budget,
    BudgetFilters,
    BudgetInput,
    BudgetPerformance,
    BudgetPeriod,
    Category,
    CategoryInput,
    CategorySpending,
    CategoryType,
    DateRange,
    LedgerResult,
    MonthlySpending,
    ReconciliationReport,
    Transaction,
    TransactionFilters,
    TransactionInput,
    TransactionUpdate,
    User,
    UserInput,
    UserSummary,
    UserUpdate,
)
from ledgerbook.queries import AnalyticsQueries
from ledgerbook.services.storage import (
    DocumentAuditStorage,
    DocumentStore,
    InMemoryDocumentStore,
    StorageError,
)
from ledgerbook.stores import (
    AccountStore,
    BudgetStore,
    CategoryStore,
    TransactionStore,
    UserStore,
)
from ledgerbook.validation import TransactionValidator


logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _parse(model: Type[M], data: Union[M, dict[str, Any]], message: str) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise validation_error_from_pydantic(e, message)


class LedgerService:
    """
    Entry point for every ledger operation.

    Usage:
        service = LedgerService(store, audit_logger)
        result = await service.create_transaction(user_id, {...})
        if not result.is_consistent:
            await service.reconcile_budgets_for_category(user_id, category_id)
    """

    def __init__(
        self,
        store: DocumentStore,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        retry_wait: Optional[wait_base] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger or AuditLogger()

        self.users = UserStore(store)
        self.accounts = AccountStore(store)
        self.categories = CategoryStore(store)
        self.budgets = BudgetStore(store)
        self.transactions = TransactionStore(store)

        self.reconciler = BudgetReconciler(
            store,
            self.budgets,
            self.transactions,
            audit_logger=self._audit_logger,
            settings=self._settings,
            retry_wait=retry_wait,
        )
        self.engine = LedgerEngine(
            store,
            self.accounts,
            self.categories,
            self.transactions,
            self.reconciler,
            validator=TransactionValidator(self._settings),
            settings=self._settings,
        )
        self.analytics = AnalyticsQueries(
            self.accounts,
            self.categories,
            self.budgets,
            self.transactions,
            settings=self._settings,
        )

    @asynccontextmanager
    async def _guard(
        self,
        user_id: str,
        correlation_id: UUID,
        operation: str,
        transaction_id: Optional[str] = None,
        audit_rejections: bool = False,
    ):
        """
        Translate and audit failures of one mutation.

        LedgerErrors pass through unchanged (audited as rejections for
        transaction mutations); storage failures become InternalLedgerError.
        """
        try:
            yield
        except LedgerError as e:
            logger.info(
                "mutation_rejected",
                operation=operation,
                user_id=user_id,
                kind=e.kind.value,
                message=e.message,
            )
            if audit_rejections:
                await self._audit_logger.log_transaction_rejected(
                    user_id=user_id,
                    error_kind=e.kind.value,
                    message=e.message,
                    correlation_id=correlation_id,
                    transaction_id=transaction_id,
                )
            raise
        except StorageError as e:
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                user_id=user_id,
                details={"operation": operation},
                correlation_id=correlation_id,
            )
            raise InternalLedgerError(f"{operation} failed: {e}") from e

    # =========================================================================
    # USERS
    # =========================================================================

    async def create_user(
        self,
        user_id: str,
        data: Union[UserInput, dict[str, Any]],
    ) -> tuple[User, list[Category]]:
        """Create a user together with the default categories."""
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "create_user"):
            user_input = _parse(UserInput, data, "Invalid user")
            user, categories = await self.users.create_user(user_id, user_input)

        await self._audit_logger.log_user_created(
            user_id=user_id,
            email=user.email,
            category_count=len(categories),
        )
        return user, categories

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.users.get(user_id)

    async def update_user(
        self,
        user_id: str,
        data: Union[UserUpdate, dict[str, Any]],
    ) -> User:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "update_user"):
            update = _parse(UserUpdate, data, "Invalid user update")
            user = await self.users.update(user_id, update)

        changed_fields = sorted(update.changed_fields())
        if changed_fields:
            await self._audit_logger.log_user_updated(
                user_id=user_id,
                changed_fields=changed_fields,
            )
        return user

    async def delete_user(self, user_id: str) -> dict[str, int]:
        """
        Remove the user with all accounts, transactions, budgets and
        categories. The audit log stays.

        Returns:
            Number of deleted documents per collection
        """
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "delete_user"):
            deleted = await self.users.delete_user(user_id)

        await self._audit_logger.log_user_deleted(user_id=user_id, deleted=deleted)
        return deleted

    async def get_user_stats(
        self,
        user_id: str,
        today: Optional[date] = None,
    ) -> UserSummary:
        """Dashboard summary; today defaults to the current date."""
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "get_user_stats"):
            await self.users.require(user_id)
            return await self.analytics.user_summary(user_id, today)

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(
        self,
        user_id: str,
        data: Union[AccountInput, dict[str, Any]],
    ) -> Account:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "create_account"):
            account_input = _parse(AccountInput, data, "Invalid account")
            account = await self.accounts.create(user_id, account_input)

        await self._audit_logger.log_account_created(
            user_id=user_id,
            account_id=account.id,
            account_type=account.account_type.value,
            balance=str(account.balance),
        )
        return account

    async def update_account(
        self,
        user_id: str,
        account_id: str,
        changes: dict[str, Any],
    ) -> Account:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "update_account"):
            return await self.accounts.update(user_id, account_id, changes)

    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        return await self.accounts.list_accounts(user_id, account_type)

    async def delete_account(
        self,
        user_id: str,
        account_id: str,
    ) -> LedgerResult[Account]:
        """
        Deactivate an account and soft-delete its transactions.

        Budgets of every category the account touched are recomputed.
        """
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "delete_account"):
            result = await self.engine.delete_account(user_id, account_id, correlation_id)

        # The cascade leaves the account's own counters as they were
        await self._audit_logger.log_account_deleted(
            user_id=user_id,
            account_id=account_id,
            cascaded_transactions=result.value.stats.pending_transactions,
            correlation_id=correlation_id,
        )
        return result

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def create_category(
        self,
        user_id: str,
        data: Union[CategoryInput, dict[str, Any]],
    ) -> Category:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "create_category"):
            category_input = _parse(CategoryInput, data, "Invalid category")
            # Only the starter set is flagged as default
            category_input = category_input.model_copy(update={"is_default": False})
            return await self.categories.create(user_id, category_input)

    async def update_category(
        self,
        user_id: str,
        category_id: str,
        changes: dict[str, Any],
    ) -> Category:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "update_category"):
            return await self.categories.update(user_id, category_id, changes)

    async def list_categories(
        self,
        user_id: str,
        category_type: Optional[CategoryType] = None,
    ) -> list[Category]:
        return await self.categories.list_categories(user_id, category_type)

    async def delete_category(
        self,
        user_id: str,
        category_id: str,
    ) -> LedgerResult[Category]:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "delete_category"):
            return await self.engine.delete_category(user_id, category_id, correlation_id)

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def create_budget(
        self,
        user_id: str,
        data: Union[BudgetInput, dict[str, Any]],
    ) -> Budget:
        """
        Create a budget. Allocations start with nothing spent; run
        reconcile_budgets_for_category to pick up existing transactions.
        """
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "create_budget"):
            budget_input = _parse(BudgetInput, data, "Invalid budget")
            for allocation in budget_input.categories.values():
                await self.categories.require(user_id, allocation.category_id)
            budget = await self.budgets.create(user_id, budget_input)

        await self._audit_logger.log_budget_created(
            user_id=user_id,
            budget_id=budget.id,
            name=budget.name,
            allocation_count=len(budget.categories),
        )
        return budget

    async def update_budget(
        self,
        user_id: str,
        budget_id: str,
        changes: dict[str, Any],
    ) -> Budget:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "update_budget"):
            return await self.budgets.update(user_id, budget_id, changes)

    async def delete_budget(self, user_id: str, budget_id: str) -> None:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "delete_budget"):
            await self.budgets.deactivate(user_id, budget_id)

    async def list_budgets(
        self,
        user_id: str,
        filters: Optional[BudgetFilters] = None,
    ) -> list[Budget]:
        return await self.budgets.list_budgets(user_id, filters or BudgetFilters())

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(
        self,
        user_id: str,
        data: Union[TransactionInput, dict[str, Any]],
    ) -> LedgerResult[Transaction]:
        """
        Validate and record a transaction, then reconcile its budgets.

        Raises:
            LedgerValidationError, ResourceNotFoundError,
            InsufficientFundsError: nothing was written
            InternalLedgerError: the ledger batch failed
        """
        correlation_id = create_correlation_id()
        async with self._guard(
            user_id, correlation_id, "create_transaction", audit_rejections=True
        ):
            result = await self.engine.create_transaction(user_id, data, correlation_id)

        transaction = result.value
        await self._audit_logger.log_transaction_created(
            user_id=user_id,
            transaction_id=transaction.id,
            account_id=transaction.account_id,
            category_id=transaction.category_id,
            transaction_type=transaction.type.value,
            amount=str(transaction.amount),
            correlation_id=correlation_id,
        )
        return result

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        updates: Union[TransactionUpdate, dict[str, Any]],
        account_id: Optional[str] = None,
    ) -> LedgerResult[Transaction]:
        correlation_id = create_correlation_id()
        async with self._guard(
            user_id,
            correlation_id,
            "update_transaction",
            transaction_id=transaction_id,
            audit_rejections=True,
        ):
            update = self.engine.parse_update(updates)
            result = await self.engine.update_transaction(
                user_id,
                transaction_id,
                update,
                account_id=account_id,
                correlation_id=correlation_id,
            )

        changed_fields = sorted(update.changed_fields())
        if changed_fields:
            await self._audit_logger.log_transaction_updated(
                user_id=user_id,
                transaction_id=transaction_id,
                changed_fields=changed_fields,
                balance_moved=bool(BALANCE_FIELDS & set(changed_fields)),
                correlation_id=correlation_id,
            )
        return result

    async def delete_transaction(
        self,
        user_id: str,
        account_id: str,
        transaction_id: str,
    ) -> LedgerResult[Transaction]:
        correlation_id = create_correlation_id()
        async with self._guard(
            user_id,
            correlation_id,
            "delete_transaction",
            transaction_id=transaction_id,
            audit_rejections=True,
        ):
            result = await self.engine.delete_transaction(
                user_id, account_id, transaction_id, correlation_id
            )

        await self._audit_logger.log_transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            account_id=account_id,
            amount=str(result.value.amount),
            correlation_id=correlation_id,
        )
        return result

    async def get_transaction(
        self,
        user_id: str,
        transaction_id: str,
        account_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        return await self.transactions.find(user_id, transaction_id, account_id)

    async def list_transactions(
        self,
        user_id: str,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        return await self.transactions.list_transactions(
            user_id, filters or TransactionFilters()
        )

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    async def reconcile_budgets_for_category(
        self,
        user_id: str,
        category_id: str,
    ) -> ReconciliationReport:
        """Recompute every active allocation of one category."""
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "reconcile_budgets_for_category"):
            return await self.reconciler.reconcile_budgets_for_category(
                user_id, category_id, correlation_id
            )

    async def reconcile_all_budgets(self, user_id: str) -> ReconciliationReport:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "reconcile_all_budgets"):
            return await self.reconciler.reconcile_all_budgets(user_id, correlation_id)

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    async def spending_by_category(
        self,
        user_id: str,
        date_range: Union[DateRange, dict[str, Any]],
    ) -> list[CategorySpending]:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "spending_by_category"):
            date_range = _parse(DateRange, date_range, "Invalid date range")
            return await self.analytics.spending_by_category(user_id, date_range)

    async def monthly_spending(self, user_id: str, year: int) -> list[MonthlySpending]:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "monthly_spending"):
            return await self.analytics.monthly_spending(user_id, year)

    async def budget_performance(
        self,
        user_id: str,
        period: Optional[BudgetPeriod] = None,
        date_range: Optional[DateRange] = None,
    ) -> list[BudgetPerformance]:
        correlation_id = create_correlation_id()
        async with self._guard(user_id, correlation_id, "budget_performance"):
            return await self.analytics.budget_performance(user_id, period, date_range)


def create_app_components(
    store: Optional[DocumentStore] = None,
) -> tuple[LedgerService, DocumentStore]:
    """
    Factory function to create all application components.

    Args:
        store: Document store to use. When omitted, the backend named by
              STORAGE_BACKEND is created ("memory" or "firestore").

    Returns:
        (ledger_service, store)
    """
    if store is None:
        backend = get_settings().app.storage_backend
        if backend == "firestore":
            # Imported here so the memory backend needs no cloud client
            from ledgerbook.services.storage.firestore import (
                FirestoreClient,
                FirestoreDocumentStore,
            )
            store = FirestoreDocumentStore(FirestoreClient())
        else:
            store = InMemoryDocumentStore()
        logger.info("storage_backend_selected", backend=backend)

    audit_logger = AuditLogger(DocumentAuditStorage(store))
    service = LedgerService(store, audit_logger=audit_logger)
    return service, store
