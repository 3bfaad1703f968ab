"""
Budget Reconciler

Keeps allocation spent/remaining/status in line with the ledger after a
transaction batch has committed.

DESIGN DECISION: Reconciliation is a separate write per budget, issued
after the ledger commit. Budgets are eventually consistent; accounts and
transactions are the source of truth. A failed budget write is reported
as a ConsistencyFailure and never rolls the ledger back.

Two ways to derive spent:
- delta: spent += signed change, read-modify-write per budget. Two
  concurrent reconciliations of one allocation can lose an update.
- recompute: spent = sum of the category's active transactions. Costs
  one extra query, is idempotent and is therefore retried.

Spent is type-agnostic: income filed under a category counts towards
its allocations exactly like expenses do. Budgets have no date window;
every active transaction of the category counts.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from ledgerbook.audit import AuditLogger
from ledgerbook.config import LedgerSettings, get_settings
from ledgerbook.models import (
    Budget,
    BudgetCategoryAllocation,
    BudgetStats,
    ConsistencyFailure,
    ReconciliationReport,
    TransactionFilters,
)
from ledgerbook.services.storage import (
    SERVER_TIMESTAMP,
    CollectionPaths,
    DocumentStore,
    StorageError,
)
from ledgerbook.stores import BudgetStore, TransactionStore


logger = structlog.get_logger(__name__)


class ReconciliationIncomplete(Exception):
    """Some budgets could not be written; carries the partial report."""

    def __init__(self, report: ReconciliationReport):
        super().__init__(f"{len(report.failures)} budget(s) failed to reconcile")
        self.report = report


class BudgetReconciler:
    """
    Applies ledger changes to every active budget allocating a category.

    Discovery is a full scan of the user's active budgets: allocations
    are a map inside the budget document and cannot be queried directly.
    """

    def __init__(
        self,
        store: DocumentStore,
        budgets: BudgetStore,
        transactions: TransactionStore,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        retry_wait: Optional[wait_base] = None,
    ):
        self._store = store
        self._budgets = budgets
        self._transactions = transactions
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=8)

    @property
    def strategy(self) -> str:
        return self._settings.reconciliation_strategy

    # =========================================================================
    # Writes
    # =========================================================================

    async def _write_allocations(
        self,
        budget: Budget,
        changed: dict[str, BudgetCategoryAllocation],
    ) -> None:
        """
        One batch per budget: the changed allocations plus re-derived stats.

        Allocation keys are addressed as tuple field paths so a key
        containing a dot cannot split into nested maps.
        """
        allocations = {**budget.categories, **changed}
        stats = BudgetStats.from_allocations(list(allocations.values()))

        update = {}
        for key, allocation in changed.items():
            update[("categories", key, "spent")] = allocation.spent
            update[("categories", key, "remaining")] = allocation.remaining
            update[("categories", key, "status")] = allocation.status.value
        update["stats"] = stats.to_document()
        update["updatedAt"] = SERVER_TIMESTAMP

        batch = self._store.batch().update(
            CollectionPaths.budget(budget.user_id, budget.id),
            update,
        )
        await self._store.commit(batch)

    def _failure(
        self,
        category_id: str,
        budget_id: Optional[str],
        error: Exception,
    ) -> ConsistencyFailure:
        logger.error(
            "budget_reconciliation_failed",
            category_id=category_id,
            budget_id=budget_id,
            error=str(error),
        )
        return ConsistencyFailure(
            category_id=category_id,
            budget_id=budget_id,
            message=str(error),
        )

    # =========================================================================
    # Delta strategy
    # =========================================================================

    async def apply_delta(
        self,
        user_id: str,
        category_id: str,
        delta: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """
        Add `delta` to the spent of every active allocation of the category.

        Each budget is committed on its own; a failing budget does not
        stop the others.
        """
        report = ReconciliationReport(
            user_id=user_id,
            category_id=category_id,
            strategy="delta",
        )
        if delta == 0:
            return report

        try:
            budgets = await self._budgets.list_active(user_id)
        except StorageError as e:
            report.failures.append(self._failure(category_id, None, e))
            await self._audit_report(report, correlation_id)
            return report

        threshold = self._settings.warning_threshold
        for budget in budgets:
            found = budget.find_allocation(category_id)
            if found is None:
                continue
            key, allocation = found
            updated = allocation.with_spent(allocation.spent + delta, threshold)

            try:
                await self._write_allocations(budget, {key: updated})
            except StorageError as e:
                report.failures.append(self._failure(category_id, budget.id, e))
                continue

            report.updated_budget_ids.append(budget.id)
            logger.info(
                "allocation_updated",
                user_id=user_id,
                budget_id=budget.id,
                category_id=category_id,
                spent=str(updated.spent),
                status=updated.status.value,
            )

        await self._audit_report(report, correlation_id)
        return report

    # =========================================================================
    # Recompute strategy
    # =========================================================================

    async def _recompute(
        self,
        user_id: str,
        category_id: Optional[str],
    ) -> tuple[ReconciliationReport, dict[str, tuple[Decimal, Decimal]]]:
        """
        Re-derive spent from the transaction log for one category
        (or all of them when category_id is None).

        Returns the report and the (old, new) spent of every changed
        allocation, keyed by "budget_id/allocation_key".
        """
        if category_id is not None:
            transactions = await self._transactions.list_for_category(user_id, category_id)
        else:
            transactions = await self._transactions.list_transactions(
                user_id, TransactionFilters()
            )

        spent_by_category: dict[str, Decimal] = defaultdict(Decimal)
        for transaction in transactions:
            spent_by_category[transaction.category_id] += transaction.amount

        report = ReconciliationReport(
            user_id=user_id,
            category_id=category_id,
            strategy="recompute",
        )
        drift: dict[str, tuple[Decimal, Decimal]] = {}
        threshold = self._settings.warning_threshold

        for budget in await self._budgets.list_active(user_id):
            changed = {}
            for key, allocation in budget.categories.items():
                if category_id is not None and allocation.category_id != category_id:
                    continue
                updated = allocation.with_spent(
                    spent_by_category.get(allocation.category_id, Decimal("0")),
                    threshold,
                )
                if updated != allocation:
                    changed[key] = updated
                    drift[f"{budget.id}/{key}"] = (allocation.spent, updated.spent)

            if not changed:
                continue
            try:
                await self._write_allocations(budget, changed)
            except StorageError as e:
                report.failures.append(
                    self._failure(category_id or "*", budget.id, e)
                )
                continue
            report.updated_budget_ids.append(budget.id)

        return report, drift

    async def _recompute_with_retry(
        self,
        user_id: str,
        category_id: Optional[str],
    ) -> tuple[ReconciliationReport, dict[str, tuple[Decimal, Decimal]]]:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((StorageError, ReconciliationIncomplete)),
            stop=stop_after_attempt(self._settings.reconcile_retry_attempts),
            wait=self._retry_wait,
            reraise=True,
        )
        # Budgets written by an earlier attempt are unchanged on the next one
        written: list[str] = []
        drift: dict[str, tuple[Decimal, Decimal]] = {}
        try:
            async for attempt in retrying:
                with attempt:
                    report, attempt_drift = await self._recompute(user_id, category_id)
                    written.extend(
                        budget_id for budget_id in report.updated_budget_ids
                        if budget_id not in written
                    )
                    drift.update({
                        key: change for key, change in attempt_drift.items()
                        if key.split("/", 1)[0] in report.updated_budget_ids
                    })
                    if report.failures:
                        raise ReconciliationIncomplete(report)
        except ReconciliationIncomplete as e:
            report = e.report
        except StorageError as e:
            report = ReconciliationReport(
                user_id=user_id,
                category_id=category_id,
                strategy="recompute",
                failures=[self._failure(category_id or "*", None, e)],
            )
        return report.model_copy(update={"updated_budget_ids": written}), drift

    async def reconcile_budgets_for_category(
        self,
        user_id: str,
        category_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """
        Recompute spent for every active allocation of the category.

        Idempotent: a second run with no ledger change writes nothing.
        This is the repair path for ConsistencyFailures.
        """
        report, drift = await self._recompute_with_retry(user_id, category_id)
        await self._audit_report(report, correlation_id)
        if drift:
            await self._audit.log_drift_repaired(
                user_id=user_id,
                category_id=category_id,
                budget_ids=report.updated_budget_ids,
                changes={
                    key: {"from": str(old), "to": str(new)}
                    for key, (old, new) in drift.items()
                },
                correlation_id=correlation_id,
            )
        return report

    async def reconcile_all_budgets(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """Recompute every allocation of every active budget of the user."""
        report, _ = await self._recompute_with_retry(user_id, None)
        logger.info(
            "all_budgets_reconciled",
            user_id=user_id,
            updated=len(report.updated_budget_ids),
            failures=len(report.failures),
        )
        for failure in report.failures:
            await self._audit.log_reconciliation_failed(
                user_id=user_id,
                category_id=failure.category_id,
                budget_id=failure.budget_id,
                error_message=failure.message,
                correlation_id=correlation_id,
            )
        return report

    # =========================================================================
    # After a ledger commit
    # =========================================================================

    async def reconcile_changes(
        self,
        user_id: str,
        deltas: dict[str, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """
        Bring budgets in line with a committed ledger batch.

        `deltas` maps category id to the net change of its spent.
        Categories with a zero net change are skipped.
        """
        report = ReconciliationReport(user_id=user_id, strategy=self.strategy)
        for category_id, delta in deltas.items():
            if delta == 0:
                continue
            if self.strategy == "recompute":
                partial, _ = await self._recompute_with_retry(user_id, category_id)
                await self._audit_report(partial, correlation_id)
            else:
                partial = await self.apply_delta(user_id, category_id, delta, correlation_id)
            report = report.merge(partial)
        return report

    async def _audit_report(
        self,
        report: ReconciliationReport,
        correlation_id: Optional[UUID],
    ) -> None:
        category_id = report.category_id or "*"
        if report.updated_budget_ids:
            await self._audit.log_budgets_reconciled(
                user_id=report.user_id,
                category_id=category_id,
                budget_ids=report.updated_budget_ids,
                correlation_id=correlation_id,
            )
        for failure in report.failures:
            await self._audit.log_reconciliation_failed(
                user_id=report.user_id,
                category_id=failure.category_id,
                budget_id=failure.budget_id,
                error_message=failure.message,
                correlation_id=correlation_id,
            )
