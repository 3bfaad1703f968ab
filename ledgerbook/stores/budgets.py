"""
Budget Store

Budget definitions and their category allocations. Callers set the
allocated amounts; spent, remaining, status and the budget stats are
derived and only ever written here at creation (spent starts at zero)
or by the budget reconciler.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from ledgerbook.config import get_settings
from ledgerbook.errors import (
    LedgerValidationError,
    ResourceNotFoundError,
    validation_error_from_pydantic,
)
from ledgerbook.models import (
    AllocationInput,
    Budget,
    BudgetCategoryAllocation,
    BudgetFilters,
    BudgetInput,
    BudgetStats,
    utcnow,
)
from ledgerbook.services.storage import (
    SERVER_TIMESTAMP,
    CollectionPaths,
    DocumentStore,
    Predicate,
    soft_delete_fields,
)
from ledgerbook.stores.users import stage_user_stats


logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = {"name", "amount", "period", "start_date", "end_date", "categories"}


def build_allocations(
    categories: dict[str, AllocationInput],
    existing: Optional[dict[str, BudgetCategoryAllocation]] = None,
    warning_threshold: Optional[float] = None,
) -> dict[str, BudgetCategoryAllocation]:
    """
    Derive allocations from user input.

    An allocation that keeps its category keeps its spent amount;
    everything else starts from zero.
    """
    if warning_threshold is None:
        warning_threshold = get_settings().ledger.warning_threshold

    spent_by_category = {
        allocation.category_id: allocation.spent
        for allocation in (existing or {}).values()
    }
    allocations = {}
    for key, allocation in categories.items():
        base = BudgetCategoryAllocation(
            category_id=allocation.category_id,
            amount=allocation.amount,
        )
        allocations[key] = base.with_spent(
            spent_by_category.get(allocation.category_id, Decimal("0")),
            warning_threshold,
        )
    return allocations


class BudgetStore:
    def __init__(self, store: DocumentStore):
        self._store = store

    async def get(
        self,
        user_id: str,
        budget_id: str,
        include_inactive: bool = False,
    ) -> Optional[Budget]:
        document = await self._store.get(CollectionPaths.budget(user_id, budget_id))
        if document is None:
            return None
        budget = Budget.from_document(document)
        if not budget.is_active and not include_inactive:
            return None
        return budget

    async def require(self, user_id: str, budget_id: str) -> Budget:
        budget = await self.get(user_id, budget_id)
        if budget is None:
            raise ResourceNotFoundError("Budget", budget_id)
        return budget

    async def list_active(self, user_id: str) -> list[Budget]:
        """Every active budget of the user. Used by the reconciler's full scan."""
        documents = await self._store.query(
            CollectionPaths.budgets(user_id),
            [Predicate("isActive", "==", True)],
        )
        return [Budget.from_document(document) for document in documents]

    async def list_budgets(
        self,
        user_id: str,
        filters: Optional[BudgetFilters] = None,
    ) -> list[Budget]:
        """
        List budgets matching the filters.

        start_date/end_date select budgets whose period overlaps the range.
        """
        filters = filters or BudgetFilters()
        predicates = []
        if filters.is_active is not None:
            predicates.append(Predicate("isActive", "==", filters.is_active))
        if filters.period is not None:
            predicates.append(Predicate("period", "==", filters.period.value))

        documents = await self._store.query(CollectionPaths.budgets(user_id), predicates)
        budgets = [Budget.from_document(document) for document in documents]

        if filters.start_date is not None:
            budgets = [b for b in budgets if b.end_date >= filters.start_date]
        if filters.end_date is not None:
            budgets = [b for b in budgets if b.start_date <= filters.end_date]

        budgets.sort(key=lambda budget: budget.start_date, reverse=True)
        return budgets

    async def create(self, user_id: str, data: BudgetInput) -> Budget:
        allocations = build_allocations(data.categories)
        budget = Budget(
            id=self._store.new_id(),
            user_id=user_id,
            name=data.name,
            amount=data.amount,
            period=data.period,
            start_date=data.start_date,
            end_date=data.end_date,
            categories=allocations,
            stats=BudgetStats.from_allocations(list(allocations.values())),
            created_at=utcnow(),
        )
        document = budget.to_document(
            exclude={"id", "created_at", "updated_at", "deleted_at"}
        )
        document["createdAt"] = SERVER_TIMESTAMP

        batch = self._store.batch().set(
            CollectionPaths.budget(user_id, budget.id),
            document,
        )
        stage_user_stats(batch, user_id, budgets=1)
        await self._store.commit(batch)

        logger.info(
            "budget_created",
            user_id=user_id,
            budget_id=budget.id,
            allocation_count=len(allocations),
        )
        return budget

    async def update(
        self,
        user_id: str,
        budget_id: str,
        changes: dict[str, Any],
    ) -> Budget:
        """
        Partial update of the budget definition.

        Replacing `categories` re-derives every allocation and the stats.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise LedgerValidationError(
                f"Unknown budget fields: {', '.join(sorted(unknown))}"
            )

        budget = await self.require(user_id, budget_id)
        current: dict[str, Any] = {
            "name": budget.name,
            "amount": budget.amount,
            "period": budget.period,
            "start_date": budget.start_date,
            "end_date": budget.end_date,
            "categories": {
                key: {"category_id": a.category_id, "amount": a.amount}
                for key, a in budget.categories.items()
            },
        }
        try:
            merged = BudgetInput.model_validate({**current, **changes})
        except ValidationError as e:
            raise validation_error_from_pydantic(e, "Invalid budget update")

        updated = {
            "name": merged.name,
            "amount": merged.amount,
            "period": merged.period,
            "start_date": merged.start_date,
            "end_date": merged.end_date,
            "updated_at": utcnow(),
        }
        document: dict[str, Any] = {
            "name": merged.name,
            "amount": merged.amount,
            "period": merged.period.value,
            "startDate": merged.start_date.isoformat(),
            "endDate": merged.end_date.isoformat(),
            "updatedAt": SERVER_TIMESTAMP,
        }
        if "categories" in changes:
            allocations = build_allocations(merged.categories, budget.categories)
            document["categories"] = {
                key: allocation.to_document()
                for key, allocation in allocations.items()
            }
            stats = BudgetStats.from_allocations(list(allocations.values()))
            document["stats"] = stats.to_document()
            updated.update(categories=allocations, stats=stats)

        batch = self._store.batch().update(
            CollectionPaths.budget(user_id, budget_id),
            document,
        )
        await self._store.commit(batch)
        return budget.model_copy(update=updated)

    async def deactivate(self, user_id: str, budget_id: str) -> None:
        await self.require(user_id, budget_id)
        batch = self._store.batch().update(
            CollectionPaths.budget(user_id, budget_id),
            soft_delete_fields(),
        )
        stage_user_stats(batch, user_id, budgets=-1)
        await self._store.commit(batch)
        logger.info("budget_deactivated", user_id=user_id, budget_id=budget_id)

