"""
Result models returned by the ledger service.
"""

from datetime import datetime
from typing import Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from ledgerbook.models.ledger import utcnow


T = TypeVar("T")


class ConsistencyFailure(BaseModel):
    """
    A budget that could not be brought in line after a ledger commit.

    The ledger write stands; the budget stays stale until
    reconcile_budgets_for_category succeeds for the category.
    """

    kind: str = "CONSISTENCY_FAILURE"
    category_id: str
    budget_id: Optional[str] = None
    message: str
    occurred_at: datetime = Field(default_factory=utcnow)


class ReconciliationReport(BaseModel):
    """Outcome of one reconciliation pass."""

    user_id: str
    category_id: Optional[str] = Field(
        default=None,
        description="None when every category was reconciled"
    )
    strategy: str = Field(
        ...,
        pattern="^(delta|recompute)$",
        description="How spent was derived"
    )
    updated_budget_ids: list[str] = Field(default_factory=list)
    failures: list[ConsistencyFailure] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def merge(self, other: 'ReconciliationReport') -> 'ReconciliationReport':
        """Combine two reports of the same user into one."""
        return self.model_copy(update={
            "category_id": self.category_id if self.category_id == other.category_id else None,
            "updated_budget_ids": self.updated_budget_ids + [
                budget_id for budget_id in other.updated_budget_ids
                if budget_id not in self.updated_budget_ids
            ],
            "failures": self.failures + other.failures,
        })


class LedgerResult(BaseModel, Generic[T]):
    """
    Value of a successful ledger mutation plus its soft failures.

    Hard failures are raised as LedgerError subclasses instead.
    """

    value: Optional[T] = None
    correlation_id: Optional[UUID] = None
    consistency_failures: list[ConsistencyFailure] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.consistency_failures
