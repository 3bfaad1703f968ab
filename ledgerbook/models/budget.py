"""
Budget Models

A budget maps allocation keys to per-category allocations. Each
allocation tracks the allocated amount against the amount spent in its
category.

CRITICAL: spent, remaining and status are derived fields. Only the
budget reconciler writes them; user input can only set the allocated
amount.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import Field, model_validator

from ledgerbook.models.ledger import DocumentModel, Money


DEFAULT_WARNING_THRESHOLD = 0.8


class BudgetPeriod(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class AllocationStatus(str, Enum):
    """
    Allocation health.

    EXCEEDED  - spent > amount
    WARNING   - spent > threshold * amount (threshold defaults to 0.8)
    ON_TRACK  - otherwise
    """
    ON_TRACK = "ON_TRACK"
    WARNING = "WARNING"
    EXCEEDED = "EXCEEDED"


def allocation_status(
    amount: Decimal,
    spent: Decimal,
    warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
) -> AllocationStatus:
    """Status for an allocation. spent == amount is not exceeded."""
    if spent > amount:
        return AllocationStatus.EXCEEDED
    if spent > Decimal(str(warning_threshold)) * amount:
        return AllocationStatus.WARNING
    return AllocationStatus.ON_TRACK


class BudgetCategoryAllocation(DocumentModel):
    """One category's share of a budget."""

    category_id: str
    amount: Money = Field(..., ge=0, description="Allocated amount")
    spent: Money = Decimal("0")
    remaining: Optional[Money] = None
    status: AllocationStatus = AllocationStatus.ON_TRACK

    @model_validator(mode='after')
    def fill_remaining(self) -> 'BudgetCategoryAllocation':
        if self.remaining is None:
            self.remaining = self.amount - self.spent
        return self

    def with_spent(
        self,
        spent: Decimal,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
    ) -> 'BudgetCategoryAllocation':
        """Copy of this allocation re-derived for a new spent amount."""
        return self.model_copy(update={
            "spent": spent,
            "remaining": self.amount - spent,
            "status": allocation_status(self.amount, spent, warning_threshold),
        })


class BudgetStats(DocumentModel):
    total_allocated: Money = Decimal("0")
    total_spent: Money = Decimal("0")
    total_remaining: Money = Decimal("0")
    compliance_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="Share of allocations that are not exceeded"
    )

    @classmethod
    def from_allocations(
        cls,
        allocations: list[BudgetCategoryAllocation],
    ) -> 'BudgetStats':
        total_allocated = sum((a.amount for a in allocations), Decimal("0"))
        total_spent = sum((a.spent for a in allocations), Decimal("0"))
        if allocations:
            compliant = sum(
                1 for a in allocations if a.status != AllocationStatus.EXCEEDED
            )
            compliance_rate = compliant / len(allocations)
        else:
            compliance_rate = 1.0
        return cls(
            total_allocated=total_allocated,
            total_spent=total_spent,
            total_remaining=total_allocated - total_spent,
            compliance_rate=compliance_rate,
        )


class AllocationInput(DocumentModel):
    category_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)


class BudgetInput(DocumentModel):
    """User-supplied fields for a new budget."""

    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0)
    period: BudgetPeriod
    start_date: date
    end_date: date
    categories: dict[str, AllocationInput] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_budget(self) -> 'BudgetInput':
        if self.end_date < self.start_date:
            raise ValueError("Budget end date cannot be before start date")

        seen = set()
        for allocation in self.categories.values():
            if allocation.category_id in seen:
                raise ValueError(
                    f"Category {allocation.category_id} is allocated more than once"
                )
            seen.add(allocation.category_id)
        return self


class Budget(DocumentModel):
    """A budget document: users/{uid}/budgets/{id}."""

    id: str
    user_id: str
    name: str
    amount: Money
    period: BudgetPeriod
    start_date: date
    end_date: date
    categories: dict[str, BudgetCategoryAllocation] = Field(default_factory=dict)
    stats: BudgetStats = Field(default_factory=BudgetStats)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def find_allocation(
        self,
        category_id: str,
    ) -> Optional[tuple[str, BudgetCategoryAllocation]]:
        """(key, allocation) for the category, or None."""
        for key, allocation in self.categories.items():
            if allocation.category_id == category_id:
                return key, allocation
        return None


class BudgetFilters(DocumentModel):
    is_active: Optional[bool] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
