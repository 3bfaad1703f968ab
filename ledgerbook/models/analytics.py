"""
Analytics Models

Read-only views for dashboards. None of these are stored; they are
computed on request from transactions, category aggregates and budget
stats.
"""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from ledgerbook.models.budget import AllocationStatus


class CategorySpending(BaseModel):
    """Expense total of one category over a date range."""

    category_id: str
    category_name: str
    amount: Decimal
    percentage: float = Field(..., description="Share of the range's total, 0-100")
    trend: float = Field(
        ..., description="Change against the previous range of equal length, in percent"
    )


class MonthlySpending(BaseModel):
    month: str
    amount: Decimal
    budget_amount: Decimal = Decimal("0")
    variance: Decimal = Decimal("0")


class BudgetPerformance(BaseModel):
    budget_id: str
    budget_name: str
    allocated: Decimal
    spent: Decimal
    remaining: Decimal
    percentage_used: float
    status: AllocationStatus


class Trend(BaseModel):
    value: float = 0.0
    direction: Literal["up", "down"] = "up"

    @classmethod
    def between(cls, current: float, previous: float) -> 'Trend':
        """Percent change from previous to current; flat when there is no baseline."""
        if previous == 0:
            return cls()
        change = (current - previous) / previous * 100
        return cls(
            value=abs(round(change, 1)),
            direction="up" if change >= 0 else "down",
        )


class TopCategory(BaseModel):
    category: str
    amount: Decimal


class UserSummary(BaseModel):
    """Counts plus this month's money flow against last month."""

    total_accounts: int = 0
    total_transactions: int = 0
    total_categories: int = 0
    total_budgets: int = 0
    monthly_spending: Decimal = Decimal("0")
    monthly_income: Decimal = Decimal("0")
    savings_rate: float = 0.0
    top_categories: list[TopCategory] = Field(default_factory=list)
    trends: dict[str, Trend] = Field(default_factory=dict)
