"""
Tests for the dashboard analytics.

Dates are fixed in 2025 so "this month" is June when a test passes
today=date(2025, 6, 20).
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import FOOD, HOUSING, SALARY, USER_ID, expense
from ledgerbook.errors import LedgerValidationError, ResourceNotFoundError
from ledgerbook.models import (
    AllocationStatus,
    BudgetPeriod,
    DateRange,
    Trend,
)
from ledgerbook.queries import previous_range


JUNE = DateRange(start_date=date(2025, 6, 1), end_date=date(2025, 6, 30))


async def _record_spring(service, account_id):
    """2000 salary and 400 of expenses in June, 50 of food in May."""
    await service.create_transaction(USER_ID, {
        "account_id": account_id,
        "category_id": SALARY,
        "amount": "2000",
        "type": "INCOME",
        "transaction_date": date(2025, 6, 1),
    })
    await service.create_transaction(
        USER_ID, expense(account_id, HOUSING, "300", transaction_date=date(2025, 6, 10))
    )
    await service.create_transaction(USER_ID, expense(account_id, FOOD, "100"))
    await service.create_transaction(
        USER_ID, expense(account_id, FOOD, "50", transaction_date=date(2025, 5, 20))
    )


class TestPreviousRange:
    def test_same_length_ending_the_day_before(self):
        assert previous_range(JUNE) == DateRange(
            start_date=date(2025, 5, 2), end_date=date(2025, 5, 31)
        )

    def test_single_day(self):
        day = DateRange(start_date=date(2025, 3, 1), end_date=date(2025, 3, 1))

        assert previous_range(day) == DateRange(
            start_date=date(2025, 2, 28), end_date=date(2025, 2, 28)
        )


class TestTrend:
    def test_no_baseline_is_flat(self):
        assert Trend.between(80.0, 0.0) == Trend(value=0.0, direction="up")

    def test_drop_points_down(self):
        assert Trend.between(50.0, 200.0) == Trend(value=75.0, direction="down")


class TestSpendingByCategory:
    @pytest.mark.asyncio
    async def test_shares_and_trend(self, service, seeded):
        """Test percentages of the range total and change against May."""
        await _record_spring(service, seeded.account.id)

        spending = await service.spending_by_category(USER_ID, JUNE)

        assert [(s.category_id, s.amount) for s in spending] == [
            (HOUSING, Decimal("300")),
            (FOOD, Decimal("100")),
        ]
        housing, food = spending
        assert housing.category_name == "Housing"
        assert housing.percentage == 75.0
        assert housing.trend == 0.0
        assert food.percentage == 25.0
        assert food.trend == 100.0

    @pytest.mark.asyncio
    async def test_empty_range(self, service, seeded):
        spending = await service.spending_by_category(
            USER_ID, {"start_date": date(2024, 1, 1), "end_date": date(2024, 1, 31)}
        )

        assert spending == []

    @pytest.mark.asyncio
    async def test_reversed_range_is_rejected(self, service, seeded):
        with pytest.raises(LedgerValidationError):
            await service.spending_by_category(
                USER_ID, {"start_date": date(2025, 6, 30), "end_date": date(2025, 6, 1)}
            )


class TestMonthlySpending:
    @pytest.mark.asyncio
    async def test_months_against_monthly_budgets(self, service, seeded):
        """Test that income is left out and June is compared with its budget."""
        await _record_spring(service, seeded.account.id)

        months = await service.monthly_spending(USER_ID, 2025)

        assert [(m.month, m.amount, m.budget_amount, m.variance) for m in months] == [
            ("2025-05", Decimal("50"), Decimal("0"), Decimal("-50")),
            ("2025-06", Decimal("400"), Decimal("1300"), Decimal("900")),
        ]

    @pytest.mark.asyncio
    async def test_other_year_is_empty(self, service, seeded):
        await _record_spring(service, seeded.account.id)

        assert await service.monthly_spending(USER_ID, 2024) == []

    @pytest.mark.asyncio
    async def test_deleted_transaction_leaves_no_month(self, service, seeded):
        result = await service.create_transaction(
            USER_ID, expense(seeded.account.id, FOOD, "20", transaction_date=date(2025, 3, 3))
        )
        await service.delete_transaction(USER_ID, seeded.account.id, result.value.id)

        months = await service.monthly_spending(USER_ID, 2025)

        assert [m.month for m in months] == ["2025-06"]


class TestBudgetPerformance:
    @pytest.mark.asyncio
    async def test_warning_above_threshold(self, service, seeded):
        """Test 1100 of 1300 spent is a warning at the 0.8 threshold."""
        await service.create_transaction(USER_ID, {
            "account_id": seeded.account.id,
            "category_id": SALARY,
            "amount": "2000",
            "type": "INCOME",
            "transaction_date": date(2025, 6, 1),
        })
        await service.create_transaction(USER_ID, expense(seeded.account.id, HOUSING, "900"))
        await service.create_transaction(USER_ID, expense(seeded.account.id, FOOD, "200"))

        [performance] = await service.budget_performance(USER_ID)

        assert performance.budget_id == seeded.budget.id
        assert performance.allocated == Decimal("1300")
        assert performance.spent == Decimal("1100")
        assert performance.remaining == Decimal("200")
        assert performance.percentage_used == 84.62
        assert performance.status == AllocationStatus.WARNING

    @pytest.mark.asyncio
    async def test_filters(self, service, seeded):
        assert await service.budget_performance(USER_ID, period=BudgetPeriod.WEEKLY) == []
        assert await service.budget_performance(
            USER_ID,
            date_range=DateRange(start_date=date(2025, 7, 1), end_date=date(2025, 7, 31)),
        ) == []

    @pytest.mark.asyncio
    async def test_deleted_budget_is_left_out(self, service, seeded):
        await service.delete_budget(USER_ID, seeded.budget.id)

        assert await service.budget_performance(USER_ID) == []


class TestUserStats:
    @pytest.mark.asyncio
    async def test_summary_of_june(self, service, seeded):
        await _record_spring(service, seeded.account.id)

        summary = await service.get_user_stats(USER_ID, today=date(2025, 6, 20))

        assert summary.total_accounts == 1
        assert summary.total_transactions == 4
        assert summary.total_categories == len(await service.list_categories(USER_ID))
        assert summary.total_budgets == 1
        assert summary.monthly_income == Decimal("2000")
        assert summary.monthly_spending == Decimal("400")
        assert summary.savings_rate == 80.0
        assert [(c.category, c.amount) for c in summary.top_categories] == [
            ("Housing", Decimal("300")),
            ("Food & Dining", Decimal("100")),
        ]
        assert summary.trends["spending"] == Trend(value=700.0, direction="up")
        assert summary.trends["income"] == Trend()

    @pytest.mark.asyncio
    async def test_new_user_is_all_zero(self, service, seeded):
        summary = await service.get_user_stats(USER_ID, today=date(2025, 6, 20))

        assert summary.monthly_spending == Decimal("0")
        assert summary.savings_rate == 0.0
        assert summary.top_categories == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(ResourceNotFoundError):
            await service.get_user_stats("nobody")
