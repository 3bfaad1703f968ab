"""
Dashboard Analytics

DESIGN DECISION: Analytics only READ. They aggregate what the ledger
engine and the reconciler already maintain:
- spending by category and the user summary scan active transactions
- monthly spending sums the per-category monthlySpending aggregates
- budget performance reads each budget's stats

Nothing here writes, so a stale aggregate shows up as a stale number,
never as a changed ledger. reconcile_all_budgets repairs budget stats.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import structlog

from ledgerbook.config import LedgerSettings, get_settings
from ledgerbook.models import (
    BudgetFilters,
    BudgetPerformance,
    BudgetPeriod,
    CategorySpending,
    CategoryType,
    DateRange,
    MonthlySpending,
    TopCategory,
    Transaction,
    TransactionFilters,
    TransactionType,
    Trend,
    UserSummary,
    allocation_status,
)
from ledgerbook.stores import (
    AccountStore,
    BudgetStore,
    CategoryStore,
    TransactionStore,
)


logger = structlog.get_logger(__name__)

TOP_CATEGORY_LIMIT = 5


def previous_range(date_range: DateRange) -> DateRange:
    """The range of equal length that ends the day before date_range starts."""
    length = date_range.end_date - date_range.start_date
    end = date_range.start_date - timedelta(days=1)
    return DateRange(start_date=end - length, end_date=end)


def _percent(part: Decimal, whole: Decimal) -> float:
    if whole == 0:
        return 0.0
    return round(float(part / whole * 100), 2)


def _totals_by_category(transactions: list[Transaction]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for transaction in transactions:
        totals[transaction.category_id] += transaction.amount
    return totals


def _sum(transactions: list[Transaction], transaction_type: TransactionType) -> Decimal:
    return sum(
        (t.amount for t in transactions if t.type == transaction_type),
        Decimal("0"),
    )


class AnalyticsQueries:
    """
    Aggregate reads behind the dashboards.

    GUARANTEES:
    - Only active transactions and active budgets are counted
    - Amounts stay Decimal; only percentages are floats
    - An empty result is an empty list, never an error
    """

    def __init__(
        self,
        accounts: AccountStore,
        categories: CategoryStore,
        budgets: BudgetStore,
        transactions: TransactionStore,
        settings: Optional[LedgerSettings] = None,
    ):
        self._accounts = accounts
        self._categories = categories
        self._budgets = budgets
        self._transactions = transactions
        self._settings = settings or get_settings().ledger

    async def _expenses(self, user_id: str, date_range: DateRange) -> list[Transaction]:
        return await self._transactions.list_transactions(
            user_id,
            TransactionFilters(date_range=date_range, types=[TransactionType.EXPENSE]),
        )

    async def spending_by_category(
        self,
        user_id: str,
        date_range: DateRange,
    ) -> list[CategorySpending]:
        """
        Expense totals per category, largest first.

        The trend compares each category with the previous range of the
        same length; a category with nothing in that range has trend 0.
        """
        current = await self._expenses(user_id, date_range)
        previous = _totals_by_category(
            await self._expenses(user_id, previous_range(date_range))
        )

        totals = _totals_by_category(current)
        names = {t.category_id: t.category_name for t in current}
        grand_total = sum(totals.values(), Decimal("0"))

        results = []
        for category_id, amount in totals.items():
            baseline = previous.get(category_id, Decimal("0"))
            results.append(CategorySpending(
                category_id=category_id,
                category_name=names[category_id],
                amount=amount,
                percentage=_percent(amount, grand_total),
                trend=_percent(amount - baseline, baseline) if baseline > 0 else 0.0,
            ))

        results.sort(key=lambda item: (-item.amount, item.category_name))
        return results

    async def monthly_spending(self, user_id: str, year: int) -> list[MonthlySpending]:
        """
        Per-month spending of a calendar year against monthly budgets.

        Spending comes from the monthlySpending aggregates of expense
        categories, so it counts whatever was filed under them. Months
        with neither spending nor a monthly budget are left out.
        """
        prefix = f"{year}-"
        spent: dict[str, Decimal] = defaultdict(Decimal)
        categories = await self._categories.list_categories(
            user_id, CategoryType.EXPENSE, include_inactive=True
        )
        for category in categories:
            for month, amount in category.stats.monthly_spending.items():
                if month.startswith(prefix):
                    spent[month] += amount

        budgeted: dict[str, Decimal] = defaultdict(Decimal)
        budgets = await self._budgets.list_budgets(user_id, BudgetFilters(
            is_active=True,
            period=BudgetPeriod.MONTHLY,
            start_date=date(year, 1, 1),
            end_date=date(year, 12, 31),
        ))
        for budget in budgets:
            if budget.start_date.year == year:
                budgeted[budget.start_date.strftime("%Y-%m")] += budget.amount

        months = {m for m, amount in spent.items() if amount != 0} | set(budgeted)
        return [
            MonthlySpending(
                month=month,
                amount=spent.get(month, Decimal("0")),
                budget_amount=budgeted.get(month, Decimal("0")),
                variance=budgeted.get(month, Decimal("0")) - spent.get(month, Decimal("0")),
            )
            for month in sorted(months)
        ]

    async def budget_performance(
        self,
        user_id: str,
        period: Optional[BudgetPeriod] = None,
        date_range: Optional[DateRange] = None,
    ) -> list[BudgetPerformance]:
        """Allocated against spent for every active budget, from its stats."""
        filters = BudgetFilters(
            is_active=True,
            period=period,
            start_date=date_range.start_date if date_range else None,
            end_date=date_range.end_date if date_range else None,
        )

        threshold = self._settings.warning_threshold
        results = []
        for budget in await self._budgets.list_budgets(user_id, filters):
            stats = budget.stats
            results.append(BudgetPerformance(
                budget_id=budget.id,
                budget_name=budget.name,
                allocated=stats.total_allocated,
                spent=stats.total_spent,
                remaining=stats.total_remaining,
                percentage_used=_percent(stats.total_spent, stats.total_allocated),
                status=allocation_status(stats.total_allocated, stats.total_spent, threshold),
            ))
        return results

    async def user_summary(
        self,
        user_id: str,
        today: Optional[date] = None,
    ) -> UserSummary:
        """
        Counts of active documents plus this month against last month.

        Counts are taken from the collections, not the user's stored
        counters, so the summary also shows when those counters drift.
        """
        today = today or date.today()
        month_start = today.replace(day=1)
        last_month_start = (month_start - timedelta(days=1)).replace(day=1)

        accounts = await self._accounts.list_accounts(user_id)
        categories = await self._categories.list_categories(user_id)
        budgets = await self._budgets.list_budgets(user_id, BudgetFilters(is_active=True))
        transactions = await self._transactions.list_transactions(user_id)

        this_month = [t for t in transactions if t.transaction_date >= month_start]
        last_month = [
            t for t in transactions
            if last_month_start <= t.transaction_date < month_start
        ]

        spending = _sum(this_month, TransactionType.EXPENSE)
        income = _sum(this_month, TransactionType.INCOME)
        last_spending = _sum(last_month, TransactionType.EXPENSE)
        last_income = _sum(last_month, TransactionType.INCOME)

        savings_rate = _percent(income - spending, income) if income > 0 else 0.0
        last_savings_rate = (
            _percent(last_income - last_spending, last_income) if last_income > 0 else 0.0
        )

        by_name: dict[str, Decimal] = defaultdict(Decimal)
        for transaction in this_month:
            if transaction.type == TransactionType.EXPENSE:
                by_name[transaction.category_name] += transaction.amount
        top = sorted(by_name.items(), key=lambda item: (-item[1], item[0]))

        logger.debug(
            "user_summary_computed",
            user_id=user_id,
            transactions=len(transactions),
            this_month=len(this_month),
        )
        return UserSummary(
            total_accounts=len(accounts),
            total_transactions=len(transactions),
            total_categories=len(categories),
            total_budgets=len(budgets),
            monthly_spending=spending,
            monthly_income=income,
            savings_rate=savings_rate,
            top_categories=[
                TopCategory(category=name, amount=amount)
                for name, amount in top[:TOP_CATEGORY_LIMIT]
            ],
            trends={
                "income": Trend.between(float(income), float(last_income)),
                "spending": Trend.between(float(spending), float(last_spending)),
                "savings": Trend.between(savings_rate, last_savings_rate),
            },
        )
