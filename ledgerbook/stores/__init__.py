"""
Entity stores.

Thin typed access to the documents of one collection each. Stores shape
documents; ledger rules live in ledgerbook.ledger.
"""

from ledgerbook.stores.categories import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    CategoryStore,
    default_categories,
    default_category_id,
)
from ledgerbook.stores.users import UserStore, stage_user_stats
from ledgerbook.stores.accounts import AccountStore
from ledgerbook.stores.budgets import BudgetStore, build_allocations
from ledgerbook.stores.transactions import TransactionStore, matches_filters

__all__ = [
    "AccountStore",
    "BudgetStore",
    "CategoryStore",
    "DEFAULT_EXPENSE_CATEGORIES",
    "DEFAULT_INCOME_CATEGORIES",
    "TransactionStore",
    "UserStore",
    "build_allocations",
    "default_categories",
    "default_category_id",
    "matches_filters",
    "stage_user_stats",
]
