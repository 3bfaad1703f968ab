"""
Shared fixtures.

Every test runs against a fresh in-memory document store; no cloud
credentials are needed.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from tenacity import wait_none

from ledgerbook.audit import AuditLogger
from ledgerbook.config import LedgerSettings
from ledgerbook.models import Account, Budget, CategoryType
from ledgerbook.orchestrator import LedgerService
from ledgerbook.services.storage import (
    BatchCommitError,
    DocumentAuditStorage,
    InMemoryDocumentStore,
    StorageError,
)
from ledgerbook.stores import default_category_id


USER_ID = "user-1"
TXN_DATE = date(2025, 6, 15)
MONTH = "2025-06"

HOUSING = default_category_id(CategoryType.EXPENSE, "Housing")
FOOD = default_category_id(CategoryType.EXPENSE, "Food & Dining")
OTHER_EXPENSES = default_category_id(CategoryType.EXPENSE, "Other Expenses")
SALARY = default_category_id(CategoryType.INCOME, "Salary")


class FailingStore(InMemoryDocumentStore):
    """
    In-memory store whose commits fail while they touch a blocked path.

    `failures_left` limits how many commits fail (None: all of them).
    A committed write under a prefix in `unreadable_after_commit` makes
    that document fail on every later get.
    """

    def __init__(self):
        super().__init__()
        self.blocked_paths: set[str] = set()
        self.failures_left = None
        self.unreadable_after_commit: set[str] = set()
        self._unreadable: set[str] = set()

    async def get(self, path):
        if path in self._unreadable:
            raise StorageError(f"simulated read failure: {path}")
        return await super().get(path)

    async def commit(self, batch):
        if self.blocked_paths & set(batch.paths):
            if self.failures_left is None or self.failures_left > 0:
                if self.failures_left is not None:
                    self.failures_left -= 1
                raise BatchCommitError("simulated outage")
        await super().commit(batch)
        self._unreadable.update(
            path for path in batch.paths
            if any(path.startswith(prefix) for prefix in self.unreadable_after_commit)
        )


@dataclass
class Seed:
    account: Account
    budget: Budget


def make_settings(**overrides) -> LedgerSettings:
    values = {
        "warning_threshold": 0.8,
        "check_funds_on_update": True,
        "reconciliation_strategy": "delta",
        "reconcile_retry_attempts": 3,
    }
    values.update(overrides)
    return LedgerSettings(**values)


def make_service(store, **settings_overrides) -> LedgerService:
    return LedgerService(
        store,
        audit_logger=AuditLogger(DocumentAuditStorage(store)),
        settings=make_settings(**settings_overrides),
        retry_wait=wait_none(),
    )


def expense(account_id: str, category_id: str, amount: str, **extra) -> dict:
    return {
        "account_id": account_id,
        "category_id": category_id,
        "amount": amount,
        "type": "EXPENSE",
        "transaction_date": TXN_DATE,
        **extra,
    }


@pytest.fixture
def store():
    return FailingStore()


@pytest.fixture
def service(store):
    return make_service(store)


@pytest.fixture
def recompute_service(store):
    return make_service(store, reconciliation_strategy="recompute")


async def seed_user(service: LedgerService) -> Seed:
    """User with a 500.00 checking account and a Housing/Food budget."""
    await service.create_user(USER_ID, {"email": "ada@example.com", "first_name": "Ada"})
    account = await service.create_account(USER_ID, {
        "name": "Checking",
        "account_type": "CHECKING",
        "balance": Decimal("500.00"),
    })
    budget = await service.create_budget(USER_ID, {
        "name": "June",
        "amount": Decimal("1300"),
        "period": "MONTHLY",
        "start_date": date(2025, 6, 1),
        "end_date": date(2025, 6, 30),
        "categories": {
            "housing": {"category_id": HOUSING, "amount": Decimal("1000")},
            "food": {"category_id": FOOD, "amount": Decimal("300")},
        },
    })
    return Seed(account=account, budget=budget)


@pytest_asyncio.fixture
async def seeded(service):
    return await seed_user(service)
