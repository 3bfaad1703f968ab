"""
Tests for the ledger engine, driven through LedgerService.

Each test checks the documents the in-memory store holds after the
mutation: balances, counters, aggregates and budget allocations.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import (
    FOOD,
    HOUSING,
    MONTH,
    OTHER_EXPENSES,
    SALARY,
    USER_ID,
    expense,
)
from ledgerbook.errors import (
    ErrorKind,
    InsufficientFundsError,
    LedgerValidationError,
    ResourceNotFoundError,
)
from ledgerbook.ledger import CounterEffects
from ledgerbook.models import AllocationStatus, TransactionType
from ledgerbook.services.storage import (
    SERVER_TIMESTAMP,
    CollectionPaths,
    Increment,
    WriteBatch,
)


async def _balance(service, account_id):
    account = await service.accounts.get(USER_ID, account_id, include_inactive=True)
    return account.balance


async def _spending(service, category_id, month=MONTH):
    category = await service.categories.get(USER_ID, category_id, include_inactive=True)
    return category.stats.monthly_spending.get(month, Decimal("0"))


async def _allocation(service, budget_id, key):
    budget = await service.budgets.require(USER_ID, budget_id)
    return budget.categories[key]


async def _user_stats(service):
    user = await service.users.get(USER_ID)
    return user.stats


class TestCounterEffects:
    """Tests for the per-document write accumulator."""

    def test_reversal_and_reapply_collapse_into_one_update(self):
        """Test that moving a transaction writes each document once."""
        from ledgerbook.models import Transaction

        original = Transaction(
            id="t1", user_id="u1", account_id="a1", category_id="c1",
            amount=Decimal("10"), type=TransactionType.EXPENSE,
            transaction_date=date(2025, 6, 1),
        )
        effects = CounterEffects()
        effects.apply_transaction(original, sign=-1)
        effects.apply_transaction(original.model_copy(update={"amount": Decimal("12")}), sign=1)
        batch = effects.stage(WriteBatch())

        assert sorted(batch.paths) == sorted([
            CollectionPaths.account("u1", "a1"),
            CollectionPaths.category("u1", "c1"),
        ])
        account_update = next(
            op.data for op in batch.ops if op.path == CollectionPaths.account("u1", "a1")
        )
        assert account_update["balance"] == Increment(Decimal("-2"))
        # Pending count cancels out and is not written
        assert ("stats", "pendingTransactions") not in account_update
        assert account_update[("stats", "lastSync")] is SERVER_TIMESTAMP

    def test_set_merges_into_the_same_update(self):
        """Test that plain field writes share the document's update."""
        effects = CounterEffects()
        effects.add("users/u1/categories/c1", ("stats", "monthlySpending", "2025-06"), 5)
        effects.set("users/u1/categories/c1", "isActive", False)
        batch = effects.stage(WriteBatch())

        assert len(batch) == 1
        assert batch.ops[0].data["isActive"] is False


class TestCreateTransaction:
    """Tests for recording a new transaction."""

    @pytest.mark.asyncio
    async def test_rent_expense_moves_every_counter(self, service, seeded):
        """Test the full effect of a 200.00 rent payment on a 500.00 account."""
        result = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200.00", description="Rent")
        )

        assert result.is_consistent
        assert result.value.account_name == "Checking"
        assert result.value.category_name == "Housing"
        assert await _balance(service, seeded.account.id) == Decimal("300.00")
        assert await _spending(service, HOUSING) == Decimal("200.00")

        account = await service.accounts.get(USER_ID, seeded.account.id)
        assert account.stats.pending_transactions == 1
        assert account.stats.monthly_transaction_count == {MONTH: 1}
        assert account.stats.last_sync is not None

        stats = await _user_stats(service)
        assert stats.total_transactions == 1

        allocation = await _allocation(service, seeded.budget.id, "housing")
        assert allocation.spent == Decimal("200.00")
        assert allocation.remaining == Decimal("800.00")
        assert allocation.status == AllocationStatus.ON_TRACK

    @pytest.mark.asyncio
    async def test_allocation_turns_warning_then_exceeded(self, service, seeded):
        """Test 3 x 100 against 300 is WARNING and one more unit is EXCEEDED."""
        for _ in range(3):
            await service.create_transaction(
                USER_ID, expense(seeded.account.id, FOOD, "100")
            )

        allocation = await _allocation(service, seeded.budget.id, "food")
        assert allocation.spent == Decimal("300")
        assert allocation.remaining == Decimal("0")
        assert allocation.status == AllocationStatus.WARNING

        await service.create_transaction(USER_ID, expense(seeded.account.id, FOOD, "1"))

        budget = await service.budgets.require(USER_ID, seeded.budget.id)
        assert budget.categories["food"].status == AllocationStatus.EXCEEDED
        assert budget.categories["food"].remaining == Decimal("-1")
        assert budget.stats.total_spent == Decimal("301")
        assert budget.stats.compliance_rate == 0.5

    @pytest.mark.asyncio
    async def test_income_adds_to_balance(self, service, seeded):
        """Test that income increases the balance."""
        await service.create_transaction(USER_ID, {
            "account_id": seeded.account.id,
            "category_id": SALARY,
            "amount": "1000",
            "type": "INCOME",
            "transaction_date": date(2025, 6, 1),
        })

        assert await _balance(service, seeded.account.id) == Decimal("1500.00")
        assert await _spending(service, SALARY) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_insufficient_funds_writes_nothing(self, service, seeded):
        """Test that an overdraft is rejected before any ledger write."""
        with pytest.raises(InsufficientFundsError) as exc_info:
            await service.create_transaction(
                USER_ID, expense(seeded.account.id, HOUSING, "600")
            )

        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_FUNDS
        assert await _balance(service, seeded.account.id) == Decimal("500.00")
        assert await service.list_transactions(USER_ID) == []
        assert (await _user_stats(service)).total_transactions == 0

        events = await service._audit_logger._storage.get_recent_events(USER_ID)
        assert events[0].event_type.value == "transaction_rejected"
        assert events[0].error_code == "INSUFFICIENT_FUNDS"

    @pytest.mark.asyncio
    async def test_exact_balance_is_allowed(self, service, seeded):
        """Test that spending the whole balance is not an overdraft."""
        await service.create_transaction(USER_ID, expense(seeded.account.id, HOUSING, "500"))

        assert await _balance(service, seeded.account.id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_credit_card_can_go_negative(self, service, seeded):
        """Test that credit cards skip the funds check."""
        card = await service.create_account(USER_ID, {
            "name": "Visa",
            "account_type": "CREDIT_CARD",
        })

        await service.create_transaction(USER_ID, expense(card.id, FOOD, "1000"))

        assert await _balance(service, card.id) == Decimal("-1000")

    @pytest.mark.asyncio
    async def test_unknown_account_is_not_found(self, service, seeded):
        """Test that a missing account is reported before writing."""
        with pytest.raises(ResourceNotFoundError) as exc_info:
            await service.create_transaction(USER_ID, expense("missing", HOUSING, "10"))

        assert exc_info.value.resource_type == "Account"

    @pytest.mark.asyncio
    async def test_negative_amount_is_rejected(self, service, seeded):
        """Test that negative amounts fail schema validation."""
        with pytest.raises(LedgerValidationError) as exc_info:
            await service.create_transaction(
                USER_ID, expense(seeded.account.id, HOUSING, "-5")
            )

        assert exc_info.value.issues[0].field == "amount"

    @pytest.mark.asyncio
    async def test_sub_cent_amount_is_rejected(self, service, seeded):
        """Test that more than two decimal places is an error."""
        with pytest.raises(LedgerValidationError):
            await service.create_transaction(
                USER_ID, expense(seeded.account.id, HOUSING, "1.005")
            )

    @pytest.mark.asyncio
    async def test_zero_amount_is_a_warning(self, service, seeded):
        """Test that a zero amount is stored with a warning."""
        result = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "0")
        )

        assert result.warnings == ["Transaction amount is zero"]
        assert await _balance(service, seeded.account.id) == Decimal("500.00")


class TestUpdateTransaction:
    """Tests for partial updates."""

    @pytest.mark.asyncio
    async def test_amount_change_moves_the_difference(self, service, seeded):
        """Test that 200 -> 250 moves balance, spending and budget by 50."""
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )

        result = await service.update_transaction(
            USER_ID, created.value.id, {"amount": "250"}
        )

        assert result.value.amount == Decimal("250")
        assert await _balance(service, seeded.account.id) == Decimal("250.00")
        assert await _spending(service, HOUSING) == Decimal("250")
        assert (await _allocation(service, seeded.budget.id, "housing")).spent == Decimal("250")

        account = await service.accounts.get(USER_ID, seeded.account.id)
        assert account.stats.pending_transactions == 1
        assert (await _user_stats(service)).total_transactions == 1

    @pytest.mark.asyncio
    async def test_funds_check_counts_the_original_amount(self, service, seeded):
        """Test that the reversed amount is available to the new one."""
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "400")
        )

        await service.update_transaction(USER_ID, created.value.id, {"amount": "450"})
        assert await _balance(service, seeded.account.id) == Decimal("50.00")

        with pytest.raises(InsufficientFundsError):
            await service.update_transaction(USER_ID, created.value.id, {"amount": "501"})
        assert await _balance(service, seeded.account.id) == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_moving_accounts_relocates_the_document(self, service, seeded, store):
        """Test that an account change moves money and the document."""
        savings = await service.create_account(USER_ID, {
            "name": "Savings",
            "account_type": "SAVINGS",
            "balance": "1000",
        })
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )

        result = await service.update_transaction(
            USER_ID, created.value.id, {"account_id": savings.id}
        )

        assert result.value.account_id == savings.id
        assert result.value.account_name == "Savings"
        assert await _balance(service, seeded.account.id) == Decimal("500.00")
        assert await _balance(service, savings.id) == Decimal("800")
        assert await store.get(
            CollectionPaths.transaction(USER_ID, seeded.account.id, created.value.id)
        ) is None
        assert await service.get_transaction(USER_ID, created.value.id) is not None

        old_account = await service.accounts.get(USER_ID, seeded.account.id)
        new_account = await service.accounts.get(USER_ID, savings.id)
        assert old_account.stats.pending_transactions == 0
        assert new_account.stats.pending_transactions == 1
        # Category and budget are untouched by a pure account move
        assert await _spending(service, HOUSING) == Decimal("200")
        assert (await _allocation(service, seeded.budget.id, "housing")).spent == Decimal("200")

    @pytest.mark.asyncio
    async def test_moving_to_a_poor_account_is_rejected(self, service, seeded):
        """Test that the new account must cover the expense."""
        wallet = await service.create_account(USER_ID, {
            "name": "Wallet",
            "account_type": "CASH",
            "balance": "100",
        })
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )

        with pytest.raises(InsufficientFundsError):
            await service.update_transaction(
                USER_ID, created.value.id, {"account_id": wallet.id}
            )
        assert await _balance(service, wallet.id) == Decimal("100")

    @pytest.mark.asyncio
    async def test_category_change_moves_spending(self, service, seeded):
        """Test that a category change moves aggregates and allocations."""
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )

        await service.update_transaction(USER_ID, created.value.id, {"category_id": FOOD})

        assert await _spending(service, HOUSING) == Decimal("0")
        assert await _spending(service, FOOD) == Decimal("200")
        assert (await _allocation(service, seeded.budget.id, "housing")).spent == Decimal("0")
        assert (await _allocation(service, seeded.budget.id, "food")).spent == Decimal("200")
        assert await _balance(service, seeded.account.id) == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_date_change_moves_month_buckets(self, service, seeded):
        """Test that a new month moves the monthly counters."""
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )

        await service.update_transaction(
            USER_ID, created.value.id, {"transaction_date": date(2025, 7, 2)}
        )

        assert await _spending(service, HOUSING, MONTH) == Decimal("0")
        assert await _spending(service, HOUSING, "2025-07") == Decimal("200")
        account = await service.accounts.get(USER_ID, seeded.account.id)
        assert account.stats.monthly_transaction_count == {MONTH: 0, "2025-07": 1}

    @pytest.mark.asyncio
    async def test_description_change_keeps_balances(self, service, seeded):
        """Test that non-money fields leave the counters alone."""
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )

        result = await service.update_transaction(
            USER_ID, created.value.id, {"description": "June rent"}
        )

        assert result.value.description == "June rent"
        assert await _balance(service, seeded.account.id) == Decimal("300.00")
        assert await _spending(service, HOUSING) == Decimal("200")

    @pytest.mark.asyncio
    async def test_empty_update_writes_nothing(self, service, seeded, store):
        """Test that an update without fields returns the stored transaction."""
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )
        commits = store.commit_count

        result = await service.update_transaction(USER_ID, created.value.id, {})

        assert result.value.id == created.value.id
        assert store.commit_count == commits

    @pytest.mark.asyncio
    async def test_turning_off_recurrence_clears_the_pattern(self, service, seeded):
        """Test that is_recurring=False drops the stored pattern."""
        created = await service.create_transaction(USER_ID, expense(
            seeded.account.id, HOUSING, "200",
            is_recurring=True, recurring_pattern="monthly",
        ))

        result = await service.update_transaction(
            USER_ID, created.value.id, {"is_recurring": False}
        )

        assert result.value.is_recurring is False
        assert result.value.recurring_pattern is None

    @pytest.mark.asyncio
    async def test_missing_transaction_is_not_found(self, service, seeded):
        """Test updating an unknown id."""
        with pytest.raises(ResourceNotFoundError):
            await service.update_transaction(USER_ID, "missing", {"amount": "1"})


class TestDeleteTransaction:
    """Tests for soft-deleting transactions."""

    @pytest.mark.asyncio
    async def test_delete_reverses_create(self, service, seeded):
        """Test that create followed by delete restores every counter."""
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )

        result = await service.delete_transaction(
            USER_ID, seeded.account.id, created.value.id
        )

        assert result.value.amount == Decimal("200")
        assert await _balance(service, seeded.account.id) == Decimal("500.00")
        assert await _spending(service, HOUSING) == Decimal("0")
        account = await service.accounts.get(USER_ID, seeded.account.id)
        assert account.stats.pending_transactions == 0
        assert account.stats.monthly_transaction_count == {MONTH: 0}
        assert (await _user_stats(service)).total_transactions == 0
        assert (await _allocation(service, seeded.budget.id, "housing")).spent == Decimal("0")

        stored = await service.transactions.get(
            USER_ID, seeded.account.id, created.value.id, include_inactive=True
        )
        assert stored.is_active is False
        assert stored.deleted_at is not None

    @pytest.mark.asyncio
    async def test_second_delete_is_not_found(self, service, seeded):
        """Test that a soft-deleted transaction cannot be deleted again."""
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, HOUSING, "200")
        )
        await service.delete_transaction(USER_ID, seeded.account.id, created.value.id)

        with pytest.raises(ResourceNotFoundError):
            await service.delete_transaction(USER_ID, seeded.account.id, created.value.id)
        assert await _balance(service, seeded.account.id) == Decimal("500.00")


class TestCascades:
    """Tests for account and category deletion."""

    @pytest.mark.asyncio
    async def test_delete_account_soft_deletes_its_transactions(self, service, seeded):
        """Test the account cascade and the budget recompute after it."""
        await service.create_transaction(USER_ID, expense(seeded.account.id, HOUSING, "200"))
        await service.create_transaction(USER_ID, expense(seeded.account.id, FOOD, "50"))

        result = await service.delete_account(USER_ID, seeded.account.id)

        assert result.is_consistent
        assert result.value.is_active is False
        assert await service.accounts.get(USER_ID, seeded.account.id) is None
        assert await service.list_transactions(USER_ID) == []
        assert await _spending(service, HOUSING) == Decimal("0")
        assert await _spending(service, FOOD) == Decimal("0")
        assert (await _allocation(service, seeded.budget.id, "housing")).spent == Decimal("0")
        assert (await _allocation(service, seeded.budget.id, "food")).spent == Decimal("0")

        stats = await _user_stats(service)
        assert stats.total_accounts == 0
        assert stats.total_transactions == 0

        events = await service._audit_logger._storage.get_events_by_entity(
            USER_ID, "account", seeded.account.id
        )
        deleted = [e for e in events if e.event_type.value == "account_deleted"]
        assert deleted[0].details["cascaded_transactions"] == 2

    @pytest.mark.asyncio
    async def test_delete_empty_account(self, service, seeded):
        """Test deleting an account without transactions."""
        result = await service.delete_account(USER_ID, seeded.account.id)

        assert result.value.is_active is False
        assert (await _user_stats(service)).total_accounts == 0

    @pytest.mark.asyncio
    async def test_delete_category_reassigns_transactions(self, service, seeded):
        """Test that transactions move to the fallback category."""
        pets = await service.create_category(USER_ID, {"name": "Pets", "type": "EXPENSE"})
        created = await service.create_transaction(
            USER_ID, expense(seeded.account.id, pets.id, "50")
        )

        result = await service.delete_category(USER_ID, pets.id)

        assert result.value.is_active is False
        moved = await service.get_transaction(USER_ID, created.value.id)
        assert moved.category_id == OTHER_EXPENSES
        assert moved.category_name == "Other Expenses"
        assert await _spending(service, OTHER_EXPENSES) == Decimal("50")
        assert await _spending(service, pets.id) == Decimal("0")
        # Money does not move
        assert await _balance(service, seeded.account.id) == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_default_category_cannot_be_deleted(self, service, seeded):
        """Test that the starter categories are protected."""
        with pytest.raises(LedgerValidationError):
            await service.delete_category(USER_ID, HOUSING)

        assert await service.categories.get(USER_ID, HOUSING) is not None

    @pytest.mark.asyncio
    async def test_large_cascade_is_chunked(self, service, seeded, store, monkeypatch):
        """Test that a cascade above the chunk size commits in several batches."""
        from ledgerbook.ledger import engine as engine_module

        for _ in range(5):
            await service.create_transaction(USER_ID, expense(seeded.account.id, FOOD, "10"))
        monkeypatch.setattr(engine_module, "CASCADE_CHUNK_SIZE", 2)

        batches = []
        commit = store.commit

        async def recording_commit(batch):
            batches.append(batch.paths)
            await commit(batch)

        monkeypatch.setattr(store, "commit", recording_commit)

        await service.engine.delete_account(USER_ID, seeded.account.id)

        account_path = CollectionPaths.account(USER_ID, seeded.account.id)
        cascade = [paths for paths in batches if any("/transactions/" in p for p in paths)]
        assert [sum("/transactions/" in p for p in paths) for paths in cascade] == [2, 2, 1]
        assert all(len(paths) == len(set(paths)) for paths in cascade)
        assert account_path in cascade[-1]
        assert all(account_path not in paths for paths in cascade[:-1])
        assert await _spending(service, FOOD) == Decimal("0")
        assert (await _user_stats(service)).total_transactions == 0
        assert (await _user_stats(service)).total_accounts == 0


class TestBalanceInvariant:
    """The balance always equals initial balance plus active transactions."""

    @pytest.mark.asyncio
    async def test_mixed_sequence(self, service, seeded):
        account_id = seeded.account.id
        rent = await service.create_transaction(USER_ID, expense(account_id, HOUSING, "200"))
        food = await service.create_transaction(USER_ID, expense(account_id, FOOD, "35.50"))
        await service.create_transaction(USER_ID, {
            "account_id": account_id,
            "category_id": SALARY,
            "amount": "1200",
            "type": "INCOME",
            "transaction_date": date(2025, 6, 28),
        })
        await service.update_transaction(USER_ID, rent.value.id, {"amount": "180"})
        await service.update_transaction(USER_ID, food.value.id, {"type": "INCOME"})
        await service.delete_transaction(USER_ID, account_id, rent.value.id)

        active = await service.list_transactions(USER_ID)
        expected = Decimal("500.00") + sum(
            (t.signed_amount for t in active), Decimal("0")
        )
        assert await _balance(service, account_id) == expected
        assert expected == Decimal("1735.50")
