"""
Ledger Engine

Creates, updates and deletes transactions. Each mutation is one atomic
batch holding the transaction document and every counter it moves:

- account:  balance, stats.pendingTransactions,
            stats.monthlyTransactionCount[YYYY-MM], stats.lastSync
- category: stats.monthlySpending[YYYY-MM], stats.lastCalculated
- user:     stats.totalTransactions

The month key is the transaction's own calendar month, so a delete
reverses exactly the bucket the create incremented.

CRITICAL: Validation, not-found and funds errors are raised before the
batch is built. Budget reconciliation runs after the commit and can only
produce ConsistencyFailures on the result.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from ledgerbook.config import LedgerSettings, get_settings
from ledgerbook.errors import (
    InsufficientFundsError,
    LedgerValidationError,
    ResourceNotFoundError,
    validation_error_from_pydantic,
)
from ledgerbook.ledger.reconciler import BudgetReconciler
from ledgerbook.models import (
    Account,
    Category,
    LedgerResult,
    ReconciliationReport,
    Transaction,
    TransactionInput,
    TransactionType,
    TransactionUpdate,
    ValidationIssue,
)
from ledgerbook.services.storage import (
    MAX_BATCH_WRITES,
    SERVER_TIMESTAMP,
    CollectionPaths,
    DocumentStore,
    Increment,
    WriteBatch,
    soft_delete_fields,
)
from ledgerbook.services.storage.interface import FieldKey
from ledgerbook.stores import (
    AccountStore,
    CategoryStore,
    TransactionStore,
    stage_user_stats,
)
from ledgerbook.validation import TransactionValidator


logger = structlog.get_logger(__name__)

# Fields whose change moves money between balances
BALANCE_FIELDS = {"account_id", "amount", "type"}

# Headroom for category, user and account writes next to a chunk of transactions
CASCADE_CHUNK_SIZE = MAX_BATCH_WRITES - 100

_TRANSACTION_EXCLUDE = {"id", "created_at", "updated_at", "deleted_at"}

ModelT = TypeVar("ModelT", Account, Category)


class CounterEffects:
    """
    Net counter changes of one batch, one update per document.

    Reversal and reapplication on the same document collapse into a
    single write, and increments that cancel out are dropped.
    """

    def __init__(self):
        self._increments: dict[str, dict[FieldKey, Any]] = defaultdict(dict)
        self._touched: dict[str, set[FieldKey]] = defaultdict(set)
        self._values: dict[str, dict[FieldKey, Any]] = defaultdict(dict)

    def add(self, path: str, field: FieldKey, amount: Union[int, Decimal]) -> None:
        fields = self._increments[path]
        fields[field] = fields.get(field, 0) + amount

    def touch(self, path: str, field: FieldKey) -> None:
        self._touched[path].add(field)

    def set(self, path: str, field: FieldKey, value: Any) -> None:
        """Plain field write merged into the same update."""
        self._values[path][field] = value

    def apply_transaction(self, transaction: Transaction, sign: int) -> None:
        """Add (sign=1) or reverse (sign=-1) a transaction's effect."""
        account_path = CollectionPaths.account(transaction.user_id, transaction.account_id)
        category_path = CollectionPaths.category(transaction.user_id, transaction.category_id)
        month = transaction.month_key

        self.add(account_path, "balance", sign * transaction.signed_amount)
        self.add(account_path, ("stats", "pendingTransactions"), sign)
        self.add(account_path, ("stats", "monthlyTransactionCount", month), sign)
        self.touch(account_path, ("stats", "lastSync"))

        self.add(category_path, ("stats", "monthlySpending", month), sign * transaction.amount)
        self.touch(category_path, ("stats", "lastCalculated"))

    def apply_category_spending(self, transaction: Transaction, sign: int) -> None:
        """Only the category side of a transaction's effect."""
        category_path = CollectionPaths.category(transaction.user_id, transaction.category_id)
        self.add(
            category_path,
            ("stats", "monthlySpending", transaction.month_key),
            sign * transaction.amount,
        )
        self.touch(category_path, ("stats", "lastCalculated"))

    def stage(self, batch: WriteBatch) -> WriteBatch:
        for path in sorted(set(self._increments) | set(self._touched) | set(self._values)):
            update: dict[FieldKey, Any] = {
                field: Increment(amount)
                for field, amount in self._increments.get(path, {}).items()
                if amount != 0
            }
            for field in self._touched.get(path, set()):
                update[field] = SERVER_TIMESTAMP
            update.update(self._values.get(path, {}))
            if update:
                batch.update(path, update)
        return batch


def _transaction_document(
    transaction: Transaction,
    created_at: Any = SERVER_TIMESTAMP,
) -> dict[str, Any]:
    document = transaction.to_document(exclude=_TRANSACTION_EXCLUDE)
    document["createdAt"] = created_at
    return document


def _soft_deleted(model: ModelT) -> ModelT:
    return model.model_copy(
        update={"is_active": False, "deleted_at": datetime.now(timezone.utc)}
    )


class LedgerEngine:
    """
    The only writer of account balances and ledger counters.

    Usage:
        engine = LedgerEngine(store, accounts, categories, transactions, reconciler)
        result = await engine.create_transaction(user_id, data)
    """

    def __init__(
        self,
        store: DocumentStore,
        accounts: AccountStore,
        categories: CategoryStore,
        transactions: TransactionStore,
        reconciler: BudgetReconciler,
        validator: Optional[TransactionValidator] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._accounts = accounts
        self._categories = categories
        self._transactions = transactions
        self._reconciler = reconciler
        self._settings = settings or get_settings().ledger
        self._validator = validator or TransactionValidator(self._settings)

    @staticmethod
    def check_funds(
        account: Account,
        transaction_type: TransactionType,
        amount: Decimal,
        available: Decimal,
    ) -> None:
        """
        Expenses on non-credit accounts cannot exceed the available balance.

        Credit cards may go further negative and income only adds money.
        """
        if (
            transaction_type == TransactionType.EXPENSE
            and not account.is_credit
            and amount > available
        ):
            raise InsufficientFundsError(account.id, available, amount)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_transaction(
        self,
        user_id: str,
        data: Union[TransactionInput, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> LedgerResult[Transaction]:
        transaction_input = self._validator.parse(data)
        account = await self._accounts.require(user_id, transaction_input.account_id)
        category = await self._categories.require(user_id, transaction_input.category_id)
        validation = self._validator.ensure_valid(transaction_input, account, category)
        self.check_funds(
            account,
            transaction_input.type,
            transaction_input.amount,
            account.balance,
        )

        transaction = Transaction(
            id=self._store.new_id(),
            user_id=user_id,
            account_name=account.name,
            category_name=category.name,
            created_at=datetime.now(timezone.utc),
            **transaction_input.model_dump(),
        )

        batch = self._store.batch()
        batch.set(
            CollectionPaths.transaction(user_id, account.id, transaction.id),
            _transaction_document(transaction),
        )
        effects = CounterEffects()
        effects.apply_transaction(transaction, sign=1)
        effects.stage(batch)
        stage_user_stats(batch, user_id, transactions=1)
        await self._store.commit(batch)

        logger.info(
            "transaction_created",
            user_id=user_id,
            transaction_id=transaction.id,
            account_id=account.id,
            category_id=category.id,
            amount=str(transaction.amount),
            type=transaction.type.value,
        )

        report = await self._reconciler.reconcile_changes(
            user_id,
            {category.id: transaction.amount},
            correlation_id,
        )
        return LedgerResult[Transaction](
            value=transaction,
            correlation_id=correlation_id,
            consistency_failures=report.failures,
            warnings=validation.warnings,
        )

    # =========================================================================
    # UPDATE
    # =========================================================================

    def parse_update(
        self,
        updates: Union[TransactionUpdate, dict[str, Any]],
    ) -> TransactionUpdate:
        if isinstance(updates, TransactionUpdate):
            return updates
        try:
            return TransactionUpdate.model_validate(updates)
        except ValidationError as e:
            raise validation_error_from_pydantic(e, "Transaction update is invalid")

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        updates: Union[TransactionUpdate, dict[str, Any]],
        account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerResult[Transaction]:
        """
        Apply a partial update.

        The original effect is reversed on the original account and the
        new effect applied on the new account in the same batch as the
        document write. Moving to another account relocates the document
        (same id) because transactions are stored under their account.
        """
        changes = self.parse_update(updates).changed_fields()

        current = await self._transactions.find(user_id, transaction_id, account_id)
        if current is None:
            raise ResourceNotFoundError("Transaction", transaction_id)
        if not changes:
            return LedgerResult[Transaction](value=current, correlation_id=correlation_id)

        merged = {
            **current.model_dump(include=set(TransactionInput.model_fields)),
            **changes,
        }
        if not merged.get("is_recurring"):
            merged["recurring_pattern"] = None
        merged_input = self._validator.parse(merged)

        old_account = await self._accounts.require(user_id, current.account_id)
        if merged_input.account_id == current.account_id:
            new_account = old_account
        else:
            new_account = await self._accounts.require(user_id, merged_input.account_id)

        if merged_input.category_id == current.category_id:
            new_category = await self._categories.get(
                user_id, current.category_id, include_inactive=True
            )
            if new_category is None:
                raise ResourceNotFoundError("Category", current.category_id)
        else:
            new_category = await self._categories.require(user_id, merged_input.category_id)

        validation = self._validator.ensure_valid(merged_input, new_account, new_category)

        balance_moved = any(
            getattr(merged_input, name) != getattr(current, name)
            for name in BALANCE_FIELDS
        )
        if balance_moved and self._settings.check_funds_on_update:
            available = new_account.balance
            if new_account.id == current.account_id:
                available -= current.signed_amount
            self.check_funds(new_account, merged_input.type, merged_input.amount, available)

        updated = Transaction(
            id=current.id,
            user_id=user_id,
            account_name=new_account.name,
            category_name=new_category.name,
            created_at=current.created_at,
            updated_at=datetime.now(timezone.utc),
            **merged_input.model_dump(),
        )

        batch = self._store.batch()
        old_path = CollectionPaths.transaction(user_id, current.account_id, current.id)
        new_path = CollectionPaths.transaction(user_id, updated.account_id, updated.id)
        if new_path != old_path:
            batch.delete(old_path)
        document = _transaction_document(
            updated,
            created_at=current.created_at or SERVER_TIMESTAMP,
        )
        document["updatedAt"] = SERVER_TIMESTAMP
        batch.set(new_path, document)

        effects = CounterEffects()
        effects.apply_transaction(current, sign=-1)
        effects.apply_transaction(updated, sign=1)
        effects.stage(batch)
        await self._store.commit(batch)

        changed_fields = sorted(
            name for name in changes
            if getattr(current, name) != getattr(updated, name)
        )
        logger.info(
            "transaction_updated",
            user_id=user_id,
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            relocated=new_path != old_path,
        )

        deltas: dict[str, Decimal] = defaultdict(Decimal)
        deltas[current.category_id] -= current.amount
        deltas[updated.category_id] += updated.amount
        report = await self._reconciler.reconcile_changes(user_id, dict(deltas), correlation_id)

        return LedgerResult[Transaction](
            value=updated,
            correlation_id=correlation_id,
            consistency_failures=report.failures,
            warnings=validation.warnings,
        )

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_transaction(
        self,
        user_id: str,
        account_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerResult[Transaction]:
        """
        Soft-delete a transaction and reverse exactly what create applied.

        The value of the result is the transaction as it was before the
        delete.
        """
        current = await self._transactions.get(user_id, account_id, transaction_id)
        if current is None:
            raise ResourceNotFoundError("Transaction", transaction_id)

        batch = self._store.batch()
        batch.update(
            CollectionPaths.transaction(user_id, account_id, transaction_id),
            soft_delete_fields(),
        )
        effects = CounterEffects()
        effects.apply_transaction(current, sign=-1)
        effects.stage(batch)
        stage_user_stats(batch, user_id, transactions=-1)
        await self._store.commit(batch)

        logger.info(
            "transaction_deleted",
            user_id=user_id,
            transaction_id=transaction_id,
            account_id=account_id,
            amount=str(current.amount),
        )

        report = await self._reconciler.reconcile_changes(
            user_id,
            {current.category_id: -current.amount},
            correlation_id,
        )
        return LedgerResult[Transaction](
            value=current,
            correlation_id=correlation_id,
            consistency_failures=report.failures,
        )

    # =========================================================================
    # CASCADES
    # =========================================================================

    async def _commit_in_chunks(
        self,
        transactions: list[Transaction],
        stage: Callable[[WriteBatch, CounterEffects, list[Transaction], bool], None],
    ) -> None:
        """
        Commit a cascade over many transactions.

        Each chunk is atomic on its own. The parent document changes with
        the last chunk (is_final=True), once every child has been written.
        """
        chunks = [
            transactions[start:start + CASCADE_CHUNK_SIZE]
            for start in range(0, len(transactions), CASCADE_CHUNK_SIZE)
        ] or [[]]

        for index, chunk in enumerate(chunks):
            batch = self._store.batch()
            effects = CounterEffects()
            stage(batch, effects, chunk, index == len(chunks) - 1)
            effects.stage(batch)
            await self._store.commit(batch)

    async def _recompute_categories(
        self,
        user_id: str,
        category_ids: set[str],
        correlation_id: Optional[UUID],
    ) -> ReconciliationReport:
        report = ReconciliationReport(user_id=user_id, strategy="recompute")
        for category_id in sorted(category_ids):
            partial = await self._reconciler.reconcile_budgets_for_category(
                user_id, category_id, correlation_id
            )
            report = report.merge(partial)
        return report

    async def delete_account(
        self,
        user_id: str,
        account_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerResult[Account]:
        """
        Soft-delete an account and every active transaction under it.

        Category aggregates and user counters drop those transactions;
        budgets of the affected categories are recomputed afterwards.
        """
        account = await self._accounts.require(user_id, account_id)
        transactions = await self._transactions.list_for_account(user_id, account_id)

        def stage(
            batch: WriteBatch,
            effects: CounterEffects,
            chunk: list[Transaction],
            is_final: bool,
        ) -> None:
            for transaction in chunk:
                batch.update(
                    CollectionPaths.transaction(user_id, account_id, transaction.id),
                    soft_delete_fields(),
                )
                effects.apply_category_spending(transaction, sign=-1)
            if is_final:
                self._accounts.stage_soft_delete(batch, account)
            stage_user_stats(
                batch,
                user_id,
                transactions=-len(chunk),
                accounts=-1 if is_final else 0,
            )

        await self._commit_in_chunks(transactions, stage)
        logger.info(
            "account_deleted",
            user_id=user_id,
            account_id=account_id,
            cascaded_transactions=len(transactions),
        )

        report = await self._recompute_categories(
            user_id,
            {transaction.category_id for transaction in transactions},
            correlation_id,
        )
        return LedgerResult[Account](
            value=_soft_deleted(account),
            correlation_id=correlation_id,
            consistency_failures=report.failures,
        )

    async def delete_category(
        self,
        user_id: str,
        category_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerResult[Category]:
        """
        Soft-delete a custom category.

        Its active transactions move to the default fallback category of
        the same type ("Other Expenses" / "Other Income"), taking their
        monthly spending with them.
        """
        category = await self._categories.require(user_id, category_id)
        self._categories.ensure_deletable(category)

        fallback = await self._categories.find_fallback(user_id, category.type)
        if fallback is None:
            raise LedgerValidationError(
                "No default category found for transaction reassignment",
                [ValidationIssue(
                    field="category_id",
                    issue_type="missing_fallback",
                    message=f"No active default {category.type.value} category",
                    severity="error",
                )],
            )

        transactions = await self._transactions.list_for_category(user_id, category_id)
        category_path = CollectionPaths.category(user_id, category_id)

        def stage(
            batch: WriteBatch,
            effects: CounterEffects,
            chunk: list[Transaction],
            is_final: bool,
        ) -> None:
            for transaction in chunk:
                batch.update(
                    CollectionPaths.transaction(user_id, transaction.account_id, transaction.id),
                    {
                        "categoryId": fallback.id,
                        "categoryName": fallback.name,
                        "updatedAt": SERVER_TIMESTAMP,
                    },
                )
                effects.apply_category_spending(transaction, sign=-1)
                effects.apply_category_spending(
                    transaction.model_copy(update={"category_id": fallback.id}),
                    sign=1,
                )
            if is_final:
                for field, value in soft_delete_fields().items():
                    effects.set(category_path, field, value)

        await self._commit_in_chunks(transactions, stage)
        logger.info(
            "category_deleted",
            user_id=user_id,
            category_id=category_id,
            reassigned_to=fallback.id,
            reassigned_transactions=len(transactions),
        )

        report = ReconciliationReport(user_id=user_id, strategy="recompute")
        if transactions:
            report = await self._recompute_categories(
                user_id, {category_id, fallback.id}, correlation_id
            )
        return LedgerResult[Category](
            value=_soft_deleted(category),
            correlation_id=correlation_id,
            consistency_failures=report.failures,
        )
