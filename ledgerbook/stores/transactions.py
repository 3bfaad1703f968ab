"""
Transaction Store

Transactions are scoped under their account, so every user-wide read
fans out over the user's accounts (inactive ones included: history of a
closed account stays readable with include_inactive=True).
"""

import asyncio
from typing import Optional

import structlog

from ledgerbook.models import Transaction, TransactionFilters
from ledgerbook.services.storage import (
    CollectionPaths,
    DocumentStore,
    Predicate,
)


logger = structlog.get_logger(__name__)


def matches_filters(transaction: Transaction, filters: TransactionFilters) -> bool:
    """In-process part of the filter evaluation."""
    if not filters.include_inactive and not transaction.is_active:
        return False
    if filters.date_range and not filters.date_range.contains(transaction.transaction_date):
        return False
    if filters.category_ids and transaction.category_id not in filters.category_ids:
        return False
    if filters.account_ids and transaction.account_id not in filters.account_ids:
        return False
    if filters.types and transaction.type not in filters.types:
        return False
    if filters.min_amount is not None and transaction.amount < filters.min_amount:
        return False
    if filters.max_amount is not None and transaction.amount > filters.max_amount:
        return False
    if filters.is_recurring is not None and transaction.is_recurring != filters.is_recurring:
        return False
    return True


class TransactionStore:
    def __init__(self, store: DocumentStore):
        self._store = store

    async def get(
        self,
        user_id: str,
        account_id: str,
        transaction_id: str,
        include_inactive: bool = False,
    ) -> Optional[Transaction]:
        document = await self._store.get(
            CollectionPaths.transaction(user_id, account_id, transaction_id)
        )
        if document is None:
            return None
        transaction = Transaction.from_document(document)
        if not transaction.is_active and not include_inactive:
            return None
        return transaction

    async def _account_ids(self, user_id: str) -> list[str]:
        documents = await self._store.query(CollectionPaths.accounts(user_id))
        return [document["id"] for document in documents]

    async def find(
        self,
        user_id: str,
        transaction_id: str,
        account_id: Optional[str] = None,
        include_inactive: bool = False,
    ) -> Optional[Transaction]:
        """
        Locate a transaction by id.

        With account_id this is a direct read; without it every account
        of the user is searched.
        """
        if account_id is not None:
            return await self.get(user_id, account_id, transaction_id, include_inactive)

        for candidate in await self._account_ids(user_id):
            transaction = await self.get(
                user_id, candidate, transaction_id, include_inactive
            )
            if transaction is not None:
                return transaction
        return None

    async def list_for_account(
        self,
        user_id: str,
        account_id: str,
        include_inactive: bool = False,
    ) -> list[Transaction]:
        predicates = []
        if not include_inactive:
            predicates.append(Predicate("isActive", "==", True))
        documents = await self._store.query(
            CollectionPaths.transactions(user_id, account_id),
            predicates,
        )
        return [Transaction.from_document(document) for document in documents]

    async def list_for_category(self, user_id: str, category_id: str) -> list[Transaction]:
        """Active transactions of one category across all accounts."""
        return await self.list_transactions(
            user_id,
            TransactionFilters(category_ids=[category_id]),
        )

    async def list_transactions(
        self,
        user_id: str,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        """
        List transactions matching the filters, newest first.

        Single-valued filters are pushed down to the store; the rest is
        evaluated in process.
        """
        filters = filters or TransactionFilters()

        predicates = []
        if not filters.include_inactive:
            predicates.append(Predicate("isActive", "==", True))
        if len(filters.category_ids) == 1:
            predicates.append(Predicate("categoryId", "==", filters.category_ids[0]))
        if len(filters.types) == 1:
            predicates.append(Predicate("type", "==", filters.types[0].value))

        account_ids = filters.account_ids or await self._account_ids(user_id)
        results = await asyncio.gather(*(
            self._store.query(CollectionPaths.transactions(user_id, account_id), predicates)
            for account_id in account_ids
        ))

        transactions = [
            Transaction.from_document(document)
            for documents in results
            for document in documents
        ]
        transactions = [t for t in transactions if matches_filters(t, filters)]
        transactions.sort(
            key=lambda t: (t.transaction_date, t.id),
            reverse=True,
        )
        logger.debug(
            "transactions_listed",
            user_id=user_id,
            accounts=len(account_ids),
            count=len(transactions),
        )
        return transactions
