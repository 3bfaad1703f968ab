"""
Account Store

Account documents and their usage statistics. The balance and the stats
counters move through the ledger engine; the only direct balance write
here is the explicit user override in update().
"""

from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from ledgerbook.errors import (
    LedgerValidationError,
    ResourceNotFoundError,
    validation_error_from_pydantic,
)
from ledgerbook.models import Account, AccountInput, AccountType, utcnow
from ledgerbook.services.storage import (
    SERVER_TIMESTAMP,
    CollectionPaths,
    DocumentStore,
    Predicate,
    WriteBatch,
    soft_delete_fields,
)
from ledgerbook.stores.users import stage_user_stats


logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = {"name", "bank_name", "balance", "currency"}


class AccountStore:
    def __init__(self, store: DocumentStore):
        self._store = store

    async def get(
        self,
        user_id: str,
        account_id: str,
        include_inactive: bool = False,
    ) -> Optional[Account]:
        document = await self._store.get(CollectionPaths.account(user_id, account_id))
        if document is None:
            return None
        account = Account.from_document(document)
        if not account.is_active and not include_inactive:
            return None
        return account

    async def require(self, user_id: str, account_id: str) -> Account:
        """Active account or ResourceNotFoundError."""
        account = await self.get(user_id, account_id)
        if account is None:
            raise ResourceNotFoundError("Account", account_id)
        return account

    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
        include_inactive: bool = False,
    ) -> list[Account]:
        predicates = []
        if not include_inactive:
            predicates.append(Predicate("isActive", "==", True))
        if account_type is not None:
            predicates.append(Predicate("accountType", "==", account_type.value))

        documents = await self._store.query(CollectionPaths.accounts(user_id), predicates)
        accounts = [Account.from_document(document) for document in documents]
        accounts.sort(key=lambda account: account.name.lower())
        return accounts

    async def create(self, user_id: str, data: AccountInput) -> Account:
        """Create the account and bump the user's account counter in one batch."""
        account = Account(
            id=self._store.new_id(),
            user_id=user_id,
            created_at=utcnow(),
            **data.model_dump(),
        )
        document = account.to_document(
            exclude={"id", "created_at", "updated_at", "deleted_at"}
        )
        document["createdAt"] = SERVER_TIMESTAMP

        batch = self._store.batch().set(
            CollectionPaths.account(user_id, account.id),
            document,
        )
        stage_user_stats(batch, user_id, accounts=1)
        await self._store.commit(batch)

        logger.info(
            "account_created",
            user_id=user_id,
            account_id=account.id,
            account_type=account.account_type.value,
        )
        return account

    async def update(
        self,
        user_id: str,
        account_id: str,
        changes: dict[str, Any],
    ) -> Account:
        """
        Partial update of name, bank_name, currency or balance.

        A balance given here overrides the ledger-derived value; it is
        the user's correction and is logged as such.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise LedgerValidationError(
                f"Unknown account fields: {', '.join(sorted(unknown))}"
            )

        account = await self.require(user_id, account_id)
        try:
            merged = AccountInput.model_validate({
                **account.model_dump(include={"name", "account_type", "bank_name", "currency"}),
                "balance": Decimal("0") if account.is_credit else account.balance,
                **changes,
            })
        except ValidationError as e:
            raise validation_error_from_pydantic(e, "Invalid account update")
        update = {to_camel(name): getattr(merged, name) for name in changes}
        update["updatedAt"] = SERVER_TIMESTAMP

        batch = self._store.batch().update(
            CollectionPaths.account(user_id, account_id),
            update,
        )
        await self._store.commit(batch)

        if "balance" in changes:
            logger.warning(
                "account_balance_overridden",
                user_id=user_id,
                account_id=account_id,
                previous=str(account.balance),
                balance=str(merged.balance),
            )
        return account.model_copy(update={
            **{name: getattr(merged, name) for name in changes},
            "updated_at": utcnow(),
        })

    def stage_soft_delete(self, batch: WriteBatch, account: Account) -> WriteBatch:
        return batch.update(
            CollectionPaths.account(account.user_id, account.id),
            soft_delete_fields(),
        )
