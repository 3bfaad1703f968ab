"""
User Store

The user document holds aggregate counters. They are written with
set(merge=True) so a batch never fails on a user document that was
created outside this service.
"""

from typing import Any, Optional

import structlog
from pydantic.alias_generators import to_camel

from ledgerbook.errors import ResourceNotFoundError
from ledgerbook.models import Category, User, UserInput, UserUpdate, utcnow
from ledgerbook.services.storage import (
    MAX_BATCH_WRITES,
    SERVER_TIMESTAMP,
    CollectionPaths,
    DocumentStore,
    Increment,
    WriteBatch,
)
from ledgerbook.stores.categories import stage_default_categories


logger = structlog.get_logger(__name__)


def stage_user_stats(
    batch: WriteBatch,
    user_id: str,
    transactions: int = 0,
    accounts: int = 0,
    budgets: int = 0,
) -> WriteBatch:
    """Add counter increments on users/{uid}.stats to a batch."""
    stats = {"lastActive": SERVER_TIMESTAMP}
    if transactions:
        stats["totalTransactions"] = Increment(transactions)
    if accounts:
        stats["totalAccounts"] = Increment(accounts)
    if budgets:
        stats["totalBudgets"] = Increment(budgets)
    return batch.set(CollectionPaths.user(user_id), {"stats": stats}, merge=True)


class UserStore:
    def __init__(self, store: DocumentStore):
        self._store = store

    async def get(self, user_id: str) -> Optional[User]:
        document = await self._store.get(CollectionPaths.user(user_id))
        if document is None or "email" not in document:
            return None
        return User.from_document(document)

    async def create_user(
        self,
        user_id: str,
        data: UserInput,
    ) -> tuple[User, list[Category]]:
        """
        Create the user document and the starter categories.

        Both land in one batch: a user never exists without categories.
        """
        batch = self._store.batch()
        user = User(
            id=user_id,
            email=data.email,
            first_name=data.first_name,
            last_name=data.last_name,
            currency=data.currency,
            created_at=utcnow(),
        )
        document = user.to_document(exclude={"id", "created_at", "updated_at"})
        document["createdAt"] = SERVER_TIMESTAMP
        batch.set(CollectionPaths.user(user_id), document, merge=True)
        categories = stage_default_categories(batch, user_id)

        await self._store.commit(batch)
        logger.info(
            "user_created",
            user_id=user_id,
            category_count=len(categories),
        )

        return user, categories

    async def require(self, user_id: str) -> User:
        user = await self.get(user_id)
        if user is None:
            raise ResourceNotFoundError("User", user_id)
        return user

    async def update(self, user_id: str, data: UserUpdate) -> User:
        """Write the profile fields that were set; counters are left alone."""
        user = await self.require(user_id)
        changes = data.changed_fields()
        if not changes:
            return user

        fields: dict[str, Any] = {to_camel(name): value for name, value in changes.items()}
        fields["updatedAt"] = SERVER_TIMESTAMP
        batch = self._store.batch()
        batch.update(CollectionPaths.user(user_id), fields)
        await self._store.commit(batch)

        logger.info("user_updated", user_id=user_id, fields=sorted(changes))
        return user.model_copy(update={**changes, "updated_at": utcnow()})

    async def delete_user(self, user_id: str) -> dict[str, int]:
        """
        Hard-delete the user and everything under it except the audit log.

        Inactive documents go too. Writes are committed in chunks of at most
        MAX_BATCH_WRITES; the user document is deleted in the last chunk,
        so a failed run leaves the user in place and can be repeated.

        Returns:
            Number of deleted documents per collection
        """
        await self.require(user_id)

        paths: list[str] = []
        counts = {"accounts": 0, "transactions": 0, "budgets": 0, "categories": 0}

        for account in await self._store.query(CollectionPaths.accounts(user_id)):
            transactions = await self._store.query(
                CollectionPaths.transactions(user_id, account["id"])
            )
            paths.extend(
                CollectionPaths.transaction(user_id, account["id"], document["id"])
                for document in transactions
            )
            counts["transactions"] += len(transactions)
            paths.append(CollectionPaths.account(user_id, account["id"]))
            counts["accounts"] += 1

        for document in await self._store.query(CollectionPaths.budgets(user_id)):
            paths.append(CollectionPaths.budget(user_id, document["id"]))
            counts["budgets"] += 1

        for document in await self._store.query(CollectionPaths.categories(user_id)):
            paths.append(CollectionPaths.category(user_id, document["id"]))
            counts["categories"] += 1

        paths.append(CollectionPaths.user(user_id))
        for start in range(0, len(paths), MAX_BATCH_WRITES):
            batch = self._store.batch()
            for path in paths[start:start + MAX_BATCH_WRITES]:
                batch.delete(path)
            await self._store.commit(batch)

        logger.warning("user_deleted", user_id=user_id, **counts)
        return counts
