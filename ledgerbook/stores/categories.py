"""
Category Store

Category metadata and the monthly spending aggregate. Every new user
gets the starter set below; default categories can be restyled but not
renamed or deleted.
"""

import re
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from ledgerbook.errors import (
    LedgerValidationError,
    ResourceNotFoundError,
    validation_error_from_pydantic,
)
from ledgerbook.models import (
    Category,
    CategoryInput,
    CategoryType,
    ValidationIssue,
    utcnow,
)
from ledgerbook.services.storage import (
    SERVER_TIMESTAMP,
    CollectionPaths,
    DocumentStore,
    Predicate,
    WriteBatch,
)


logger = structlog.get_logger(__name__)


# (name, icon, color)
DEFAULT_EXPENSE_CATEGORIES = [
    ("Housing", "home", "#4A5568"),
    ("Transportation", "car", "#3182CE"),
    ("Food & Dining", "utensils", "#48BB78"),
    ("Shopping", "shopping-bag", "#ED64A6"),
    ("Entertainment", "film", "#9F7AEA"),
    ("Healthcare", "heart", "#F56565"),
    ("Education", "book", "#ECC94B"),
    ("Personal Care", "smile", "#B794F4"),
    ("Bills & Utilities", "file-text", "#4299E1"),
    ("Insurance", "shield", "#48BB78"),
    ("Other Expenses", "more-horizontal", "#718096"),
    ("Subscription", "credit-card", "#E53E3E"),
]

DEFAULT_INCOME_CATEGORIES = [
    ("Salary", "dollar-sign", "#38A169"),
    ("Investments", "trending-up", "#2B6CB0"),
    ("Freelance", "briefcase", "#805AD5"),
    ("Gifts", "gift", "#D53F8C"),
    ("Other Income", "plus-circle", "#718096"),
]

# Where transactions of a deleted category are moved
FALLBACK_CATEGORY_NAMES = {
    CategoryType.EXPENSE: "Other Expenses",
    CategoryType.INCOME: "Other Income",
}

EDITABLE_FIELDS = {"name", "icon", "color"}

# Fields a default category may still change
DEFAULT_MUTABLE_FIELDS = {"icon", "color"}


def default_category_id(category_type: CategoryType, name: str) -> str:
    """'EXPENSE', 'Food & Dining' -> 'EXPENSE_food_&_dining'."""
    slug = re.sub(r"\s+", "_", name).lower()
    return f"{category_type.value}_{slug}"


def default_categories(user_id: str) -> list[Category]:
    categories = []
    for category_type, entries in (
        (CategoryType.EXPENSE, DEFAULT_EXPENSE_CATEGORIES),
        (CategoryType.INCOME, DEFAULT_INCOME_CATEGORIES),
    ):
        for name, icon, color in entries:
            categories.append(Category(
                id=default_category_id(category_type, name),
                user_id=user_id,
                name=name,
                type=category_type,
                icon=icon,
                color=color,
                is_default=True,
            ))
    return categories


def _category_document(category: Category) -> dict[str, Any]:
    document = category.to_document(exclude={"id", "created_at", "updated_at", "deleted_at"})
    document["createdAt"] = SERVER_TIMESTAMP
    return document


def stage_default_categories(batch: WriteBatch, user_id: str) -> list[Category]:
    """Add the starter categories to a batch and return them."""
    categories = default_categories(user_id)
    for category in categories:
        batch.set(
            CollectionPaths.category(user_id, category.id),
            _category_document(category),
        )
    return categories


class CategoryStore:
    def __init__(self, store: DocumentStore):
        self._store = store

    async def get(
        self,
        user_id: str,
        category_id: str,
        include_inactive: bool = False,
    ) -> Optional[Category]:
        document = await self._store.get(CollectionPaths.category(user_id, category_id))
        if document is None:
            return None
        category = Category.from_document(document)
        if not category.is_active and not include_inactive:
            return None
        return category

    async def require(self, user_id: str, category_id: str) -> Category:
        """Active category or ResourceNotFoundError."""
        category = await self.get(user_id, category_id)
        if category is None:
            raise ResourceNotFoundError("Category", category_id)
        return category

    async def list_categories(
        self,
        user_id: str,
        category_type: Optional[CategoryType] = None,
        include_inactive: bool = False,
    ) -> list[Category]:
        predicates = []
        if not include_inactive:
            predicates.append(Predicate("isActive", "==", True))
        if category_type is not None:
            predicates.append(Predicate("type", "==", category_type.value))

        documents = await self._store.query(
            CollectionPaths.categories(user_id),
            predicates,
            order_by="name",
        )
        return [Category.from_document(document) for document in documents]

    async def find_fallback(
        self,
        user_id: str,
        category_type: CategoryType,
    ) -> Optional[Category]:
        """The active default category that absorbs a deleted one."""
        fallback = await self.get(
            user_id,
            default_category_id(category_type, FALLBACK_CATEGORY_NAMES[category_type]),
        )
        if fallback is not None:
            return fallback

        for category in await self.list_categories(user_id, category_type):
            if category.is_default:
                return category
        return None

    async def _ensure_unique_name(
        self,
        user_id: str,
        name: str,
        exclude_id: Optional[str] = None,
    ) -> None:
        documents = await self._store.query(
            CollectionPaths.categories(user_id),
            [
                Predicate("name", "==", name),
                Predicate("isActive", "==", True),
            ],
        )
        if any(document["id"] != exclude_id for document in documents):
            raise LedgerValidationError(
                f'Category with name "{name}" already exists',
                [ValidationIssue(
                    field="name",
                    issue_type="duplicate",
                    message=f'Category with name "{name}" already exists',
                    severity="error",
                    suggested_fix="Choose a different name",
                )],
            )

    async def create(self, user_id: str, data: CategoryInput) -> Category:
        await self._ensure_unique_name(user_id, data.name)

        category = Category(
            id=self._store.new_id(),
            user_id=user_id,
            created_at=utcnow(),
            **data.model_dump(),
        )
        batch = self._store.batch().set(
            CollectionPaths.category(user_id, category.id),
            _category_document(category),
        )
        await self._store.commit(batch)
        logger.info("category_created", user_id=user_id, category_id=category.id)

        return category

    async def update(
        self,
        user_id: str,
        category_id: str,
        changes: dict[str, Any],
    ) -> Category:
        """
        Partial update.

        Accepts name, icon and color (attribute names). Default
        categories accept icon and color only.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise LedgerValidationError(
                f"Unknown category fields: {', '.join(sorted(unknown))}"
            )

        category = await self.require(user_id, category_id)

        if category.is_default:
            blocked = set(changes) - DEFAULT_MUTABLE_FIELDS
            if blocked:
                raise LedgerValidationError(
                    f"Default category fields cannot be changed: {', '.join(sorted(blocked))}",
                    [ValidationIssue(
                        field=name,
                        issue_type="immutable",
                        message="Default categories can only change icon and color",
                        severity="error",
                    ) for name in sorted(blocked)],
                )

        if "name" in changes and changes["name"] != category.name:
            await self._ensure_unique_name(user_id, changes["name"], exclude_id=category_id)

        # Re-validate the merged category before writing
        try:
            merged = CategoryInput.model_validate({
                **category.model_dump(include={"name", "type", "icon", "color", "is_default"}),
                **changes,
            })
        except ValidationError as e:
            raise validation_error_from_pydantic(e, "Invalid category update")
        update = {to_camel(name): getattr(merged, name) for name in changes}
        update["updatedAt"] = SERVER_TIMESTAMP

        batch = self._store.batch().update(
            CollectionPaths.category(user_id, category_id),
            update,
        )
        await self._store.commit(batch)
        return category.model_copy(update={
            **{name: getattr(merged, name) for name in changes},
            "updated_at": utcnow(),
        })

    @staticmethod
    def ensure_deletable(category: Category) -> None:
        if category.is_default:
            raise LedgerValidationError(
                "Cannot delete default category",
                [ValidationIssue(
                    field="category_id",
                    issue_type="immutable",
                    message=f"{category.name} is a default category",
                    severity="error",
                )],
            )
