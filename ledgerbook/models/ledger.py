"""
Core Data Models for Ledgerbook

These models define the strict schemas for accounts, categories,
transactions and users. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Round-trip through the document store (camelCase documents,
   snake_case attributes)
4. Support the audit trail

DESIGN DECISION: Money is Decimal everywhere inside the process.
Adapters that cannot store Decimal convert at their own boundary.
"""

import re
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def month_key(day: date) -> str:
    """Bucket key used by the monthly aggregates (YYYY-MM)."""
    return day.strftime("%Y-%m")


def money_from_store(value: Any) -> Any:
    """
    Snap a stored double back to cents.

    Stores without a decimal type sum increments in binary floating
    point, so 300.00 can come back as 299.99999999999994. Every stored
    amount is a whole number of cents.
    """
    if isinstance(value, float):
        return Decimal(str(round(value, 2)))
    return value


# Money as read from a stored document
Money = Annotated[Decimal, BeforeValidator(money_from_store)]


def encode_document(value: Any) -> Any:
    """
    Convert a model dump into document-store values.

    Enums become their values and calendar dates become ISO strings.
    Decimals and datetimes are left for the store adapter.
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: encode_document(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_document(item) for item in value]
    return value


class DocumentModel(BaseModel):
    """Base for every model persisted as a document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_document(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        """Serialize with camelCase keys, ready for a batch write."""
        return encode_document(self.model_dump(by_alias=True, exclude=exclude))

    @classmethod
    def from_document(cls, document: dict[str, Any]):
        return cls.model_validate(document)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """
    Supported account types.

    CREDIT_CARD accounts carry a non-positive balance and are exempt
    from the funds check.
    """
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT_CARD = "CREDIT_CARD"
    CASH = "CASH"
    INVESTMENT = "INVESTMENT"


class TransactionType(str, Enum):
    """Direction of a transaction against its account."""
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class CategoryType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _normalize_currency(v: str) -> str:
    v = v.upper()
    if not _CURRENCY_RE.match(v):
        raise ValueError(f"Invalid currency code: {v}")
    return v


def _normalize_email(v: str) -> str:
    if not _EMAIL_RE.match(v):
        raise ValueError(f"Invalid email address: {v}")
    return v.lower()


# =============================================================================
# ACCOUNT MODELS
# =============================================================================

class AccountStats(DocumentModel):
    """Lightweight usage statistics maintained by the ledger."""

    pending_transactions: int = 0
    monthly_transaction_count: dict[str, int] = Field(default_factory=dict)
    last_sync: Optional[datetime] = None


class AccountInput(DocumentModel):
    """
    User-supplied fields for a new account.

    The initial balance is the only balance a user sets at creation;
    afterwards it moves through the ledger or an explicit override.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name of the account"
    )
    account_type: AccountType
    bank_name: Optional[str] = Field(
        default=None,
        max_length=100
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Initial balance"
    )
    currency: str = Field(
        default="USD",
        description="ISO 4217 currency code"
    )

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)

    @model_validator(mode='after')
    def validate_credit_balance(self) -> 'AccountInput':
        """Credit cards start at zero or owing money, never in credit."""
        if self.account_type == AccountType.CREDIT_CARD and self.balance > 0:
            raise ValueError("Credit card accounts must start with a non-positive balance")
        return self


class Account(DocumentModel):
    """An account document: users/{uid}/accounts/{id}."""

    id: str
    user_id: str
    name: str
    account_type: AccountType
    bank_name: Optional[str] = None
    balance: Money = Decimal("0")
    currency: str = "USD"
    stats: AccountStats = Field(default_factory=AccountStats)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_credit(self) -> bool:
        return self.account_type == AccountType.CREDIT_CARD


# =============================================================================
# CATEGORY MODELS
# =============================================================================

class CategoryStats(DocumentModel):
    monthly_spending: dict[str, Money] = Field(default_factory=dict)
    last_calculated: Optional[datetime] = None


class CategoryInput(DocumentModel):
    """User-supplied fields for a new category."""

    name: str = Field(..., min_length=1, max_length=50)
    type: CategoryType
    icon: str = Field(default="", max_length=50)
    color: str = Field(default="#718096", pattern=r"^#[0-9A-Fa-f]{6}$")
    is_default: bool = False


class Category(DocumentModel):
    """A category document: users/{uid}/categories/{id}."""

    id: str
    user_id: str
    name: str
    type: CategoryType
    icon: str = ""
    color: str = "#718096"
    is_default: bool = False
    is_active: bool = True
    stats: CategoryStats = Field(default_factory=CategoryStats)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


# =============================================================================
# TRANSACTION MODELS
# =============================================================================

class TransactionInput(DocumentModel):
    """
    Fields a caller supplies to create a transaction.

    The ledger fills in identity, denormalized names and lifecycle fields.
    """

    account_id: str = Field(..., min_length=1)
    category_id: str = Field(..., min_length=1)
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Non-negative amount; direction comes from type"
    )
    type: TransactionType
    description: str = Field(default="", max_length=500)
    transaction_date: date
    is_recurring: bool = False
    recurring_pattern: Optional[str] = Field(default=None, max_length=100)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_recurrence(self) -> 'TransactionInput':
        if self.recurring_pattern and not self.is_recurring:
            raise ValueError("Recurring pattern given for a non-recurring transaction")
        return self


class TransactionUpdate(DocumentModel):
    """
    Partial update of a transaction.

    Only fields explicitly set by the caller are applied
    (see changed_fields()).
    """

    account_id: Optional[str] = Field(default=None, min_length=1)
    category_id: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[Decimal] = Field(default=None, ge=0)
    type: Optional[TransactionType] = None
    description: Optional[str] = Field(default=None, max_length=500)
    transaction_date: Optional[date] = None
    is_recurring: Optional[bool] = None
    recurring_pattern: Optional[str] = Field(default=None, max_length=100)
    metadata: Optional[dict[str, Any]] = None

    def changed_fields(self) -> dict[str, Any]:
        """Explicitly set, non-null fields keyed by attribute name."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }


class Transaction(DocumentModel):
    """
    A transaction document:
    users/{uid}/accounts/{account_id}/transactions/{id}.

    account_name and category_name are copies taken at the last write.
    They go stale when the parent is renamed and are not re-joined on read.
    """

    id: str
    user_id: str
    account_id: str
    category_id: str
    account_name: str = ""
    category_name: str = ""
    amount: Money = Field(..., ge=0)
    type: TransactionType
    description: str = ""
    transaction_date: date
    is_recurring: bool = False
    recurring_pattern: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def signed_amount(self) -> Decimal:
        """Effect on the account balance."""
        return self.amount if self.type == TransactionType.INCOME else -self.amount

    @property
    def month_key(self) -> str:
        return month_key(self.transaction_date)


class DateRange(BaseModel):
    """Inclusive date range."""

    start_date: date
    end_date: date

    @model_validator(mode='after')
    def validate_order(self) -> 'DateRange':
        if self.end_date < self.start_date:
            raise ValueError("Date range end cannot be before start")
        return self

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class TransactionFilters(BaseModel):
    """Query filters understood by the transaction store."""

    date_range: Optional[DateRange] = None
    category_ids: list[str] = Field(default_factory=list)
    account_ids: list[str] = Field(default_factory=list)
    types: list[TransactionType] = Field(default_factory=list)
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    is_recurring: Optional[bool] = None
    include_inactive: bool = False


# =============================================================================
# USER MODELS
# =============================================================================

class UserStats(DocumentModel):
    total_transactions: int = 0
    total_accounts: int = 0
    total_budgets: int = 0
    last_active: Optional[datetime] = None


class UserInput(DocumentModel):
    email: str
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(default="", max_length=100)
    currency: str = "USD"

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)


class UserUpdate(DocumentModel):
    """Partial profile update. Counters are not user-editable."""

    email: Optional[str] = None
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    currency: Optional[str] = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _normalize_email(v)

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _normalize_currency(v)

    def changed_fields(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }


class User(DocumentModel):
    """A user document: users/{id}."""

    id: str
    email: str
    first_name: str
    last_name: str = ""
    currency: str = "USD"
    stats: UserStats = Field(default_factory=UserStats)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'type_mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, required fields)
    Stage 2: Semantic validation (checks against stored documents)
    """

    validated_at: datetime = Field(
        default_factory=utcnow
    )

    schema_valid: bool = Field(
        ...,
        description="Did schema validation pass?"
    )
    semantic_valid: bool = Field(
        ...,
        description="Did semantic validation pass?"
    )

    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
