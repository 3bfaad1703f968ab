"""
Ledger error taxonomy.

Validation, not-found and funds errors are raised before anything is
written. Consistency failures happen after the ledger batch committed,
so they are reported on the result instead of raised (see
ledgerbook.models.results.ConsistencyFailure).
"""

import re
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_snake

from ledgerbook.models.ledger import ValidationIssue


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    CONSISTENCY_FAILURE = "CONSISTENCY_FAILURE"
    INTERNAL = "INTERNAL"


class LedgerError(Exception):
    """Base exception for ledger operations."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class LedgerValidationError(LedgerError):
    """Input failed schema or semantic validation."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []


class ResourceNotFoundError(LedgerError):
    """Referenced document is missing or soft-deleted."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id


class InsufficientFundsError(LedgerError):
    """Expense larger than the balance of a non-credit account."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, account_id: str, balance: Decimal, amount: Decimal):
        super().__init__(
            f"Insufficient funds in account {account_id}: "
            f"balance {balance}, requested {amount}"
        )
        self.account_id = account_id
        self.balance = balance
        self.amount = amount


class InternalLedgerError(LedgerError):
    """Storage-layer failure while reading or committing."""

    kind = ErrorKind.INTERNAL


_CAMEL_ALIAS = re.compile(r"^[a-z][a-z0-9]*[A-Z]")


def _field_name(part: Union[str, int]) -> str:
    """Document aliases (camelCase) back to the snake_case field name."""
    if isinstance(part, str) and _CAMEL_ALIAS.match(part):
        return to_snake(part)
    return str(part)


def validation_error_from_pydantic(
    error: PydanticValidationError,
    message: str = "Invalid input",
) -> LedgerValidationError:
    """Turn a pydantic ValidationError into schema-level issues."""
    issues = [
        ValidationIssue(
            field=".".join(_field_name(part) for part in detail["loc"]) or "input",
            issue_type=detail["type"],
            message=detail["msg"],
            severity="error",
        )
        for detail in error.errors()
    ]
    return LedgerValidationError(message, issues)
