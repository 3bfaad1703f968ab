"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages, both before
anything is written:

STAGE 1 - SCHEMA VALIDATION:
- Type checking and required fields (pydantic)
- Non-negative amount
- Recurrence flag/pattern consistency

STAGE 2 - SEMANTIC VALIDATION:
- Checks against the referenced account and category
- Category type vs. transaction type
- Future date detection
- Absurd amount detection
- Currency sanity

Stage 2 is skipped when stage 1 fails. Errors block the write;
warnings travel back to the caller on the LedgerResult.

IMPORTANT: Validation NEVER silently fixes issues.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import ValidationError

from ledgerbook.config import LedgerSettings, get_settings
from ledgerbook.errors import LedgerValidationError, validation_error_from_pydantic
from ledgerbook.models import (
    Account,
    Category,
    TransactionInput,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)


class TransactionValidator:
    """
    Validates transaction input through a two-stage pipeline.

    Stage 1 runs on the raw input alone; stage 2 needs the account and
    category the transaction refers to.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def parse(self, raw: Union[TransactionInput, dict[str, Any]]) -> TransactionInput:
        """
        Stage 1: coerce raw input into a TransactionInput.

        Raises:
            LedgerValidationError: With one issue per failing field
        """
        if isinstance(raw, TransactionInput):
            return raw
        try:
            return TransactionInput.model_validate(raw)
        except ValidationError as e:
            raise validation_error_from_pydantic(e, "Transaction input is invalid")

    def _validate_schema(
        self,
        data: TransactionInput,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1 checks beyond the pydantic model.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if data.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message="Transaction amount is zero",
                severity="warning",
                suggested_fix="Check if the amount was entered correctly",
            ))

        if data.amount.as_tuple().exponent < -2:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message=f"Amount {data.amount} has more than two decimal places",
                severity="error",
                suggested_fix="Round the amount to cents",
            ))

        if data.is_recurring and not data.recurring_pattern:
            issues.append(ValidationIssue(
                field="recurring_pattern",
                issue_type="missing",
                message="Recurring transaction has no recurrence pattern",
                severity="info",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        data: TransactionInput,
        account: Account,
        category: Category,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: checks against stored documents.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        today = date.today()

        if category.type.value != data.type.value:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="type_mismatch",
                message=(
                    f"{data.type.value} transaction filed under "
                    f"{category.type.value} category '{category.name}'"
                ),
                severity="warning",
                suggested_fix="Pick a category of the same type",
            ))

        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        if data.transaction_date > max_future_date:
            issues.append(ValidationIssue(
                field="transaction_date",
                issue_type="future_date",
                message=f"Transaction date ({data.transaction_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        max_amount = Decimal(str(self._settings.max_transaction_amount))
        if data.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({data.amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        if data.type == TransactionType.INCOME and account.is_credit:
            issues.append(ValidationIssue(
                field="type",
                issue_type="unusual",
                message=f"Income recorded on credit card account '{account.name}'",
                severity="info",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        data: TransactionInput,
        account: Account,
        category: Category,
    ) -> ValidationResult:
        """
        Run the full two-stage pipeline.

        Args:
            data: Parsed transaction input
            account: The (active) account it will be written to
            category: The (active) category it is filed under

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(data)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(data, account, category)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )

    def ensure_valid(
        self,
        data: TransactionInput,
        account: Account,
        category: Category,
    ) -> ValidationResult:
        """validate(), raising LedgerValidationError when it found errors."""
        result = self.validate(data, account, category)
        if not result.is_valid:
            raise LedgerValidationError(
                f"Transaction failed validation with {result.error_count} error(s)",
                [issue for issue in result.issues if issue.severity == "error"],
            )
        return result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Summary of a validation result for display in a form."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        errors = [issue for issue in result.issues if issue.severity == "error"]
        if errors:
            lines.append("Please fix the following:")
            for issue in errors:
                lines.append(f"   - {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     ({issue.suggested_fix})")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   - {warning}")

        return "\n".join(lines)
