"""
Tests for Ledgerbook

Test strategy:
1. Unit tests for individual components (models, validators)
2. Flow tests through LedgerService against the in-memory store
3. No real cloud calls in tests
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledgerbook.ledger import LedgerEngine
from ledgerbook.models import (
    Account,
    AccountInput,
    AccountType,
    AllocationStatus,
    BudgetCategoryAllocation,
    BudgetInput,
    BudgetStats,
    CategoryStats,
    ConsistencyFailure,
    LedgerResult,
    ReconciliationReport,
    Transaction,
    TransactionInput,
    TransactionType,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
    allocation_status,
)
from ledgerbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestLedgerModels:
    """Tests for account and transaction models."""

    def test_account_input_normalizes_currency(self):
        """Test that currency codes are upper-cased."""
        account = AccountInput(name="Checking", account_type=AccountType.CHECKING, currency="eur")
        assert account.currency == "EUR"

    def test_account_input_strips_whitespace(self):
        account = AccountInput(name="  Checking  ", account_type=AccountType.CASH)
        assert account.name == "Checking"

    def test_account_input_rejects_bad_currency(self):
        with pytest.raises(ValueError):
            AccountInput(name="Checking", account_type=AccountType.CASH, currency="EURO")

    def test_transaction_signed_amount(self):
        """Test that direction comes from the type."""
        base = dict(
            id="t1", user_id="u1", account_id="a1", category_id="c1",
            amount=Decimal("40"), transaction_date=date(2025, 2, 3),
        )
        assert Transaction(type=TransactionType.EXPENSE, **base).signed_amount == Decimal("-40")
        assert Transaction(type=TransactionType.INCOME, **base).signed_amount == Decimal("40")
        assert Transaction(type=TransactionType.INCOME, **base).month_key == "2025-02"

    def test_transaction_document_round_trip(self):
        """Test camelCase documents and ISO dates."""
        transaction = Transaction(
            id="t1", user_id="u1", account_id="a1", category_id="c1",
            amount=Decimal("40"), type=TransactionType.EXPENSE,
            transaction_date=date(2025, 2, 3),
        )
        document = transaction.to_document(exclude={"id"})

        assert document["accountId"] == "a1"
        assert document["transactionDate"] == "2025-02-03"
        assert document["type"] == "EXPENSE"
        assert Transaction.from_document({**document, "id": "t1"}) == transaction

    def test_stored_doubles_snap_to_cents(self):
        """Test that float drift from stored increments is removed on read."""
        drifted = 0.1 + 0.2
        account = Account.from_document({
            "id": "a1",
            "userId": "u1",
            "name": "Checking",
            "accountType": "CHECKING",
            "balance": drifted,
        })

        assert account.balance == Decimal("0.30")
        LedgerEngine.check_funds(
            account, TransactionType.EXPENSE, Decimal("0.30"), account.balance
        )
        stats = CategoryStats.from_document({"monthlySpending": {"2025-06": 12.340000000000002}})
        assert stats.monthly_spending["2025-06"] == Decimal("12.34")

    def test_transaction_input_rejects_negative_amount(self):
        with pytest.raises(ValueError):
            TransactionInput(
                account_id="a1", category_id="c1", amount=Decimal("-1"),
                type=TransactionType.EXPENSE, transaction_date=date(2025, 1, 1),
            )

    def test_update_reports_only_set_fields(self):
        """Test that unset and null fields are not changes."""
        update = TransactionUpdate.model_validate({"amount": "5", "description": None})
        assert update.changed_fields() == {"amount": Decimal("5")}


class TestBudgetModels:
    """Tests for allocations and budget stats."""

    @pytest.mark.parametrize("spent,expected", [
        ("0", AllocationStatus.ON_TRACK),
        ("80", AllocationStatus.ON_TRACK),
        ("80.01", AllocationStatus.WARNING),
        ("100", AllocationStatus.WARNING),
        ("100.01", AllocationStatus.EXCEEDED),
    ])
    def test_allocation_status_boundaries(self, spent, expected):
        assert allocation_status(Decimal("100"), Decimal(spent)) == expected

    def test_zero_allocation(self):
        """Test that any spending exceeds a zero allocation."""
        assert allocation_status(Decimal("0"), Decimal("0")) == AllocationStatus.ON_TRACK
        assert allocation_status(Decimal("0"), Decimal("1")) == AllocationStatus.EXCEEDED

    def test_with_spent_rederives_fields(self):
        allocation = BudgetCategoryAllocation(category_id="c1", amount=Decimal("50"))
        assert allocation.remaining == Decimal("50")

        updated = allocation.with_spent(Decimal("60"))
        assert updated.remaining == Decimal("-10")
        assert updated.status == AllocationStatus.EXCEEDED
        assert allocation.spent == Decimal("0")

    def test_stats_from_allocations(self):
        allocations = [
            BudgetCategoryAllocation(category_id="a", amount=Decimal("100")).with_spent(Decimal("120")),
            BudgetCategoryAllocation(category_id="b", amount=Decimal("100")).with_spent(Decimal("10")),
        ]
        stats = BudgetStats.from_allocations(allocations)

        assert stats.total_allocated == Decimal("200")
        assert stats.total_spent == Decimal("130")
        assert stats.total_remaining == Decimal("70")
        assert stats.compliance_rate == 0.5
        assert BudgetStats.from_allocations([]).compliance_rate == 1.0

    def test_budget_rejects_repeated_category(self):
        with pytest.raises(ValueError):
            BudgetInput(
                name="June", amount=Decimal("100"), period="MONTHLY",
                start_date=date(2025, 6, 1), end_date=date(2025, 6, 30),
                categories={
                    "a": {"category_id": "c1", "amount": "50"},
                    "b": {"category_id": "c1", "amount": "50"},
                },
            )


class TestResultModels:
    """Tests for ledger results and reconciliation reports."""

    def test_ledger_result_consistency(self):
        result = LedgerResult[str](value="ok")
        assert result.is_consistent

        failed = LedgerResult[str](
            value="ok",
            consistency_failures=[ConsistencyFailure(category_id="c1", message="timeout")],
        )
        assert not failed.is_consistent
        assert failed.consistency_failures[0].kind == "CONSISTENCY_FAILURE"

    def test_report_merge(self):
        first = ReconciliationReport(
            user_id="u1", category_id="c1", strategy="delta", updated_budget_ids=["b1"]
        )
        second = ReconciliationReport(
            user_id="u1", category_id="c2", strategy="delta", updated_budget_ids=["b1", "b2"],
            failures=[ConsistencyFailure(category_id="c2", budget_id="b3", message="x")],
        )
        merged = first.merge(second)

        assert merged.category_id is None
        assert merged.updated_budget_ids == ["b1", "b2"]
        assert not merged.succeeded

    def test_report_rejects_unknown_strategy(self):
        with pytest.raises(ValueError):
            ReconciliationReport(user_id="u1", strategy="eventual")


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            description="Test transaction created",
        )
        assert event.event_type == AuditEventType.TRANSACTION_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.BUDGETS_RECONCILED,
            description="Budgets reconciled",
            details={"budget_ids": ["b1"]},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "budgets_reconciled"
        assert log_dict["details"]["budget_ids"] == ["b1"]

    def test_audit_event_document_round_trip(self):
        """Test conversion to and from an auditLog document."""
        event = AuditEventBuilder.transaction_rejected(
            user_id="u1",
            error_kind="VALIDATION",
            message="Amount missing",
            correlation_id=uuid4(),
        )
        document = event.to_document()

        assert document["eventType"] == "transaction_rejected"
        assert document["correlationId"] == str(event.correlation_id)
        assert AuditEvent.from_document(document) == event

    def test_audit_event_builder_reconciliation_failed(self):
        """Test AuditEventBuilder.reconciliation_failed."""
        correlation_id = uuid4()

        event = AuditEventBuilder.reconciliation_failed(
            user_id="u1",
            category_id="c1",
            budget_id="b1",
            error_message="deadline exceeded",
            correlation_id=correlation_id,
        )

        assert event.severity == AuditSeverity.ERROR
        assert event.entity_id == "b1"
        assert event.error_code == "CONSISTENCY_FAILURE"
        assert event.correlation_id == correlation_id


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            schema_valid=False,
            semantic_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount required",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.is_valid is False

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=True,
            issues=[
                ValidationIssue(
                    field="transaction_date",
                    issue_type="future_date",
                    message="Date in future",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
        assert result.warnings == ["Date in future"]
