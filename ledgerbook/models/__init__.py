"""
Data Models Package

This package contains all Pydantic models used in Ledgerbook.
All documents flowing through the system must conform to these schemas.
"""

from ledgerbook.models.ledger import (
    Account,
    AccountInput,
    AccountStats,
    AccountType,
    Category,
    CategoryInput,
    CategoryStats,
    CategoryType,
    DateRange,
    DocumentModel,
    Transaction,
    TransactionFilters,
    TransactionInput,
    TransactionType,
    TransactionUpdate,
    User,
    UserInput,
    UserUpdate,
    UserStats,
    ValidationIssue,
    ValidationResult,
    month_key,
    utcnow,
)
from ledgerbook.models.budget import (
    AllocationInput,
    AllocationStatus,
    Budget,
    BudgetCategoryAllocation,
    BudgetFilters,
    BudgetInput,
    BudgetPeriod,
    BudgetStats,
    allocation_status,
)
from ledgerbook.models.analytics import (
    BudgetPerformance,
    CategorySpending,
    MonthlySpending,
    TopCategory,
    Trend,
    UserSummary,
)
from ledgerbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from ledgerbook.models.results import (
    ConsistencyFailure,
    LedgerResult,
    ReconciliationReport,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountInput",
    "AccountStats",
    "AccountType",
    "Category",
    "CategoryInput",
    "CategoryStats",
    "CategoryType",
    "DateRange",
    "DocumentModel",
    "Transaction",
    "TransactionFilters",
    "TransactionInput",
    "TransactionType",
    "TransactionUpdate",
    "User",
    "UserInput",
    "UserUpdate",
    "UserStats",
    "ValidationIssue",
    "ValidationResult",
    "month_key",
    "utcnow",
    # Budget models
    "AllocationInput",
    "AllocationStatus",
    "Budget",
    "BudgetCategoryAllocation",
    "BudgetFilters",
    "BudgetInput",
    "BudgetPeriod",
    "BudgetStats",
    "allocation_status",
    # Analytics
    "BudgetPerformance",
    "CategorySpending",
    "MonthlySpending",
    "TopCategory",
    "Trend",
    "UserSummary",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Results
    "ConsistencyFailure",
    "LedgerResult",
    "ReconciliationReport",
]
