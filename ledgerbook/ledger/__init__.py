"""
Ledger Package

The ledger engine owns every write that moves money; the budget
reconciler brings budgets in line after each ledger commit.
"""

from ledgerbook.ledger.reconciler import BudgetReconciler, ReconciliationIncomplete
from ledgerbook.ledger.engine import CounterEffects, LedgerEngine

__all__ = [
    "BudgetReconciler",
    "CounterEffects",
    "LedgerEngine",
    "ReconciliationIncomplete",
]
