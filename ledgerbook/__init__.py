"""
Ledgerbook - Source Package

The ledger and budget reconciliation backend of a personal-finance tracker.
Accounts, transactions, categories and budgets live in a document store;
this package keeps balances and budget allocations consistent with the
transactions that produce them.

DESIGN PRINCIPLES:
1. Accounts and transactions are the source of truth
2. Fail before writing, never halfway through
3. One atomic batch per ledger mutation
4. Budgets are a derived cache that can always be rebuilt
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledgerbook Team"
