"""
Read-side queries.

Aggregations over the documents the ledger maintains.
"""

from ledgerbook.queries.analytics import AnalyticsQueries, previous_range

__all__ = ["AnalyticsQueries", "previous_range"]
