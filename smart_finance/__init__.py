"""
Smart Finance - Ledger Core

Persistence and balance-reconciliation layer for a single-user
account and transaction tracker.

DESIGN PRINCIPLES:
1. Callers render only store-confirmed lists
2. Every balance change is tied to a transaction mutation
3. Failures reload state; nothing is silently retried
4. Every mutation step is auditable
5. Storage layer is swappable (local snapshot / remote documents)
"""

__version__ = "1.0.0"
__author__ = "Smart Finance Team"
