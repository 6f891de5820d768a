"""
FX Ledger

Multi-currency ledger aggregation and foreign-exchange revaluation engine:
account balances, trial balance and balance sheet, receivables breakdown and
unrealized FX gain/loss with a non-posting preview journal, all computed with
Decimal from a pinned snapshot of the ledger.
"""

__version__ = "1.0.0"
