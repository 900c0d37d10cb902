"""
ledger-sync: webhook-driven reconciliation of table data onto a ledger contract.
"""

__version__ = "1.0.0"
