"""
burnkeeper: burn lifecycle orchestration and reconciliation for a fungible
token on a public ledger.
"""

__version__ = "0.1.0"
