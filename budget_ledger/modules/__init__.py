"""
Shared helpers used across the ledger services.
"""
