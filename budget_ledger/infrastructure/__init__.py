"""
Infrastructure Layer - persistence adapters for the ledger domain.
"""
