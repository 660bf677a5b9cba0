"""
API Layer - REST endpoints of the budget ledger.
"""
