"""
Budget Ledger - hierarchical budget tracking and payment allocation for
construction projects.
"""
__version__ = "1.0.0"
