"""
Domain Layer - business entities, rules and services of the budget ledger.

This module contains:
- entities/: Value objects returned by the services (BudgetStatus, NodeDelta, SummaryNode)
- services/: Ledger, allocation, rollup, reconciliation and projection services
- events/: ORM listeners enforcing node invariants
"""
# Registers the ORM listeners as a side effect
from . import events  # noqa: F401

from .entities.budget_status import BudgetStatus, BudgetStatusLevel
from .entities.node_delta import NodeDelta
from .entities.summary_node import SummaryNode

__all__ = [
    'BudgetStatus', 'BudgetStatusLevel',
    'NodeDelta',
    'SummaryNode',
]
