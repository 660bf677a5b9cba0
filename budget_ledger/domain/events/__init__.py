"""
Domain event handlers registered as SQLAlchemy ORM listeners.
"""
from .handlers import budget_node_before_update

__all__ = ['budget_node_before_update']
