from .budget_status import BudgetStatus, BudgetStatusLevel
from .node_delta import NodeDelta
from .summary_node import SummaryNode

__all__ = ['BudgetStatus', 'BudgetStatusLevel', 'NodeDelta', 'SummaryNode']
