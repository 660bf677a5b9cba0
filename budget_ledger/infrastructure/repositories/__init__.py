"""
Repository implementations for data access layer.
"""
from .base_repository import BaseRepository
from .budget_node_repository import BudgetNodeRepository
from .bill_repository import BillRepository, BillPaymentRepository
from .estimate_repository import EstimateRepository
from .project_repository import ProjectRepository, ProjectSummaryRepository
from .purchase_order_repository import PurchaseOrderRepository
from .log_repository import ActivityLogRepository, LedgerErrorLogRepository

__all__ = [
    'BaseRepository',
    'BudgetNodeRepository',
    'BillRepository',
    'BillPaymentRepository',
    'EstimateRepository',
    'ProjectRepository',
    'ProjectSummaryRepository',
    'PurchaseOrderRepository',
    'ActivityLogRepository',
    'LedgerErrorLogRepository',
]
