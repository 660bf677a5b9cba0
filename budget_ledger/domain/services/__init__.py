"""
Domain Services - bill ledger, allocation, rollup, reconciliation and projection.
"""

from .budget_status_classifier import BudgetStatusClassifier, classify
from .rollup_propagator import RollupPropagator, RollupViolation
from .payment_allocator import PaymentAllocator, AllocationOutcome, item_totals
from .bill_ledger_service import (
    BillLedgerService,
    PaymentRecordResult,
    ALLOCATION_DELAYED_WARNING,
    derive_status,
)
from .project_summary_service import ProjectSummaryService
from .orphan_reconciler import OrphanReconciler, ReconciliationResult
from .summary_projector import (
    SummaryProjector,
    ExpansionState,
    UNASSIGNED_NODE_ID,
    flatten,
)
from .estimate_sync_service import EstimateSyncService, SyncResult
from .unit_of_work import run_in_transaction

__all__ = [
    'BudgetStatusClassifier',
    'classify',
    'RollupPropagator',
    'RollupViolation',
    'PaymentAllocator',
    'AllocationOutcome',
    'item_totals',
    'BillLedgerService',
    'PaymentRecordResult',
    'ALLOCATION_DELAYED_WARNING',
    'derive_status',
    'ProjectSummaryService',
    'OrphanReconciler',
    'ReconciliationResult',
    'SummaryProjector',
    'ExpansionState',
    'UNASSIGNED_NODE_ID',
    'flatten',
    'EstimateSyncService',
    'SyncResult',
    'run_in_transaction',
]
