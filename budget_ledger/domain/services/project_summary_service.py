"""
Project Summary Service - the explicit cache of project-level totals.

The cache is never recomputed on read. Writers call invalidate(); readers
get the cached row plus an is_stale flag (set explicitly, or implied once
the row is older than summary.staleness_minutes); refresh() rebuilds it.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from budget_ledger.config import get_config, LedgerConfig
from budget_ledger.models import (
    BillStatus, EstimateElement, EstimateStructure, ProjectSummary,
)
from budget_ledger.infrastructure.repositories import (
    BillRepository,
    BudgetNodeRepository,
    EstimateRepository,
    ProjectRepository,
    ProjectSummaryRepository,
    PurchaseOrderRepository,
)
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


PAID_STATUSES = (BillStatus.PAID.value,)
UNPAID_STATUSES = (BillStatus.PENDING.value, BillStatus.PARTIAL.value, BillStatus.OVERDUE.value)


class ProjectSummaryService:
    """Refresh, invalidate and read the per-project summary cache."""

    def __init__(self, db: Session, config: Optional[LedgerConfig] = None):
        self.db = db
        self.config = config or get_config()
        self.projects = ProjectRepository(db)
        self.summaries = ProjectSummaryRepository(db)
        self.estimates = EstimateRepository(db)
        self.bills = BillRepository(db)
        self.nodes = BudgetNodeRepository(db)
        self.purchase_orders = PurchaseOrderRepository(db)

    def compute(self, project_id: int, summary: ProjectSummary) -> ProjectSummary:
        """Fill a summary row from the current ledger state (no commit)."""
        structure_count = self.db.query(func.count(EstimateStructure.id)).filter(
            EstimateStructure.project_id == project_id
        ).scalar() or 0
        element_count = self.db.query(func.count(EstimateElement.id)).filter(
            EstimateElement.project_id == project_id
        ).scalar() or 0
        structures_total = self.db.query(
            func.coalesce(func.sum(EstimateStructure.amount_cents), 0)
        ).filter(EstimateStructure.project_id == project_id).scalar() or 0
        orphans_total = sum(e.amount_cents or 0 for e in self.estimates.get_orphaned_elements(project_id))

        by_status = self.bills.totals_by_status(project_id)
        paid_total = sum(by_status.get(s, 0) for s in PAID_STATUSES)
        unpaid_total = sum(by_status.get(s, 0) for s in UNPAID_STATUSES)
        estimate_total = int(structures_total) + orphans_total

        summary.structure_count = structure_count
        summary.element_count = element_count
        summary.estimate_total_cents = estimate_total
        summary.paid_bills_total_cents = paid_total
        summary.unpaid_bills_total_cents = unpaid_total
        summary.bills_difference_cents = estimate_total - (paid_total + unpaid_total)
        summary.purchase_orders_total_cents = int(self.purchase_orders.total_for_project(project_id))
        summary.wages_total_cents = int(self.nodes.wages_total(project_id))
        summary.is_stale = False
        summary.last_updated_at = datetime.utcnow()
        return summary

    def refresh(self, project_id: int) -> ProjectSummary:
        """Rebuild one project's summary row."""
        self.projects.get_or_raise(project_id)

        summary = run_in_transaction(
            self.db,
            lambda: self.compute(project_id, self.summaries.get_or_create(project_id)),
            entity_type="Project", entity_id=project_id, operation_name="refresh project summary",
        )
        logger.info(f"Refreshed summary for project {project_id}")
        return summary

    def populate_all(self) -> str:
        """Refresh every project's summary."""
        project_ids = self.projects.get_all_ids()
        for project_id in project_ids:
            self.refresh(project_id)
        return f"Populated summaries for {len(project_ids)} projects"

    def refresh_stale(self) -> List[int]:
        """Refresh every summary flagged stale; returns the refreshed project ids."""
        project_ids = self.summaries.get_stale_project_ids()
        for project_id in project_ids:
            self.refresh(project_id)
        return project_ids

    def invalidate(self, project_id: int) -> None:
        self.summaries.mark_stale(project_id)
        self.db.commit()

    def is_stale(self, summary: ProjectSummary, now: Optional[datetime] = None) -> bool:
        if summary.is_stale or summary.last_updated_at is None:
            return True
        now = now or datetime.utcnow()
        return now - summary.last_updated_at > timedelta(minutes=self.config.staleness_minutes)

    def get(self, project_id: int) -> dict:
        """
        Cached totals for a project, built on first access.

        Returns:
            Summary dict plus 'is_stale'
        """
        summary = self.summaries.get_by_project(project_id)
        if summary is None:
            summary = self.refresh(project_id)
        data = summary.to_dict()
        data["is_stale"] = self.is_stale(summary)
        return data
