"""
Estimate Sync Service - mirror estimate structures/elements into the budget tree.

Creates the level-0 node of every structure and the level-1 node of every
attached element that has none yet, with the estimate amount as budget.
Element nodes whose element moved to another structure are re-parented and
both old and new parents rolled up. Orphaned elements get no node until
the orphan reconciler has attached them.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy.orm import Session

from budget_ledger.domain.exceptions import ValidationError
from budget_ledger.infrastructure.repositories import (
    BudgetNodeRepository,
    EstimateRepository,
    ProjectRepository,
    ProjectSummaryRepository,
)
from .rollup_propagator import RollupPropagator
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    project_id: int
    created_structures: int = 0
    created_elements: int = 0
    reparented: List[int] = field(default_factory=list)
    skipped_orphans: int = 0

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "created_structures": self.created_structures,
            "created_elements": self.created_elements,
            "reparented": self.reparented,
            "skipped_orphans": self.skipped_orphans,
        }


class EstimateSyncService:

    def __init__(self, db: Session):
        self.db = db
        self.projects = ProjectRepository(db)
        self.estimates = EstimateRepository(db)
        self.nodes = BudgetNodeRepository(db)
        self.summaries = ProjectSummaryRepository(db)
        self.rollup = RollupPropagator(db)

    def sync_project(self, project_id: int) -> SyncResult:
        self.projects.get_or_raise(project_id)
        result = run_in_transaction(
            self.db, lambda: self.mirror(project_id),
            entity_type="Project", entity_id=project_id, operation_name="sync estimate",
        )
        logger.info(
            f"Synced estimate for project {project_id}: "
            f"{result.created_structures} structure node(s), "
            f"{result.created_elements} element node(s), "
            f"{len(result.reparented)} re-parented"
        )
        return result

    def mirror(self, project_id: int) -> SyncResult:
        """Bring the budget tree in line with the estimate inside the caller's transaction."""
        result = SyncResult(project_id=project_id)

        structure_nodes = self.nodes.get_structure_nodes(project_id)
        for structure in self.estimates.get_structures(project_id):
            if structure.id in structure_nodes:
                continue
            structure_nodes[structure.id] = self.nodes.create(
                project_id=project_id,
                name=structure.name,
                level=0,
                budget_amount_cents=structure.amount_cents,
                structure_id=structure.id,
                order_index=structure.order_index or 0,
            )
            result.created_structures += 1

        element_nodes = self.nodes.get_element_nodes(project_id)
        touched_parents = set()
        for element in self.estimates.get_elements(project_id):
            parent = structure_nodes.get(element.structure_id) if element.structure_id else None
            if parent is None:
                result.skipped_orphans += 1
                continue

            node = element_nodes.get(element.id)
            if node is None:
                self.nodes.create(
                    project_id=project_id,
                    name=element.name,
                    parent_id=parent.id,
                    budget_amount_cents=element.amount_cents,
                    element_id=element.id,
                    order_index=element.order_index or 0,
                )
                result.created_elements += 1
                touched_parents.add(parent.id)
            elif node.parent_id != parent.id:
                if not parent.is_parent and parent.committed_cents:
                    raise ValidationError(
                        "structure_id",
                        f"structure node {parent.id} carries booked amounts and cannot take children",
                    )
                if node.parent_id is not None:
                    touched_parents.add(node.parent_id)
                node.parent_id = parent.id
                parent.is_parent = True
                touched_parents.add(parent.id)
                result.reparented.append(node.id)

        if touched_parents:
            self.rollup.propagate_from(touched_parents)
        if result.created_structures or result.created_elements or result.reparented:
            self.summaries.mark_stale(project_id)
        return result
