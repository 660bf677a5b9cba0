"""
Orphan Reconciler - reattach elements that lost their structure.

An element is orphaned when its structure_id is NULL or points at a
structure that no longer exists. The repair is explicit (never automatic):

1. Find the project's orphans; none -> no-op success.
2. Find or create the catch-all structure (committed on its own; the
   lookup-by-name makes this step idempotent).
3. Re-point every orphan to it, add their amounts to its amount and move
   their budget nodes under its node, in one transaction.
4. Refresh the project summary.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from budget_ledger.config import get_config, LedgerConfig
from budget_ledger.domain.exceptions import DomainError, ReconciliationFailure
from budget_ledger.infrastructure.repositories import EstimateRepository, ProjectRepository
from .audit import record_activity, record_ledger_error
from .estimate_sync_service import EstimateSyncService
from .project_summary_service import ProjectSummaryService
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    success: bool
    fixed_count: int = 0
    message: str = ""
    error: Optional[str] = None
    remaining: int = 0
    structure_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "fixed_count": self.fixed_count,
            "message": self.message,
            "error": self.error,
            "remaining": self.remaining,
            "structure_id": self.structure_id,
        }


class OrphanReconciler:

    def __init__(self, db: Session, config: Optional[LedgerConfig] = None):
        self.db = db
        self.config = config or get_config()
        self.estimates = EstimateRepository(db)
        self.projects = ProjectRepository(db)

    def find_orphans(self, project_id: int):
        return self.estimates.get_orphaned_elements(project_id)

    def fix_orphaned_elements(self, project_id: int) -> ReconciliationResult:
        """
        Reassign every orphaned element of a project to the catch-all structure.

        Failures are returned, not raised, with the number of elements still
        orphaned; the operation can simply be run again.
        """
        self.projects.get_or_raise(project_id)
        name = self.config.unassigned_structure_name

        orphans = self.find_orphans(project_id)
        if not orphans:
            return ReconciliationResult(success=True, message="No orphaned elements found")

        try:
            structure_id = run_in_transaction(
                self.db,
                lambda: self._find_or_create_structure(project_id, name),
                entity_type="Project", entity_id=project_id,
                operation_name="find or create unassigned structure",
            )

            fixed = run_in_transaction(
                self.db,
                lambda: self._reassign(project_id, structure_id),
                entity_type="Project", entity_id=project_id,
                operation_name="reassign orphaned elements",
            )
        except (DomainError, SQLAlchemyError) as e:
            failure = ReconciliationFailure(
                f"Failed to fix orphaned elements: {getattr(e, 'message', e)}",
                remaining=len(self.find_orphans(project_id)),
            )
            record_ledger_error(self.db, "fix_orphaned_elements", failure.message,
                                project_id=project_id)
            return ReconciliationResult(
                success=False,
                message=failure.message,
                error=failure.message,
                remaining=failure.remaining,
            )

        ProjectSummaryService(self.db, self.config).refresh(project_id)
        message = f"Fixed {fixed} orphaned element(s)"
        logger.info(f"Project {project_id}: {message} into structure {structure_id}")
        record_activity(self.db, "orphans_fixed", "estimate_structure", structure_id, project_id,
                        {"fixed_count": fixed})
        return ReconciliationResult(
            success=True,
            fixed_count=fixed,
            message=message,
            structure_id=structure_id,
        )

    def _find_or_create_structure(self, project_id: int, name: str) -> int:
        structure = self.estimates.find_structure_by_name(project_id, name)
        if structure is None:
            structure = self.estimates.create_structure(project_id, name, amount_cents=0)
            logger.info(f"Created '{name}' structure {structure.id} for project {project_id}")
        return structure.id

    def _reassign(self, project_id: int, structure_id: int) -> int:
        orphans = self.find_orphans(project_id)
        if not orphans:
            return 0
        structure = self.estimates.get_or_raise(structure_id)
        structure.amount_cents = (structure.amount_cents or 0) + sum(e.amount_cents or 0 for e in orphans)
        fixed = self.estimates.reassign_elements([e.id for e in orphans], structure_id)
        # Element nodes follow their elements under the structure's node
        EstimateSyncService(self.db).mirror(project_id)
        return fixed
