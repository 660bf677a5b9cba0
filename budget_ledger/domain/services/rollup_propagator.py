"""
Rollup Propagator - recompute parent accumulators from their children.

Every touched parent is recomputed as the sum of its direct children's
current values (never by applying deltas), deepest level first, walking up
to the root. Recompute-from-children is idempotent, so re-running it over a
drifted tree repairs it.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

from budget_ledger.models import BudgetNode
from budget_ledger.infrastructure.repositories import BudgetNodeRepository

logger = logging.getLogger(__name__)


ROLLUP_FIELDS = (
    'paid_bills_cents',
    'pending_bills_cents',
    'external_bills_cents',
    'wages_cents',
)


@dataclass
class RollupViolation:
    """A parent whose stored accumulator differs from the sum of its children."""
    node_id: int
    field: str
    expected: int
    actual: int

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
        }


class RollupPropagator:
    """
    Keeps non-leaf budget nodes equal to the sum of their children.

    Works inside the caller's transaction; it flushes but never commits.
    """

    def __init__(self, session: Session):
        self.session = session
        self.nodes = BudgetNodeRepository(session)

    def recompute(self, parent: BudgetNode) -> bool:
        """
        Recompute one node from its direct children.

        A node that lost all of its children becomes a leaf holding nothing,
        since the money moved with the children.

        Returns:
            True if any stored value changed
        """
        children = self.nodes.get_children(parent.id)
        if not children:
            changed = parent.is_parent or any(getattr(parent, f) for f in ROLLUP_FIELDS)
            parent.is_parent = False
            for field in ROLLUP_FIELDS:
                setattr(parent, field, 0)
            parent.recompute_actual()
            return changed

        changed = not parent.is_parent
        parent.is_parent = True
        for field in ROLLUP_FIELDS:
            total = sum(getattr(child, field) or 0 for child in children)
            if getattr(parent, field) != total:
                setattr(parent, field, total)
                changed = True
        before = parent.actual_cents
        if parent.recompute_actual() != before:
            changed = True
        return changed

    def propagate(self, changed_nodes: Iterable[BudgetNode]) -> List[int]:
        """
        Recompute every ancestor of the changed nodes.

        Args:
            changed_nodes: Nodes whose own accumulators were just written

        Returns:
            Ids of the ancestors recomputed, in processing order
        """
        return self.propagate_from(
            n.parent_id for n in changed_nodes if n.parent_id is not None
        )

    def propagate_from(self, parent_ids: Iterable[int]) -> List[int]:
        """
        Recompute the given nodes and all of their ancestors, deepest first,
        each exactly once.
        """
        self.session.flush()
        pending: Dict[int, BudgetNode] = self.nodes.get_many(parent_ids)
        processed: List[int] = []

        while pending:
            node = max(pending.values(), key=lambda n: (n.level, n.id))
            del pending[node.id]
            self.recompute(node)
            self.session.flush()
            processed.append(node.id)
            if node.parent_id is not None and node.parent_id not in processed:
                parent = self.nodes.get_or_raise(node.parent_id)
                pending[parent.id] = parent

        if processed:
            logger.debug(f"Rolled up {len(processed)} ancestor node(s): {processed}")
        return processed

    def rebuild_project(self, project_id: int) -> int:
        """
        Full bottom-up recompute of every parent node in a project.

        Returns:
            Number of nodes whose stored values changed
        """
        changed = 0
        for node in self.nodes.get_parents_deepest_first(project_id):
            if self.recompute(node):
                changed += 1
            self.session.flush()
        logger.info(f"Rebuilt rollups for project {project_id}: {changed} node(s) corrected")
        return changed

    def verify_project(self, project_id: int) -> List[RollupViolation]:
        """Compare every parent with the sum of its children without writing."""
        violations = []
        for node in self.nodes.get_parents_deepest_first(project_id):
            children = self.nodes.get_children(node.id)
            for field in ROLLUP_FIELDS:
                expected = sum(getattr(c, field) or 0 for c in children)
                actual = getattr(node, field) or 0
                if expected != actual:
                    violations.append(RollupViolation(node.id, field, expected, actual))
            expected_actual = node.paid_bills_cents + node.external_bills_cents + node.wages_cents
            if node.actual_cents != expected_actual:
                violations.append(
                    RollupViolation(node.id, 'actual_cents', expected_actual, node.actual_cents)
                )
        return violations
