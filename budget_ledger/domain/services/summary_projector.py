"""
Summary Projector - display-ready, deduplicated view of a project's tree.

Builds a two-level Structure -> Element tree from two flat queries,
deduplicates repeated rows, surfaces orphans under a synthetic
"Unassigned Elements" node, and flattens the tree according to the
client's expansion state. Totals come from the ProjectSummary cache and are
not re-summed from the tree.
"""
import io
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Set

import pandas as pd
from sqlalchemy.orm import Session

from budget_ledger.config import get_config, LedgerConfig
from budget_ledger.models import BudgetNode, EstimateElement, EstimateStructure
from budget_ledger.domain.entities.summary_node import SummaryNode
from budget_ledger.infrastructure.repositories import (
    BudgetNodeRepository,
    EstimateRepository,
    ProjectRepository,
)
from .project_summary_service import ProjectSummaryService

logger = logging.getLogger(__name__)


UNASSIGNED_NODE_ID = "structure-unassigned"


def structure_node_id(structure_id: int) -> str:
    return f"structure-{structure_id}"


def element_node_id(element_id: int) -> str:
    return f"element-{element_id}"


class ExpansionState:
    """
    Client-visible set of expanded node ids. Everything starts collapsed.
    """

    def __init__(self, expanded: Optional[Iterable[str]] = None):
        self.expanded: Set[str] = set(expanded or ())

    def is_expanded(self, node_id: str) -> bool:
        return node_id in self.expanded

    def toggle(self, node_id: str) -> bool:
        """Flip one node; returns the new state."""
        if node_id in self.expanded:
            self.expanded.discard(node_id)
            return False
        self.expanded.add(node_id)
        return True

    def expand_all(self, tree: List[SummaryNode]) -> None:
        stack = list(tree)
        while stack:
            node = stack.pop()
            if node.children:
                self.expanded.add(node.id)
                stack.extend(node.children)

    def collapse_all(self) -> None:
        self.expanded.clear()


def flatten(tree: List[SummaryNode], expanded: Iterable[str]) -> List[SummaryNode]:
    """
    Depth-first walk emitting a node, then its children only if the node is
    expanded. A node is visible iff every ancestor is expanded.
    """
    expanded = set(expanded)
    result: List[SummaryNode] = []

    def walk(nodes: List[SummaryNode]) -> None:
        for node in nodes:
            result.append(node)
            if node.children and node.id in expanded:
                walk(node.children)

    walk(tree)
    return result


def dedupe_structures(structures: List[EstimateStructure],
                      element_counts: Dict[int, int]) -> List[EstimateStructure]:
    """
    Keep one structure per name: the one with most elements, ties going to
    the lowest id. The result does not depend on input order.
    """
    best: Dict[str, EstimateStructure] = {}
    for structure in structures:
        current = best.get(structure.name)
        if current is None:
            best[structure.name] = structure
            continue
        candidate_key = (element_counts.get(structure.id, 0), -structure.id)
        current_key = (element_counts.get(current.id, 0), -current.id)
        if candidate_key > current_key:
            best[structure.name] = structure
    return sorted(best.values(), key=lambda s: (s.order_index or 0, s.id))


def dedupe_elements(elements: List[EstimateElement]) -> List[EstimateElement]:
    """One element per name, last seen (highest id) wins, first position kept."""
    by_name: "OrderedDict[str, EstimateElement]" = OrderedDict()
    for element in sorted(elements, key=lambda e: e.id):
        by_name[element.name] = element
    return list(by_name.values())


class SummaryProjector:
    """Builds and exports the tree projection for one project at a time."""

    def __init__(self, db: Session, config: Optional[LedgerConfig] = None):
        self.db = db
        self.config = config or get_config()
        self.estimates = EstimateRepository(db)
        self.nodes = BudgetNodeRepository(db)
        self.projects = ProjectRepository(db)
        self.summary_service = ProjectSummaryService(db, self.config)

    def build_tree(self, project_id: int) -> List[SummaryNode]:
        """
        Two-level tree: deduplicated structures with their deduplicated
        elements, then the synthetic bucket for orphans if any exist.
        """
        self.projects.get_or_raise(project_id)
        structures = self.estimates.get_structures(project_id)
        elements = self.estimates.get_elements(project_id)

        structure_ids = {s.id for s in structures}
        by_structure: Dict[int, List[EstimateElement]] = {}
        orphans: List[EstimateElement] = []
        for element in elements:
            if element.structure_id is None or element.structure_id not in structure_ids:
                orphans.append(element)
            else:
                by_structure.setdefault(element.structure_id, []).append(element)

        element_counts = {sid: len(els) for sid, els in by_structure.items()}
        kept = dedupe_structures(structures, element_counts)
        dropped = len(structures) - len(kept)
        if dropped:
            logger.warning(f"Project {project_id}: ignored {dropped} duplicate structure row(s)")

        structure_nodes = self.nodes.get_structure_nodes(project_id)
        element_nodes = self.nodes.get_element_nodes(project_id)

        tree = []
        for structure in kept:
            node = self._to_summary(
                structure_node_id(structure.id), structure.name, 0,
                structure.amount_cents, structure_nodes.get(structure.id), structure.id,
            )
            node.children = [
                self._to_summary(
                    element_node_id(e.id), e.name, 1,
                    e.amount_cents, element_nodes.get(e.id), e.id,
                )
                for e in dedupe_elements(by_structure.get(structure.id, []))
            ]
            tree.append(node)

        if orphans:
            children = [
                self._to_summary(
                    element_node_id(e.id), e.name, 1,
                    e.amount_cents, element_nodes.get(e.id), e.id,
                )
                for e in dedupe_elements(orphans)
            ]
            bucket = SummaryNode(
                id=UNASSIGNED_NODE_ID,
                name=self.config.unassigned_structure_name,
                level=0,
                is_synthetic=True,
                children=children,
            )
            for field_name in ('original_cents', 'actual_cents', 'paid_bills_cents',
                               'external_bills_cents', 'pending_bills_cents', 'wages_cents'):
                setattr(bucket, field_name, sum(getattr(c, field_name) for c in children))
            tree.append(bucket)

        return tree

    @staticmethod
    def _to_summary(node_id: str, name: str, level: int, original_cents: int,
                    budget_node: Optional[BudgetNode], source_id: int) -> SummaryNode:
        summary = SummaryNode(
            id=node_id,
            name=name,
            level=level,
            original_cents=original_cents or 0,
            source_id=source_id,
        )
        if budget_node is not None:
            summary.actual_cents = budget_node.actual_cents or 0
            summary.paid_bills_cents = budget_node.paid_bills_cents or 0
            summary.external_bills_cents = budget_node.external_bills_cents or 0
            summary.pending_bills_cents = budget_node.pending_bills_cents or 0
            summary.wages_cents = budget_node.wages_cents or 0
        return summary

    def project(self, project_id: int, expanded: Optional[Iterable[str]] = None) -> dict:
        """
        Flattened visible rows plus the cached totals.

        Args:
            project_id: Project to project
            expanded: Ids of expanded nodes (all collapsed when omitted)
        """
        tree = self.build_tree(project_id)
        rows = flatten(tree, expanded or ())
        totals = self.summary_service.get(project_id)
        return {
            "project_id": project_id,
            "nodes": [r.to_dict() for r in rows],
            "totals": totals,
            "is_stale": totals["is_stale"],
        }

    def export_csv(self, project_id: int, expanded: Optional[Iterable[str]] = None,
                   expand_all: bool = False) -> str:
        """
        CSV of the visible rows: Name, Original, Actual, Difference,
        PaidBills, ExternalBills, PendingBills (amounts in currency units).
        """
        tree = self.build_tree(project_id)
        state = ExpansionState(expanded)
        if expand_all:
            state.expand_all(tree)
        rows = flatten(tree, state.expanded)

        records = [
            {
                "Name": r.name,
                "Original": r.original_cents / 100,
                "Actual": r.actual_cents / 100,
                "Difference": r.difference_cents / 100,
                "PaidBills": r.paid_bills_cents / 100,
                "ExternalBills": r.external_bills_cents / 100,
                "PendingBills": r.pending_bills_cents / 100,
                "Wages": r.wages_cents / 100,
            }
            for r in rows
        ]
        columns = self.config.export_columns
        df = pd.DataFrame(records, columns=columns)

        output = io.StringIO()
        df.to_csv(output, index=False, float_format="%.2f")
        return output.getvalue()
