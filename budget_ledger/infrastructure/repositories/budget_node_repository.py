"""
Budget Node Repository - Data access layer for the budget tree.

Implements repository pattern for BudgetNode operations with:
- Tree navigation (children, ancestors, depth ordering)
- Bill-item reference checks before hard deletion
- Soft deletion
"""
import uuid
from typing import Dict, Iterable, List, Optional
from datetime import datetime
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from budget_ledger.models import BudgetNode, BillItem
from budget_ledger.domain.exceptions import (
    BudgetNodeNotFoundError,
    BudgetNodeInUseError,
    ValidationError,
)
from .base_repository import BaseRepository


class BudgetNodeRepository(BaseRepository[BudgetNode]):
    """
    Repository for BudgetNode entities.

    A node is never hard-deleted while a bill item references it.
    """

    not_found_error = BudgetNodeNotFoundError

    def __init__(self, session: Session):
        super().__init__(session, BudgetNode)

    def create(
        self,
        project_id: int,
        name: str,
        parent_id: Optional[int] = None,
        level: Optional[int] = None,
        budget_amount_cents: Optional[int] = None,
        structure_id: Optional[int] = None,
        element_id: Optional[int] = None,
        order_index: int = 0,
    ) -> BudgetNode:
        """
        Create a node, marking its parent as a parent node.

        Args:
            project_id: Owning project
            name: Display name
            parent_id: Parent node; None only for structures
            level: Tree level; derived from the parent when omitted
            budget_amount_cents: Approved budget, immutable once set
            structure_id: Estimate structure this node mirrors (level 0)
            element_id: Estimate element this node mirrors (level 1)
            order_index: Sibling display order

        Returns:
            The new (flushed) node
        """
        parent = None
        if parent_id is not None:
            parent = self.get_or_raise(parent_id)
            if parent.project_id != project_id:
                raise ValidationError("parent_id", "parent belongs to a different project")
            if not parent.is_parent and parent.committed_cents:
                raise ValidationError(
                    "parent_id",
                    f"node {parent_id} already carries booked amounts and cannot take children",
                )
            level = parent.level + 1 if level is None else level
        elif level not in (None, 0):
            raise ValidationError("parent_id", "only structure-level nodes may have no parent")

        node = BudgetNode(
            uuid=str(uuid.uuid4()),
            project_id=project_id,
            parent_id=parent_id,
            name=name,
            level=level or 0,
            budget_amount_cents=budget_amount_cents,
            structure_id=structure_id,
            element_id=element_id,
            order_index=order_index,
            created_at=datetime.utcnow(),
        )
        self.session.add(node)
        if parent is not None and not parent.is_parent:
            parent.is_parent = True
        self.session.flush()
        return node

    def get_many(self, node_ids: Iterable[int]) -> Dict[int, BudgetNode]:
        """Load several nodes in one query, keyed by id."""
        ids = list(set(node_ids))
        if not ids:
            return {}
        nodes = self.session.query(BudgetNode).filter(BudgetNode.id.in_(ids)).all()
        return {n.id: n for n in nodes}

    def get_children(self, parent_id: int) -> List[BudgetNode]:
        """
        Direct children of a node, soft-deleted ones included: a soft-deleted
        node keeps the money already booked against it.
        """
        return self.session.query(BudgetNode).filter(
            BudgetNode.parent_id == parent_id
        ).order_by(BudgetNode.order_index, BudgetNode.id).all()

    def get_ancestors(self, node: BudgetNode) -> List[BudgetNode]:
        """Parent chain from the direct parent up to the root."""
        chain = []
        seen = {node.id}
        current = node
        while current.parent_id is not None:
            parent = self.get_or_raise(current.parent_id)
            if parent.id in seen:
                raise ValidationError("parent_id", f"cycle detected at node {parent.id}")
            seen.add(parent.id)
            chain.append(parent)
            current = parent
        return chain

    def get_parents_deepest_first(self, project_id: int) -> List[BudgetNode]:
        """Every node that has children, ordered so children come before parents."""
        return self.session.query(BudgetNode).filter(
            BudgetNode.project_id == project_id,
            BudgetNode.id.in_(
                select(BudgetNode.parent_id).where(
                    BudgetNode.project_id == project_id,
                    BudgetNode.parent_id.isnot(None),
                )
            ),
        ).order_by(BudgetNode.level.desc(), BudgetNode.id).all()

    def get_by_structure(self, structure_id: int) -> Optional[BudgetNode]:
        return self.session.query(BudgetNode).filter(
            BudgetNode.structure_id == structure_id,
            BudgetNode.level == 0,
        ).order_by(BudgetNode.id).first()

    def get_by_element(self, element_id: int) -> Optional[BudgetNode]:
        return self.session.query(BudgetNode).filter(
            BudgetNode.element_id == element_id,
            BudgetNode.level == 1,
        ).order_by(BudgetNode.id).first()

    def get_structure_nodes(self, project_id: int) -> Dict[int, BudgetNode]:
        """Structure-level nodes keyed by their estimate structure id."""
        nodes = self.session.query(BudgetNode).filter(
            BudgetNode.project_id == project_id,
            BudgetNode.structure_id.isnot(None),
        ).order_by(BudgetNode.id).all()
        result: Dict[int, BudgetNode] = {}
        for node in nodes:
            result.setdefault(node.structure_id, node)
        return result

    def get_element_nodes(self, project_id: int) -> Dict[int, BudgetNode]:
        """Element-level nodes keyed by their estimate element id."""
        nodes = self.session.query(BudgetNode).filter(
            BudgetNode.project_id == project_id,
            BudgetNode.element_id.isnot(None),
        ).order_by(BudgetNode.id).all()
        result: Dict[int, BudgetNode] = {}
        for node in nodes:
            result.setdefault(node.element_id, node)
        return result

    def count_bill_item_refs(self, node_id: int) -> int:
        return self.session.query(func.count(BillItem.id)).filter(
            BillItem.cost_control_item_id == node_id
        ).scalar() or 0

    def wages_total(self, project_id: int) -> int:
        """Sum of wages over leaf nodes of a project."""
        return self.session.query(
            func.coalesce(func.sum(BudgetNode.wages_cents), 0)
        ).filter(
            BudgetNode.project_id == project_id,
            BudgetNode.is_parent.is_(False),
        ).scalar() or 0

    def soft_delete(self, node_id: int) -> BudgetNode:
        node = self.get_or_raise(node_id)
        node.is_deleted = True
        node.updated_at = datetime.utcnow()
        return node

    def hard_delete(self, node_id: int) -> None:
        """
        Delete a leaf node.

        Raises:
            BudgetNodeInUseError: If any bill item references the node
            ValidationError: If the node still has children
        """
        node = self.get_or_raise(node_id)
        refs = self.count_bill_item_refs(node_id)
        if refs:
            raise BudgetNodeInUseError(node_id, refs)
        if self.get_children(node_id):
            raise ValidationError("node_id", f"node {node_id} still has children")
        parent_id = node.parent_id
        self.session.delete(node)
        self.session.flush()
        if parent_id is not None and not self.get_children(parent_id):
            self.get_or_raise(parent_id).is_parent = False
