"""
Purchase Order Repository - Data access for purchase orders and their items.
"""
from datetime import datetime
from typing import Iterable, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from budget_ledger.models import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from budget_ledger.domain.exceptions import PurchaseOrderNotFoundError
from budget_ledger.modules.money import line_amount_cents
from .base_repository import BaseRepository


class PurchaseOrderRepository(BaseRepository[PurchaseOrder]):
    """Repository for PurchaseOrder entities."""

    not_found_error = PurchaseOrderNotFoundError

    def __init__(self, session: Session):
        super().__init__(session, PurchaseOrder)

    def create(self, project_id: int, po_number: str, items: Iterable[dict],
               supplier_id: Optional[int] = None, name: Optional[str] = None,
               status: str = PurchaseOrderStatus.APPROVED.value) -> PurchaseOrder:
        po = PurchaseOrder(
            project_id=project_id,
            po_number=po_number,
            supplier_id=supplier_id,
            name=name,
            status=status,
            created_at=datetime.utcnow(),
        )
        for item in items:
            quantity = item.get("quantity", 1.0)
            unit_cost = item.get("unit_cost_cents", 0)
            po.items.append(PurchaseOrderItem(
                description=item.get("description"),
                quantity=quantity,
                unit_cost_cents=unit_cost,
                amount_cents=line_amount_cents(quantity, unit_cost),
                cost_control_item_id=item.get("cost_control_item_id"),
            ))
        po.total_cents = sum(i.amount_cents for i in po.items)
        self.session.add(po)
        self.session.flush()
        return po

    def total_for_project(self, project_id: int) -> int:
        """Sum of totals of non-cancelled purchase orders."""
        return self.session.query(
            func.coalesce(func.sum(PurchaseOrder.total_cents), 0)
        ).filter(
            PurchaseOrder.project_id == project_id,
            PurchaseOrder.status != PurchaseOrderStatus.CANCELLED.value,
        ).scalar() or 0
