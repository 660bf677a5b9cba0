"""
Bill Repository - Data access layer for bills, bill items and payments.
"""
import uuid
from datetime import date, datetime
from typing import Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from budget_ledger.models import (
    Bill, BillItem, BillPayment, BillStatus, AllocationStatus,
)
from budget_ledger.domain.exceptions import (
    BillNotFoundError,
    PaymentNotFoundError,
    DuplicateBillNumberError,
)
from budget_ledger.modules.money import line_amount_cents
from .base_repository import BaseRepository


class BillRepository(BaseRepository[Bill]):
    """Repository for Bill entities and their items."""

    not_found_error = BillNotFoundError

    def __init__(self, session: Session):
        super().__init__(session, Bill)

    def get_by_number(self, project_id: int, bill_number: str) -> Optional[Bill]:
        return self.session.query(Bill).filter(
            Bill.project_id == project_id,
            Bill.bill_number == bill_number,
        ).first()

    def count_for_project(self, project_id: int) -> int:
        return self.session.query(func.count(Bill.id)).filter(
            Bill.project_id == project_id
        ).scalar() or 0

    def create(
        self,
        project_id: int,
        bill_number: str,
        items: Iterable[dict],
        amount_cents: Optional[int] = None,
        **fields,
    ) -> Bill:
        """
        Create a bill with its items.

        The bill amount is the sum of its items when items are given;
        an explicit amount is only used for item-less bills.

        Raises:
            DuplicateBillNumberError: If the number is taken in the project
        """
        if self.get_by_number(project_id, bill_number) is not None:
            raise DuplicateBillNumberError(bill_number, project_id)

        bill = Bill(
            uuid=str(uuid.uuid4()),
            project_id=project_id,
            bill_number=bill_number,
            created_at=datetime.utcnow(),
            **fields,
        )
        for item in items:
            quantity = item.get("quantity", 1.0)
            unit_cost = item.get("unit_cost_cents", 0)
            bill.items.append(BillItem(
                description=item.get("description"),
                quantity=quantity,
                unit_cost_cents=unit_cost,
                amount_cents=line_amount_cents(quantity, unit_cost),
                cost_control_item_id=item.get("cost_control_item_id"),
            ))
        if bill.items:
            bill.amount_cents = sum(i.amount_cents for i in bill.items)
        else:
            bill.amount_cents = amount_cents or 0
        bill.paid_amount_cents = 0

        self.session.add(bill)
        self.session.flush()
        return bill

    def get_items_for_node(self, node_id: int) -> List[BillItem]:
        return self.session.query(BillItem).filter(
            BillItem.cost_control_item_id == node_id
        ).order_by(BillItem.id).all()

    def get_overdue_candidates(self, as_of: date) -> List[Bill]:
        """Unpaid bills whose due date has passed."""
        return self.session.query(Bill).filter(
            Bill.due_date.isnot(None),
            Bill.due_date < as_of,
            Bill.status.in_([BillStatus.PENDING.value, BillStatus.PARTIAL.value]),
        ).order_by(Bill.id).all()

    def totals_by_status(self, project_id: int) -> dict:
        """Sum of bill amounts per status for a project."""
        rows = self.session.query(
            Bill.status, func.coalesce(func.sum(Bill.amount_cents), 0)
        ).filter(Bill.project_id == project_id).group_by(Bill.status).all()
        return {status: int(total) for status, total in rows}


class BillPaymentRepository(BaseRepository[BillPayment]):
    """Repository for payments and their allocation outbox state."""

    not_found_error = PaymentNotFoundError

    def __init__(self, session: Session):
        super().__init__(session, BillPayment)

    def create(self, bill: Bill, amount_cents: int, payment_date: date,
               method: str, reference: Optional[str] = None,
               note: Optional[str] = None,
               bill_paid_after_cents: Optional[int] = None) -> BillPayment:
        payment = BillPayment(
            uuid=str(uuid.uuid4()),
            bill_id=bill.id,
            amount_cents=amount_cents,
            payment_date=payment_date,
            method=method,
            reference=reference,
            note=note,
            status="Completed",
            allocation_status=AllocationStatus.PENDING.value,
            allocation_attempts=0,
            bill_paid_after_cents=bill_paid_after_cents,
            created_at=datetime.utcnow(),
        )
        bill.payments.append(payment)
        self.session.flush()
        return payment

    def total_for_bill(self, bill_id: int) -> int:
        return self.session.query(
            func.coalesce(func.sum(BillPayment.amount_cents), 0)
        ).filter(BillPayment.bill_id == bill_id).scalar() or 0

    def count_for_bill(self, bill_id: int) -> int:
        return self.session.query(func.count(BillPayment.id)).filter(
            BillPayment.bill_id == bill_id
        ).scalar() or 0

    def get_unallocated(self, project_id: Optional[int] = None) -> List[BillPayment]:
        """Payments whose allocation pass is pending or failed, oldest first."""
        query = self.session.query(BillPayment).filter(
            BillPayment.allocation_status.in_([
                AllocationStatus.PENDING.value,
                AllocationStatus.FAILED.value,
            ])
        )
        if project_id is not None:
            query = query.join(Bill, Bill.id == BillPayment.bill_id).filter(
                Bill.project_id == project_id
            )
        return query.order_by(BillPayment.id).all()
