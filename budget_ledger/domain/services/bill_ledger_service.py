"""
Bill Ledger Service - bills, bill items and payments, and their effect on
the budget tree.

Provides:
1. Bill creation with commitments (one transaction)
2. Payment recording in two steps: the payment itself, then the allocation
   pass (payment row = outbox entry keyed by payment id)
3. Allocation retries for payments left pending or failed
4. Bill deletion / cancellation with commitment reversal
5. Bill numbering, purchase-order conversion, duplication, overdue marking
6. Direct charges (external bills, wages) on leaf nodes
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from budget_ledger.config import get_config, LedgerConfig
from budget_ledger.models import (
    Bill, BillStatus, AllocationStatus, BudgetNode, PurchaseOrderStatus,
)
from budget_ledger.domain.entities.node_delta import NodeDelta
from budget_ledger.domain.exceptions import (
    BillCancelledError,
    BillHasPaymentsError,
    DomainError,
    PartialAllocationFailure,
    PaymentExceedsBalanceError,
    ValidationError,
)
from budget_ledger.infrastructure.repositories import (
    BillRepository,
    BillPaymentRepository,
    BudgetNodeRepository,
    ProjectRepository,
    ProjectSummaryRepository,
    PurchaseOrderRepository,
    LedgerErrorLogRepository,
)
from .audit import record_activity, record_ledger_error
from .payment_allocator import PaymentAllocator, item_totals
from .rollup_propagator import RollupPropagator
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


ALLOCATION_DELAYED_WARNING = "Payment recorded, budget figures may be delayed"

DIRECT_CHARGE_FIELDS = {
    'external_bills': 'external_bills_cents',
    'wages': 'wages_cents',
}


@dataclass
class PaymentRecordResult:
    """Outcome of recording a payment; a warning means the ledger lags."""
    payment_id: int
    bill_id: int
    amount_cents: int
    bill_status: str
    remaining_cents: int
    allocation_status: str
    deltas: List[NodeDelta] = field(default_factory=list)
    warning: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "bill_id": self.bill_id,
            "amount_cents": self.amount_cents,
            "bill_status": self.bill_status,
            "remaining_cents": self.remaining_cents,
            "allocation_status": self.allocation_status,
            "deltas": [d.to_dict() for d in self.deltas],
            "warning": self.warning,
            "error": self.error,
        }


def derive_status(current_status: str, amount_cents: int, paid_cents: int) -> str:
    """
    Bill status from amount and cumulative payments.

    Cancelled is sticky. Paid iff paid >= amount, Partial iff 0 < paid < amount.
    With nothing paid, Draft and Overdue are kept, anything else is Pending.
    """
    if current_status == BillStatus.CANCELLED.value:
        return current_status
    if paid_cents > 0 and paid_cents >= amount_cents:
        return BillStatus.PAID.value
    if paid_cents > 0:
        return BillStatus.PARTIAL.value
    if current_status in (BillStatus.DRAFT.value, BillStatus.OVERDUE.value):
        return current_status
    return BillStatus.PENDING.value


class BillLedgerService:
    """
    Entry point for every financial event touching bills.

    Each public operation commits its own transaction(s).
    """

    def __init__(self, db: Session, config: Optional[LedgerConfig] = None):
        self.db = db
        self.config = config or get_config()
        self.bills = BillRepository(db)
        self.payments = BillPaymentRepository(db)
        self.nodes = BudgetNodeRepository(db)
        self.projects = ProjectRepository(db)
        self.summaries = ProjectSummaryRepository(db)
        self.purchase_orders = PurchaseOrderRepository(db)
        self.allocator = PaymentAllocator(db)
        self.rollup = RollupPropagator(db)

    # =========================================================================
    # Bills
    # =========================================================================

    def get_bill(self, bill_id: int) -> Bill:
        return self.bills.get_or_raise(bill_id)

    def generate_bill_number(self, project_id: int) -> str:
        """
        Next free bill number for a project, e.g. 'PRJ-001-B-004'.
        """
        project = self.projects.get_or_raise(project_id)
        code = project.project_number or self.config.fallback_project_code
        sequence = self.bills.count_for_project(project_id) + 1
        while True:
            number = (
                f"{code}{self.config.bill_number_separator}"
                f"{sequence:0{self.config.bill_number_padding}d}"
            )
            if self.bills.get_by_number(project_id, number) is None:
                return number
            sequence += 1

    def create_bill(self, project_id: int, bill_data: dict, items: List[dict]) -> Bill:
        """
        Create a bill and register its commitments in one transaction.

        Args:
            project_id: Owning project
            bill_data: bill_number (generated when absent), name, supplier_id,
                purchase_order_id, bill_date, due_date, notes, status (Draft
                or Pending), amount_cents (item-less bills only)
            items: dicts with description, quantity, unit_cost_cents,
                cost_control_item_id

        Returns:
            The committed bill
        """
        self.projects.get_or_raise(project_id)

        def operation():
            return self._create_bill_in_session(project_id, dict(bill_data), items)

        bill = run_in_transaction(
            self.db, operation,
            entity_type="Project", entity_id=project_id, operation_name="create bill",
        )
        logger.info(f"Created bill {bill.bill_number} ({bill.amount_cents} cents) in project {project_id}")
        record_activity(self.db, "bill_created", "bill", bill.id, project_id,
                        {"bill_number": bill.bill_number, "amount_cents": bill.amount_cents})
        return bill

    def _create_bill_in_session(self, project_id: int, bill_data: dict, items: List[dict]) -> Bill:
        self._validate_items(project_id, items)

        status = bill_data.pop("status", None) or BillStatus.PENDING.value
        if status not in (BillStatus.DRAFT.value, BillStatus.PENDING.value):
            raise ValidationError("status", "a new bill must be Draft or Pending")

        bill_number = bill_data.pop("bill_number", None) or self.generate_bill_number(project_id)
        amount_cents = bill_data.pop("amount_cents", None)
        bill = self.bills.create(
            project_id=project_id,
            bill_number=bill_number,
            items=items,
            amount_cents=amount_cents,
            status=status,
            **bill_data,
        )
        self.allocator.commit_bill(bill)
        self.summaries.mark_stale(project_id)
        return bill

    def _validate_items(self, project_id: int, items: List[dict]) -> None:
        for index, item in enumerate(items):
            if item.get("quantity", 1.0) < 0:
                raise ValidationError(f"items[{index}].quantity", "must be >= 0")
            if item.get("unit_cost_cents", 0) < 0:
                raise ValidationError(f"items[{index}].unit_cost_cents", "must be >= 0")
            node_id = item.get("cost_control_item_id")
            if node_id is None:
                continue
            node = self.nodes.get_or_raise(node_id)
            if node.project_id != project_id:
                raise ValidationError(
                    f"items[{index}].cost_control_item_id",
                    f"budget node {node_id} belongs to another project",
                )
            if node.is_parent:
                raise ValidationError(
                    f"items[{index}].cost_control_item_id",
                    f"budget node {node_id} is a parent node; link items to a leaf",
                )
            if node.is_deleted:
                raise ValidationError(
                    f"items[{index}].cost_control_item_id",
                    f"budget node {node_id} is deleted",
                )

    def create_bill_from_purchase_order(self, po_id: int, bill_data: Optional[dict] = None) -> Bill:
        """
        Bill a purchase order: items (with their node links) are copied, the
        PO becomes Billed and remembers the bill number.
        """
        po = self.purchase_orders.get_or_raise(po_id)
        if po.status in (PurchaseOrderStatus.BILLED.value, PurchaseOrderStatus.CANCELLED.value):
            raise ValidationError("purchase_order_id", f"purchase order is {po.status}")
        project_id = po.project_id

        def operation():
            order = self.purchase_orders.get_or_raise(po_id)
            data = {
                "name": f"Bill for {order.po_number}",
                "supplier_id": order.supplier_id,
            }
            data.update(bill_data or {})
            data["purchase_order_id"] = order.id
            items = [
                {
                    "description": i.description,
                    "quantity": i.quantity,
                    "unit_cost_cents": i.unit_cost_cents,
                    "cost_control_item_id": i.cost_control_item_id,
                }
                for i in order.items
            ]
            bill = self._create_bill_in_session(project_id, data, items)
            order.status = PurchaseOrderStatus.BILLED.value
            order.linked_bill_number = bill.bill_number
            return bill

        bill = run_in_transaction(
            self.db, operation,
            entity_type="PurchaseOrder", entity_id=po_id, operation_name="bill purchase order",
        )
        record_activity(self.db, "bill_created_from_po", "bill", bill.id, project_id,
                        {"purchase_order_id": po_id, "bill_number": bill.bill_number})
        return bill

    def duplicate_bill(self, bill_id: int) -> Bill:
        """Copy a bill and its items under a new number, status Pending."""
        source = self.bills.get_or_raise(bill_id)
        project_id = source.project_id
        data = {
            "name": f"Copy of {source.name or source.bill_number}",
            "supplier_id": source.supplier_id,
            "bill_date": source.bill_date,
            "due_date": source.due_date,
            "notes": source.notes,
            "status": BillStatus.PENDING.value,
        }
        items = [
            {
                "description": i.description,
                "quantity": i.quantity,
                "unit_cost_cents": i.unit_cost_cents,
                "cost_control_item_id": i.cost_control_item_id,
            }
            for i in source.items
        ]
        if not items:
            data["amount_cents"] = source.amount_cents
        return self.create_bill(project_id, data, items)

    def delete_bill(self, bill_id: int) -> None:
        """
        Delete an unpaid bill and release its commitments.

        Raises:
            BillHasPaymentsError: Payments exist; cancel the bill instead
        """
        bill = self.bills.get_or_raise(bill_id)
        payment_count = self.payments.count_for_bill(bill_id)
        if payment_count:
            raise BillHasPaymentsError(bill_id, payment_count)
        project_id = bill.project_id
        bill_number = bill.bill_number

        def operation():
            current = self.bills.get_or_raise(bill_id)
            if current.status != BillStatus.CANCELLED.value:
                self.allocator.commit_bill(current, sign=-1)
            if current.purchase_order_id:
                po = self.purchase_orders.get_by_id(current.purchase_order_id)
                if po is not None and po.linked_bill_number == current.bill_number:
                    po.status = PurchaseOrderStatus.APPROVED.value
                    po.linked_bill_number = None
            self.bills.delete(current)
            self.summaries.mark_stale(project_id)

        run_in_transaction(
            self.db, operation,
            entity_type="Bill", entity_id=bill_id, operation_name="delete bill",
        )
        logger.info(f"Deleted bill {bill_number} and released its commitments")
        record_activity(self.db, "bill_deleted", "bill", bill_id, project_id,
                        {"bill_number": bill_number})

    def cancel_bill(self, bill_id: int) -> Bill:
        """
        Cancel a bill. The part of each commitment not yet covered by
        payments is released; paid amounts stay booked.
        """
        def operation():
            bill = self.bills.get_or_raise(bill_id)
            if bill.status == BillStatus.CANCELLED.value:
                return bill
            self.allocator.commit_bill(bill, sign=-1, amounts=self.allocator.outstanding_by_node(bill))
            bill.status = BillStatus.CANCELLED.value
            self.summaries.mark_stale(bill.project_id)
            return bill

        bill = run_in_transaction(
            self.db, operation,
            entity_type="Bill", entity_id=bill_id, operation_name="cancel bill",
        )
        record_activity(self.db, "bill_cancelled", "bill", bill.id, bill.project_id)
        return bill

    def mark_overdue_bills(self, as_of: Optional[date] = None) -> int:
        """Flag Pending/Partial bills past their due date as Overdue."""
        as_of = as_of or date.today()

        def operation():
            bills = self.bills.get_overdue_candidates(as_of)
            for bill in bills:
                bill.status = BillStatus.OVERDUE.value
                self.summaries.mark_stale(bill.project_id)
            return len(bills)

        count = run_in_transaction(
            self.db, operation,
            entity_type="Bill", entity_id="*", operation_name="mark overdue bills",
        )
        if count:
            logger.info(f"Marked {count} bill(s) overdue as of {as_of}")
        return count

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment(
        self,
        bill_id: int,
        amount_cents: int,
        method: Optional[str],
        payment_date: Optional[date] = None,
        reference: Optional[str] = None,
        note: Optional[str] = None,
    ) -> PaymentRecordResult:
        """
        Record a payment, then run exactly one allocation pass for it.

        Validation failures raise before anything is written. If the
        allocation pass fails the payment still stands: it is flagged
        failed, an error record is written, and the result carries a
        warning instead of raising.

        Raises:
            ValidationError: amount <= 0 or missing method
            PaymentExceedsBalanceError: amount > remaining balance
            BillNotFoundError: Unknown bill
            BillCancelledError: Bill is cancelled
        """
        if amount_cents is None or amount_cents <= 0:
            raise ValidationError("amount", "Payment amount must be greater than zero")
        if not method or not str(method).strip():
            raise ValidationError("payment_method", "Payment method is required")
        payment_date = payment_date or date.today()

        def operation():
            bill = self.bills.get_or_raise(bill_id)
            if bill.status == BillStatus.CANCELLED.value:
                raise BillCancelledError(bill_id)
            paid_so_far = self.payments.total_for_bill(bill_id)
            remaining = bill.amount_cents - paid_so_far
            if amount_cents > remaining:
                raise PaymentExceedsBalanceError(amount_cents, max(0, remaining))

            payment = self.payments.create(
                bill, amount_cents, payment_date, str(method).strip(), reference, note,
                bill_paid_after_cents=paid_so_far + amount_cents,
            )
            bill.paid_amount_cents = payment.bill_paid_after_cents
            bill.status = derive_status(bill.status, bill.amount_cents, bill.paid_amount_cents)
            self.summaries.mark_stale(bill.project_id)
            return payment

        payment = run_in_transaction(
            self.db, operation,
            entity_type="Bill", entity_id=bill_id, operation_name="record payment",
        )
        payment_id = payment.id
        bill = self.bills.get_or_raise(bill_id)
        logger.info(
            f"Recorded payment {payment_id} of {amount_cents} cents on bill "
            f"{bill.bill_number} (status {bill.status})"
        )
        record_activity(self.db, "payment_recorded", "bill", bill_id, bill.project_id,
                        {"payment_id": payment_id, "amount_cents": amount_cents,
                         "method": method, "status": bill.status})

        return self.allocate_payment(payment_id)

    def allocate_payment(self, payment_id: int) -> PaymentRecordResult:
        """
        Run (or re-run) the allocation pass for a payment.

        Safe to call repeatedly: an applied payment is never allocated twice.
        """
        payment = self.payments.get_or_raise(payment_id)
        bill_id = payment.bill_id
        bill = payment.bill
        project_id = bill.project_id
        node_ids = list(item_totals(bill).keys())

        try:
            outcome = run_in_transaction(
                self.db,
                lambda: self.allocator.allocate(self.payments.get_or_raise(payment_id)),
                entity_type="Payment", entity_id=payment_id, operation_name="allocate payment",
            )
        except (DomainError, SQLAlchemyError) as e:
            failure = PartialAllocationFailure(payment_id, node_ids, getattr(e, "message", str(e)))
            self._flag_failed_allocation(payment_id, project_id, bill_id, node_ids, failure)
            bill = self.bills.get_or_raise(bill_id)
            return PaymentRecordResult(
                payment_id=payment_id,
                bill_id=bill_id,
                amount_cents=payment.amount_cents,
                bill_status=bill.status,
                remaining_cents=bill.remaining_cents,
                allocation_status=AllocationStatus.FAILED.value,
                warning=ALLOCATION_DELAYED_WARNING,
                error=failure.message,
            )

        LedgerErrorLogRepository(self.db).resolve_for_payment(payment_id)
        self.db.commit()

        bill = self.bills.get_or_raise(bill_id)
        payment = self.payments.get_or_raise(payment_id)
        return PaymentRecordResult(
            payment_id=payment_id,
            bill_id=bill_id,
            amount_cents=payment.amount_cents,
            bill_status=bill.status,
            remaining_cents=bill.remaining_cents,
            allocation_status=payment.allocation_status,
            deltas=outcome.deltas,
        )

    def _flag_failed_allocation(self, payment_id: int, project_id: int, bill_id: int,
                                node_ids: List[int], failure: PartialAllocationFailure) -> None:
        try:
            payment = self.payments.get_or_raise(payment_id)
            payment.allocation_status = AllocationStatus.FAILED.value
            payment.allocation_attempts = (payment.allocation_attempts or 0) + 1
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not flag payment {payment_id} as failed: {e}")
        record_ledger_error(
            self.db, "allocate_payment", failure.message,
            project_id=project_id, bill_id=bill_id,
            payment_id=payment_id, node_ids=node_ids,
        )

    def retry_allocation(self, payment_id: int) -> PaymentRecordResult:
        return self.allocate_payment(payment_id)

    def retry_failed_allocations(self, project_id: Optional[int] = None) -> Dict[str, int]:
        """
        Re-run allocation for every pending or failed payment, oldest first.

        Returns:
            Counts of applied and still-failing payments
        """
        payment_ids = [p.id for p in self.payments.get_unallocated(project_id)]
        applied = failed = 0
        for payment_id in payment_ids:
            result = self.allocate_payment(payment_id)
            if result.allocation_status == AllocationStatus.APPLIED.value:
                applied += 1
            else:
                failed += 1
        if payment_ids:
            logger.info(f"Allocation retry: {applied} applied, {failed} still failing")
        return {"attempted": len(payment_ids), "applied": applied, "failed": failed}

    # =========================================================================
    # Direct charges
    # =========================================================================

    def post_direct_charge(self, node_id: int, kind: str, amount_cents: int,
                           note: Optional[str] = None) -> BudgetNode:
        """
        Book an external bill or wage amount on a leaf node and roll it up.
        A negative amount is a correction and may not take the value below zero.
        """
        if kind not in DIRECT_CHARGE_FIELDS:
            raise ValidationError("kind", f"must be one of {sorted(DIRECT_CHARGE_FIELDS)}")
        if not amount_cents:
            raise ValidationError("amount", "must be non-zero")
        field_name = DIRECT_CHARGE_FIELDS[kind]

        def operation():
            node = self.nodes.get_or_raise(node_id)
            if node.is_parent:
                raise ValidationError("node_id", f"budget node {node_id} is a parent node")
            new_value = (getattr(node, field_name) or 0) + amount_cents
            if new_value < 0:
                raise ValidationError("amount", f"{kind} on node {node_id} would go below zero")
            setattr(node, field_name, new_value)
            node.recompute_actual()
            self.rollup.propagate([node])
            self.summaries.mark_stale(node.project_id)
            return node

        node = run_in_transaction(
            self.db, operation,
            entity_type="BudgetNode", entity_id=node_id, operation_name=f"post {kind}",
        )
        record_activity(self.db, f"{kind}_posted", "budget_node", node_id, node.project_id,
                        {"amount_cents": amount_cents, "note": note})
        return node
