"""
Payment Allocator - translate one payment into per-budget-node deltas.

For a payment A against a bill of amount T whose items reference nodes
n1..nk with item totals s1..sk:

    attributed(n) ~= A * s(n) / T          (exact in integer cents)
    paid(n)      += attributed(n)
    pending(n)   -= s(n) if this payment made the bill Paid else attributed(n)   (floor 0)
    actual(n)     = paid(n) + external(n) + wages(n)

Items without a node link form one extra bucket so the split always sums
to A. Shares are computed on the cumulative amount paid on the bill, so a
node never receives more than its item total across all installments.

"Commit on create": when a bill is created every referenced node gets
pending += s(n) (see commitments()).
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from budget_ledger.models import (
    Bill, BillPayment, BillStatus, AllocationStatus, PaymentAllocation,
)
from budget_ledger.domain.entities.node_delta import NodeDelta
from budget_ledger.infrastructure.repositories import (
    BudgetNodeRepository,
    BillPaymentRepository,
)
from budget_ledger.modules.money import split_cumulative
from .rollup_propagator import RollupPropagator

logger = logging.getLogger(__name__)


@dataclass
class AllocationOutcome:
    """Result of one allocation pass."""
    payment_id: int
    bill_id: int
    applied: bool
    deltas: List[NodeDelta] = field(default_factory=list)
    skipped_node_ids: List[int] = field(default_factory=list)
    rolled_up_node_ids: List[int] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def node_ids(self) -> List[int]:
        return [d.node_id for d in self.deltas]

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "bill_id": self.bill_id,
            "applied": self.applied,
            "deltas": [d.to_dict() for d in self.deltas],
            "skipped_node_ids": self.skipped_node_ids,
            "rolled_up_node_ids": self.rolled_up_node_ids,
            "reason": self.reason,
        }


def item_totals(bill: Bill) -> "OrderedDict[int, int]":
    """Sum of item amounts per referenced node, in first-reference order."""
    totals: "OrderedDict[int, int]" = OrderedDict()
    for item in bill.items:
        if item.cost_control_item_id is None:
            continue
        totals[item.cost_control_item_id] = (
            totals.get(item.cost_control_item_id, 0) + (item.amount_cents or 0)
        )
    return totals


class PaymentAllocator:
    """
    Applies payments and commitments to the budget tree.

    Works inside the caller's transaction: it flushes, never commits.
    """

    def __init__(self, session: Session):
        self.session = session
        self.nodes = BudgetNodeRepository(session)
        self.payments = BillPaymentRepository(session)
        self.rollup = RollupPropagator(session)

    # =========================================================================
    # Commitments
    # =========================================================================

    def commit_bill(self, bill: Bill, sign: int = 1,
                    amounts: Optional[Dict[int, int]] = None) -> List[int]:
        """
        Add (sign=1) or release (sign=-1) a bill's commitments on its nodes.

        Args:
            bill: Bill whose item totals are committed
            sign: 1 on create, -1 on delete or cancel
            amounts: Per-node amounts to use instead of the full item totals

        Returns:
            Ids of the leaf nodes touched
        """
        totals = item_totals(bill) if amounts is None else amounts
        touched = []
        nodes = self.nodes.get_many(totals.keys())
        for node_id, total in totals.items():
            if not total:
                continue
            node = nodes[node_id]
            node.pending_bills_cents = max(0, (node.pending_bills_cents or 0) + sign * total)
            touched.append(node)
        self.rollup.propagate(touched)
        return [n.id for n in touched]

    def outstanding_by_node(self, bill: Bill) -> Dict[int, int]:
        """Item total minus what payments already attributed, per node."""
        allocated = self._prior_allocations(bill.id)
        return {
            node_id: max(0, total - allocated.get(node_id, 0))
            for node_id, total in item_totals(bill).items()
        }

    # =========================================================================
    # Payments
    # =========================================================================

    def compute_shares(self, bill: Bill, amount_cents: int,
                       prior: Optional[Dict[Optional[int], int]] = None) -> "OrderedDict[Optional[int], int]":
        """
        Split a payment across the bill's buckets.

        Returns:
            Mapping of node id (None for unlinked items) to attributed cents;
            empty when the bill amount is zero or no item is linked.
        """
        totals = item_totals(bill)
        if not bill.amount_cents or not totals:
            return OrderedDict()

        buckets: List[Optional[int]] = list(totals.keys())
        weights = [totals[b] for b in buckets]
        unlinked = bill.amount_cents - sum(weights)
        if unlinked > 0:
            buckets.append(None)
            weights.append(unlinked)

        prior = prior or {}
        shares = split_cumulative(amount_cents, weights, [prior.get(b, 0) for b in buckets])
        return OrderedDict(zip(buckets, shares))

    def allocate(self, payment: BillPayment) -> AllocationOutcome:
        """
        Run the allocation pass for one payment.

        Idempotent: a payment already marked applied is skipped. On success
        the payment is marked applied in the same transaction as the node
        writes.
        """
        bill = payment.bill
        outcome = AllocationOutcome(payment_id=payment.id, bill_id=bill.id, applied=False)

        if payment.allocation_status == AllocationStatus.APPLIED.value:
            outcome.reason = "already applied"
            return outcome

        payment.allocation_attempts = (payment.allocation_attempts or 0) + 1
        totals = item_totals(bill)
        shares = self.compute_shares(bill, payment.amount_cents, self._prior_allocations(bill.id))

        if not shares:
            outcome.reason = "bill amount is zero" if not bill.amount_cents else "no linked items"
            self._mark_applied(payment)
            outcome.applied = True
            return outcome

        bill_paid = self.payment_settles_bill(payment, bill)
        nodes = self.nodes.get_many(totals.keys())
        touched = []

        for node_id, attributed in shares.items():
            if node_id is None:
                self._record_line(payment, None, 0, attributed, applied_to_node=False)
                continue

            node = nodes[node_id]
            if node.is_parent:
                # Parent values are owned by the rollup
                logger.warning(
                    f"Payment {payment.id}: node {node_id} became a parent node; "
                    f"share of {attributed} cents not booked"
                )
                self._record_line(payment, node_id, totals[node_id], attributed, applied_to_node=False)
                outcome.skipped_node_ids.append(node_id)
                continue

            clears = totals[node_id] if bill_paid else attributed
            node.paid_bills_cents = (node.paid_bills_cents or 0) + attributed
            node.pending_bills_cents = max(0, (node.pending_bills_cents or 0) - clears)
            node.recompute_actual()
            self._record_line(payment, node_id, totals[node_id], attributed)
            touched.append(node)

            outcome.deltas.append(NodeDelta(
                node_id=node_id,
                item_total_cents=totals[node_id],
                attributed_cents=attributed,
                paid_bills_cents=node.paid_bills_cents,
                pending_bills_cents=node.pending_bills_cents,
                actual_cents=node.actual_cents,
            ))

        outcome.rolled_up_node_ids = self.rollup.propagate(touched)
        self._mark_applied(payment)
        outcome.applied = True

        logger.info(
            f"Allocated payment {payment.id} ({payment.amount_cents} cents) of bill "
            f"{bill.bill_number} across {len(outcome.deltas)} node(s)"
        )
        return outcome

    @staticmethod
    def payment_settles_bill(payment: BillPayment, bill: Bill) -> bool:
        """
        Whether this payment made the bill Paid, from the cumulative amount
        recorded with the payment, not the bill's current status.
        """
        if payment.bill_paid_after_cents is None:
            return bill.status == BillStatus.PAID.value
        return payment.bill_paid_after_cents >= bill.amount_cents

    def _prior_allocations(self, bill_id: int) -> Dict[Optional[int], int]:
        rows = self.session.query(
            PaymentAllocation.budget_node_id,
            func.coalesce(func.sum(PaymentAllocation.attributed_cents), 0),
        ).filter(
            PaymentAllocation.bill_id == bill_id
        ).group_by(PaymentAllocation.budget_node_id).all()
        return {node_id: int(total) for node_id, total in rows}

    def _record_line(self, payment: BillPayment, node_id: Optional[int], item_total: int,
                     attributed: int, applied_to_node: bool = True) -> None:
        self.session.add(PaymentAllocation(
            payment_id=payment.id,
            bill_id=payment.bill_id,
            budget_node_id=node_id,
            item_total_cents=item_total,
            attributed_cents=attributed,
            applied_to_node=applied_to_node,
            created_at=datetime.utcnow(),
        ))

    def _mark_applied(self, payment: BillPayment) -> None:
        payment.allocation_status = AllocationStatus.APPLIED.value
        payment.allocated_at = datetime.utcnow()
        self.session.flush()
