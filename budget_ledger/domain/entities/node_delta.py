"""
Node Delta - the per-node outcome of one payment allocation pass.
"""
from dataclasses import dataclass


@dataclass
class NodeDelta:
    """
    Change computed for a single budget node by the payment allocator.

    Attributes:
        node_id: Budget node receiving the allocation
        item_total_cents: Sum of the bill's items referencing the node
        attributed_cents: Share of the payment attributed to the node
        paid_bills_cents: New paid accumulator
        pending_bills_cents: New pending accumulator (floored at zero)
        actual_cents: New actual (paid + external + wages)
    """
    node_id: int
    item_total_cents: int
    attributed_cents: int
    paid_bills_cents: int
    pending_bills_cents: int
    actual_cents: int

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "item_total_cents": self.item_total_cents,
            "attributed_cents": self.attributed_cents,
            "paid_bills_cents": self.paid_bills_cents,
            "pending_bills_cents": self.pending_bills_cents,
            "actual_cents": self.actual_cents,
        }
