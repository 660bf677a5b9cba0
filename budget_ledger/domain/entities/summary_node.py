"""
Summary Node - one row of the display projection of a project's budget tree.
"""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class SummaryNode:
    """
    Display-ready node. Ids are prefixed strings ('structure-12',
    'element-40') so structure and element ids never collide; the synthetic
    orphan bucket uses a sentinel id.
    """
    id: str
    name: str
    level: int
    original_cents: int = 0
    actual_cents: int = 0
    paid_bills_cents: int = 0
    external_bills_cents: int = 0
    pending_bills_cents: int = 0
    wages_cents: int = 0
    source_id: Optional[int] = None
    is_synthetic: bool = False
    children: List["SummaryNode"] = field(default_factory=list)

    @property
    def difference_cents(self) -> int:
        return self.original_cents - self.actual_cents

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    def to_dict(self, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "original_cents": self.original_cents,
            "actual_cents": self.actual_cents,
            "difference_cents": self.difference_cents,
            "paid_bills_cents": self.paid_bills_cents,
            "external_bills_cents": self.external_bills_cents,
            "pending_bills_cents": self.pending_bills_cents,
            "wages_cents": self.wages_cents,
            "has_children": self.has_children,
            "is_synthetic": self.is_synthetic,
        }
        if include_children:
            data["children"] = [c.to_dict(include_children=True) for c in self.children]
        return data
