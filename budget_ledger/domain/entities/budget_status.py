"""
Budget Status - result of classifying a committed amount against a budget.
"""
from dataclasses import dataclass
from enum import Enum


class BudgetStatusLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class BudgetStatus:
    """Classification outcome with the human-readable message shown to users."""
    status: BudgetStatusLevel
    message: str
    remaining_cents: int

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "remaining_cents": self.remaining_cents,
        }
