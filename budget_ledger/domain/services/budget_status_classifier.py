"""
Budget Status Classifier - pure mapping of (available, committed) to a status.

    remaining = available - committed
    remaining < 0                          -> critical "Exceeds budget by X"
    0 <= remaining < ratio * available     -> warning  "Only X remaining"
    otherwise                              -> ok       "X available"
"""
from typing import Optional

from budget_ledger.config import get_config
from budget_ledger.domain.entities.budget_status import BudgetStatus, BudgetStatusLevel
from budget_ledger.modules.money import format_amount


class BudgetStatusClassifier:
    """Stateless; safe to share. warning_ratio defaults to configuration."""

    def __init__(self, warning_ratio: Optional[float] = None):
        self.warning_ratio = get_config().warning_ratio if warning_ratio is None else warning_ratio

    def classify(self, available_cents: int, committed_cents: int) -> BudgetStatus:
        remaining = available_cents - committed_cents

        if remaining < 0:
            return BudgetStatus(
                status=BudgetStatusLevel.CRITICAL,
                message=f"Exceeds budget by {format_amount(abs(remaining))}",
                remaining_cents=remaining,
            )

        # Integer comparison: remaining < ratio * available
        if remaining * 10_000 < round(self.warning_ratio * 10_000) * available_cents:
            return BudgetStatus(
                status=BudgetStatusLevel.WARNING,
                message=f"Only {format_amount(remaining)} remaining",
                remaining_cents=remaining,
            )

        return BudgetStatus(
            status=BudgetStatusLevel.OK,
            message=f"{format_amount(remaining)} available",
            remaining_cents=remaining,
        )


def classify(available_cents: int, committed_cents: int,
             warning_ratio: Optional[float] = None) -> BudgetStatus:
    """Module-level shortcut for BudgetStatusClassifier(...).classify(...)."""
    return BudgetStatusClassifier(warning_ratio).classify(available_cents, committed_cents)
