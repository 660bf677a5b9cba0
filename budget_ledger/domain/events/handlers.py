"""
Domain Event Handlers for the budget tree.

SQLAlchemy event listeners enforcing, at the ORM level:
- Budget amount immutability once set by the estimate import
- Non-negative accumulators before they reach the database
"""
from sqlalchemy import event, inspect

from budget_ledger.models import BudgetNode
from budget_ledger.domain.exceptions import ImmutableFieldError, ValidationError


ACCUMULATOR_FIELDS = (
    'paid_bills_cents',
    'pending_bills_cents',
    'external_bills_cents',
    'wages_cents',
)


@event.listens_for(BudgetNode, 'before_update')
def budget_node_before_update(mapper, connection, target):
    """
    Enforce budget amount immutability.

    budget_amount_cents may go from NULL to a value exactly once; any later
    change is rejected.
    """
    state = inspect(target)
    history = state.attrs.budget_amount_cents.history

    if history.has_changes():
        old_value = history.deleted[0] if history.deleted else None
        new_value = history.added[0] if history.added else target.budget_amount_cents

        if old_value is not None and old_value != new_value:
            raise ImmutableFieldError(
                field_name='budget_amount_cents',
                entity_type='BudgetNode'
            )

    _check_accumulators(target)


@event.listens_for(BudgetNode, 'before_insert')
def budget_node_before_insert(mapper, connection, target):
    _check_accumulators(target)


def _check_accumulators(node: BudgetNode) -> None:
    for field in ACCUMULATOR_FIELDS:
        value = getattr(node, field)
        if value is not None and value < 0:
            raise ValidationError(field, f"must be >= 0 on node {node.id}, got {value}")
