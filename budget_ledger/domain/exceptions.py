"""
Domain Exceptions for the Budget Ledger.

Custom exceptions enforcing business rules:
- Payment validation against the remaining bill balance
- Budget node immutability and referential safety
- Optimistic concurrency conflicts
- Partial allocation and reconciliation failures
"""
from typing import List, Optional


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


# =============================================================================
# Validation
# =============================================================================

class ValidationError(DomainError):
    """Raised when input fails a business rule. No partial write occurs."""

    def __init__(self, field: str, message: str):
        full_message = f"Validation failed for '{field}': {message}"
        super().__init__(full_message, code="VALIDATION_ERROR")
        self.field = field
        self.reason = message


class PaymentExceedsBalanceError(ValidationError):
    """Raised when a payment would make paid > bill amount."""

    def __init__(self, amount_cents: int, remaining_cents: int):
        super().__init__(
            "amount",
            f"Payment exceeds remaining balance of {remaining_cents / 100:,.2f}",
        )
        self.code = "PAYMENT_EXCEEDS_BALANCE"
        self.amount_cents = amount_cents
        self.remaining_cents = remaining_cents


# =============================================================================
# Not found
# =============================================================================

class NotFoundError(DomainError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id, code: str = "NOT_FOUND"):
        message = f"{entity_type} with id '{entity_id}' not found"
        super().__init__(message, code=code)
        self.entity_type = entity_type
        self.entity_id = entity_id


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id):
        super().__init__("Project", project_id, code="PROJECT_NOT_FOUND")


class BillNotFoundError(NotFoundError):
    def __init__(self, bill_id):
        super().__init__("Bill", bill_id, code="BILL_NOT_FOUND")


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id):
        super().__init__("Payment", payment_id, code="PAYMENT_NOT_FOUND")


class BudgetNodeNotFoundError(NotFoundError):
    def __init__(self, node_id):
        super().__init__("Budget node", node_id, code="BUDGET_NODE_NOT_FOUND")


class PurchaseOrderNotFoundError(NotFoundError):
    def __init__(self, po_id):
        super().__init__("Purchase order", po_id, code="PURCHASE_ORDER_NOT_FOUND")


# =============================================================================
# Conflicts
# =============================================================================

class DuplicateBillNumberError(DomainError):
    """Raised when a bill number is already used within the project."""

    def __init__(self, bill_number: str, project_id: int):
        message = f"Bill number '{bill_number}' already exists in project '{project_id}'"
        super().__init__(message, code="DUPLICATE_BILL_NUMBER")
        self.bill_number = bill_number
        self.project_id = project_id


class DuplicateStructureError(DomainError):
    """Raised when a structure name is already used within the project."""

    def __init__(self, name: str, project_id: int):
        message = f"Structure '{name}' already exists in project '{project_id}'"
        super().__init__(message, code="DUPLICATE_STRUCTURE")
        self.name = name
        self.project_id = project_id


class BillHasPaymentsError(DomainError):
    """Raised when deleting a bill that already has payments recorded."""

    def __init__(self, bill_id: int, payment_count: int):
        message = (
            f"Cannot delete bill {bill_id}: {payment_count} payment(s) recorded. "
            f"Cancel the bill instead."
        )
        super().__init__(message, code="BILL_HAS_PAYMENTS")
        self.bill_id = bill_id
        self.payment_count = payment_count


class BillCancelledError(DomainError):
    """Raised when recording a payment on a cancelled bill."""

    def __init__(self, bill_id: int):
        super().__init__(f"Bill {bill_id} is cancelled", code="BILL_CANCELLED")
        self.bill_id = bill_id


class BudgetNodeInUseError(DomainError):
    """Raised when hard-deleting a node still referenced by bill items."""

    def __init__(self, node_id: int, item_count: int):
        message = (
            f"Cannot delete budget node {node_id}: referenced by {item_count} bill item(s). "
            f"Soft-delete or reassign the items first."
        )
        super().__init__(message, code="BUDGET_NODE_IN_USE")
        self.node_id = node_id
        self.item_count = item_count


class ImmutableFieldError(DomainError):
    """Raised when attempting to modify an immutable field."""

    def __init__(self, field_name: str, entity_type: str = "BudgetNode"):
        message = f"{entity_type} {field_name} cannot be modified once set."
        super().__init__(message, code="IMMUTABLE_FIELD")
        self.field_name = field_name
        self.entity_type = entity_type


class ConcurrencyError(DomainError):
    """Raised when an optimistic-lock retry loop is exhausted."""

    def __init__(self, entity_type: str, entity_id, attempts: int = 1):
        message = (
            f"{entity_type} {entity_id} was modified concurrently "
            f"({attempts} attempt(s)). Please retry."
        )
        super().__init__(message, code="CONCURRENCY_CONFLICT")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts


# =============================================================================
# Ledger integrity
# =============================================================================

class PartialAllocationFailure(DomainError):
    """
    Raised when an allocation pass fails after its payment was committed.
    The payment stands; the budget figures are stale until retried.
    """

    def __init__(self, payment_id: int, node_ids: List[int], reason: str):
        message = f"Allocation of payment {payment_id} failed: {reason}"
        super().__init__(message, code="PARTIAL_ALLOCATION_FAILURE")
        self.payment_id = payment_id
        self.node_ids = list(node_ids)
        self.reason = reason


class ReconciliationFailure(DomainError):
    """Raised when orphan reconciliation fails partway. Safe to retry."""

    def __init__(self, message: str, remaining: int = 0):
        super().__init__(message, code="RECONCILIATION_FAILURE")
        self.remaining = remaining


class LedgerStoreError(DomainError):
    """Wraps a store error with the operation and entities involved."""

    def __init__(self, operation: str, error: Exception, context: Optional[dict] = None):
        details = ", ".join(f"{k}={v}" for k, v in (context or {}).items())
        message = f"Store error during {operation}"
        if details:
            message += f" ({details})"
        message += f": {error}"
        super().__init__(message, code="STORE_ERROR")
        self.operation = operation
        self.context = context or {}
        self.__cause__ = error
