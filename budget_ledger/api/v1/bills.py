"""
Bill API Endpoints - bills, payments and allocation retries.

Implements:
- POST   /api/v1/projects/{project_id}/bills          - Create bill with items
- GET    /api/v1/bills/{bill_id}                      - Get bill with items and payments
- DELETE /api/v1/bills/{bill_id}                      - Delete unpaid bill
- POST   /api/v1/bills/{bill_id}/cancel               - Cancel bill
- POST   /api/v1/bills/{bill_id}/duplicate            - Duplicate bill
- POST   /api/v1/bills/{bill_id}/payments             - Record payment
- POST   /api/v1/payments/{payment_id}/retry-allocation
- POST   /api/v1/payments/retry-allocations           - Retry all pending/failed
- POST   /api/v1/purchase-orders/{po_id}/bill         - Bill a purchase order
"""
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from budget_ledger.models import get_db, Bill
from budget_ledger.domain.services import BillLedgerService
from budget_ledger.domain.exceptions import (
    BillCancelledError,
    BillHasPaymentsError,
    ConcurrencyError,
    DuplicateBillNumberError,
    LedgerStoreError,
    NotFoundError,
    ValidationError,
)

router = APIRouter()


# =============================================================================
# Pydantic Models
# =============================================================================

class BillItemCreate(BaseModel):
    """Request model for one bill line."""
    description: Optional[str] = Field(None, max_length=500)
    quantity: float = Field(1.0, ge=0, description="Quantity")
    unit_cost_cents: int = Field(..., ge=0, description="Unit cost in cents")
    cost_control_item_id: Optional[int] = Field(None, description="Budget node charged")


class BillCreate(BaseModel):
    """Request model for creating a bill."""
    bill_number: Optional[str] = Field(None, max_length=50, description="Generated when omitted")
    name: Optional[str] = Field(None, max_length=200)
    supplier_id: Optional[int] = None
    purchase_order_id: Optional[int] = None
    bill_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    status: Optional[str] = Field(None, pattern="^(Draft|Pending)$")
    amount_cents: Optional[int] = Field(None, ge=0, description="Only for bills without items")
    items: List[BillItemCreate] = Field(default_factory=list)


class FromPurchaseOrder(BaseModel):
    bill_number: Optional[str] = Field(None, max_length=50)
    name: Optional[str] = Field(None, max_length=200)
    bill_date: Optional[date] = None
    due_date: Optional[date] = None


class BillItemResponse(BaseModel):
    id: int
    description: Optional[str]
    quantity: float
    unit_cost_cents: int
    amount_cents: int
    cost_control_item_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    id: int
    amount_cents: int
    payment_date: date
    method: str
    reference: Optional[str]
    note: Optional[str]
    status: str
    allocation_status: str

    model_config = ConfigDict(from_attributes=True)


class BillResponse(BaseModel):
    """Response model for a bill with items and payments."""
    id: int
    project_id: int
    bill_number: str
    name: Optional[str]
    supplier_id: Optional[int]
    purchase_order_id: Optional[int]
    amount_cents: int
    paid_amount_cents: int
    remaining_cents: int
    status: str
    bill_date: Optional[date]
    due_date: Optional[date]
    items: List[BillItemResponse]
    payments: List[PaymentResponse]

    model_config = ConfigDict(from_attributes=True)


class PaymentCreate(BaseModel):
    """
    Request model for recording a payment. Amount and method are checked by
    the ledger so that rule violations come back as 400 with a message.
    """
    amount_cents: int = Field(..., description="Payment amount in cents")
    payment_method: Optional[str] = Field(None, max_length=50)
    payment_date: Optional[date] = None
    reference: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None


class NodeDeltaResponse(BaseModel):
    node_id: int
    item_total_cents: int
    attributed_cents: int
    paid_bills_cents: int
    pending_bills_cents: int
    actual_cents: int


class PaymentResultResponse(BaseModel):
    payment_id: int
    bill_id: int
    amount_cents: int
    bill_status: str
    remaining_cents: int
    allocation_status: str
    deltas: List[NodeDeltaResponse]
    warning: Optional[str] = None
    error: Optional[str] = None


class RetrySummaryResponse(BaseModel):
    attempted: int
    applied: int
    failed: int


def _bill_response(bill: Bill) -> BillResponse:
    return BillResponse.model_validate(bill)


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "/projects/{project_id}/bills",
    response_model=BillResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a bill",
    description="Create a bill with items; linked budget nodes get the amounts as commitments."
)
def create_bill(project_id: int, bill_data: BillCreate, db: Session = Depends(get_db)):
    service = BillLedgerService(db)
    data = bill_data.model_dump(exclude={"items"}, exclude_none=True)
    items = [i.model_dump() for i in bill_data.items]

    try:
        bill = service.create_bill(project_id, data, items)
        return _bill_response(bill)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except (DuplicateBillNumberError, ConcurrencyError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except LedgerStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)


@router.get("/bills/{bill_id}", response_model=BillResponse, summary="Get bill by ID")
def get_bill(bill_id: int, db: Session = Depends(get_db)):
    try:
        return _bill_response(BillLedgerService(db).get_bill(bill_id))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.delete(
    "/bills/{bill_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an unpaid bill",
    description="Releases the bill's commitments. Bills with payments must be cancelled instead."
)
def delete_bill(bill_id: int, db: Session = Depends(get_db)):
    try:
        BillLedgerService(db).delete_bill(bill_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except (BillHasPaymentsError, ConcurrencyError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except LedgerStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)


@router.post("/bills/{bill_id}/cancel", response_model=BillResponse, summary="Cancel a bill")
def cancel_bill(bill_id: int, db: Session = Depends(get_db)):
    try:
        return _bill_response(BillLedgerService(db).cancel_bill(bill_id))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ConcurrencyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


@router.post(
    "/bills/{bill_id}/duplicate",
    response_model=BillResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate a bill"
)
def duplicate_bill(bill_id: int, db: Session = Depends(get_db)):
    try:
        return _bill_response(BillLedgerService(db).duplicate_bill(bill_id))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except (DuplicateBillNumberError, ConcurrencyError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


@router.post(
    "/bills/{bill_id}/payments",
    response_model=PaymentResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a payment",
    description=(
        "Record a payment and allocate it across the bill's budget nodes. "
        "If allocation fails the payment still stands and a warning is returned."
    )
)
def record_payment(bill_id: int, payment: PaymentCreate, db: Session = Depends(get_db)):
    service = BillLedgerService(db)
    try:
        result = service.record_payment(
            bill_id=bill_id,
            amount_cents=payment.amount_cents,
            method=payment.payment_method,
            payment_date=payment.payment_date,
            reference=payment.reference,
            note=payment.note,
        )
        return result.to_dict()
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except (ValidationError, BillCancelledError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ConcurrencyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except LedgerStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)


@router.post(
    "/payments/retry-allocations",
    response_model=RetrySummaryResponse,
    summary="Retry every pending or failed allocation"
)
def retry_allocations(project_id: Optional[int] = None, db: Session = Depends(get_db)):
    return BillLedgerService(db).retry_failed_allocations(project_id)


@router.post(
    "/payments/{payment_id}/retry-allocation",
    response_model=PaymentResultResponse,
    summary="Retry one payment's allocation"
)
def retry_allocation(payment_id: int, db: Session = Depends(get_db)):
    try:
        return BillLedgerService(db).retry_allocation(payment_id).to_dict()
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post(
    "/purchase-orders/{po_id}/bill",
    response_model=BillResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a bill from a purchase order"
)
def bill_purchase_order(po_id: int, bill_data: Optional[FromPurchaseOrder] = None,
                        db: Session = Depends(get_db)):
    data = bill_data.model_dump(exclude_none=True) if bill_data else {}
    try:
        return _bill_response(BillLedgerService(db).create_bill_from_purchase_order(po_id, data))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except (DuplicateBillNumberError, ConcurrencyError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
