"""
Budget Node API Endpoints - the budget tree and its maintenance operations.

Implements:
- POST   /api/v1/projects/{project_id}/budget-nodes       - Create node
- GET    /api/v1/budget-nodes/{node_id}                   - Get node with derived figures
- GET    /api/v1/budget-nodes/{node_id}/status            - Classify a commitment
- POST   /api/v1/budget-nodes/{node_id}/direct-charges    - Book external bills / wages
- DELETE /api/v1/budget-nodes/{node_id}                   - Soft (default) or hard delete
- POST   /api/v1/projects/{project_id}/rollups/rebuild    - Recompute every parent
- GET    /api/v1/projects/{project_id}/rollups/verify     - List rollup violations
- POST   /api/v1/projects/{project_id}/estimate/sync      - Mirror estimate into tree
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from budget_ledger.models import get_db, BudgetNode
from budget_ledger.infrastructure.repositories import BudgetNodeRepository, ProjectRepository
from budget_ledger.domain.services import (
    BillLedgerService,
    BudgetStatusClassifier,
    EstimateSyncService,
    RollupPropagator,
    run_in_transaction,
)
from budget_ledger.domain.exceptions import (
    BudgetNodeInUseError,
    ConcurrencyError,
    NotFoundError,
    ValidationError,
)

router = APIRouter()


# =============================================================================
# Pydantic Models
# =============================================================================

class BudgetNodeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    parent_id: Optional[int] = None
    budget_amount_cents: Optional[int] = Field(None, ge=0)
    order_index: int = 0


class BudgetNodeResponse(BaseModel):
    """Budget node with accumulators and derived figures."""
    id: int
    project_id: int
    parent_id: Optional[int]
    name: str
    level: int
    is_parent: bool
    is_deleted: bool
    budget_amount_cents: Optional[int]
    paid_bills_cents: int
    pending_bills_cents: int
    external_bills_cents: int
    wages_cents: int
    actual_cents: int
    difference_cents: int
    available_budget_cents: int

    model_config = ConfigDict(from_attributes=True)


class BudgetStatusResponse(BaseModel):
    status: str
    message: str
    remaining_cents: int


class DirectChargeCreate(BaseModel):
    kind: str = Field(..., pattern="^(external_bills|wages)$")
    amount_cents: int
    note: Optional[str] = None


class RollupViolationResponse(BaseModel):
    node_id: int
    field: str
    expected: int
    actual: int


class RollupRebuildResponse(BaseModel):
    project_id: int
    corrected: int


class SyncResponse(BaseModel):
    project_id: int
    created_structures: int
    created_elements: int
    reparented: List[int]
    skipped_orphans: int


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "/projects/{project_id}/budget-nodes",
    response_model=BudgetNodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a budget node"
)
def create_node(project_id: int, node_data: BudgetNodeCreate, db: Session = Depends(get_db)):
    repo = BudgetNodeRepository(db)
    try:
        ProjectRepository(db).get_or_raise(project_id)
        return run_in_transaction(
            db,
            lambda: repo.create(project_id=project_id, **node_data.model_dump()),
            entity_type="Project", entity_id=project_id, operation_name="create budget node",
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.get("/budget-nodes/{node_id}", response_model=BudgetNodeResponse, summary="Get budget node")
def get_node(node_id: int, db: Session = Depends(get_db)):
    try:
        return BudgetNodeRepository(db).get_or_raise(node_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.get(
    "/budget-nodes/{node_id}/status",
    response_model=BudgetStatusResponse,
    summary="Classify a commitment against a node's available budget"
)
def get_node_status(node_id: int, committed_cents: int = 0, db: Session = Depends(get_db)):
    try:
        node: BudgetNode = BudgetNodeRepository(db).get_or_raise(node_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return BudgetStatusClassifier().classify(node.available_budget_cents, committed_cents).to_dict()


@router.post(
    "/budget-nodes/{node_id}/direct-charges",
    response_model=BudgetNodeResponse,
    summary="Book external bills or wages on a leaf node"
)
def post_direct_charge(node_id: int, charge: DirectChargeCreate, db: Session = Depends(get_db)):
    try:
        return BillLedgerService(db).post_direct_charge(
            node_id, charge.kind, charge.amount_cents, charge.note
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ConcurrencyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


@router.delete(
    "/budget-nodes/{node_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a budget node",
    description="Soft-deletes by default; hard deletion is refused while bill items reference the node."
)
def delete_node(node_id: int, hard: bool = False, db: Session = Depends(get_db)):
    repo = BudgetNodeRepository(db)
    operation = (lambda: repo.hard_delete(node_id)) if hard else (lambda: repo.soft_delete(node_id))
    try:
        run_in_transaction(
            db, operation,
            entity_type="BudgetNode", entity_id=node_id, operation_name="delete budget node",
        )
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except BudgetNodeInUseError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


@router.post(
    "/projects/{project_id}/rollups/rebuild",
    response_model=RollupRebuildResponse,
    summary="Recompute every parent node from its children"
)
def rebuild_rollups(project_id: int, db: Session = Depends(get_db)):
    try:
        ProjectRepository(db).get_or_raise(project_id)
        corrected = run_in_transaction(
            db, lambda: RollupPropagator(db).rebuild_project(project_id),
            entity_type="Project", entity_id=project_id, operation_name="rebuild rollups",
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return {"project_id": project_id, "corrected": corrected}


@router.get(
    "/projects/{project_id}/rollups/verify",
    response_model=List[RollupViolationResponse],
    summary="List parents whose totals differ from their children"
)
def verify_rollups(project_id: int, db: Session = Depends(get_db)):
    try:
        ProjectRepository(db).get_or_raise(project_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return [v.to_dict() for v in RollupPropagator(db).verify_project(project_id)]


@router.post(
    "/projects/{project_id}/estimate/sync",
    response_model=SyncResponse,
    summary="Create budget nodes for estimate structures and elements"
)
def sync_estimate(project_id: int, db: Session = Depends(get_db)):
    try:
        return EstimateSyncService(db).sync_project(project_id).to_dict()
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
