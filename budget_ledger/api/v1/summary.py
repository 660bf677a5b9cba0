"""
Summary API Endpoints - projection, totals cache, export and orphan repair.

Implements:
- GET  /api/v1/projects/{project_id}/summary             - Flattened tree + cached totals
- GET  /api/v1/projects/{project_id}/summary/export.csv  - CSV of the visible rows
- POST /api/v1/projects/{project_id}/summary/refresh     - Rebuild cached totals
- POST /api/v1/summary/populate-all                      - Rebuild every project's totals
- GET  /api/v1/projects/{project_id}/orphans             - List orphaned elements
- POST /api/v1/projects/{project_id}/orphans/fix         - Reattach orphaned elements
"""
import io
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from budget_ledger.models import get_db
from budget_ledger.domain.services import (
    OrphanReconciler,
    ProjectSummaryService,
    SummaryProjector,
)
from budget_ledger.domain.exceptions import NotFoundError

router = APIRouter()


# =============================================================================
# Pydantic Models
# =============================================================================

class SummaryRow(BaseModel):
    id: str
    name: str
    level: int
    original_cents: int
    actual_cents: int
    difference_cents: int
    paid_bills_cents: int
    external_bills_cents: int
    pending_bills_cents: int
    wages_cents: int
    has_children: bool
    is_synthetic: bool


class SummaryTotals(BaseModel):
    project_id: int
    structure_count: int
    element_count: int
    estimate_total_cents: int
    paid_bills_total_cents: int
    unpaid_bills_total_cents: int
    bills_difference_cents: int
    purchase_orders_total_cents: int
    wages_total_cents: int
    last_updated_at: Optional[str]
    is_stale: bool


class ProjectionResponse(BaseModel):
    project_id: int
    nodes: List[SummaryRow]
    totals: SummaryTotals
    is_stale: bool


class ReconciliationResponse(BaseModel):
    success: bool
    fixed_count: int
    message: str
    error: Optional[str]
    remaining: int
    structure_id: Optional[int]


class OrphanResponse(BaseModel):
    id: int
    name: str
    amount_cents: int
    structure_id: Optional[int]


class PopulateResponse(BaseModel):
    message: str


# =============================================================================
# Endpoints
# =============================================================================

@router.get(
    "/projects/{project_id}/summary",
    response_model=ProjectionResponse,
    summary="Get the project tree projection",
    description="Rows visible under the given expanded node ids (all collapsed by default)."
)
def get_projection(project_id: int, expanded: List[str] = Query(default=[]),
                   db: Session = Depends(get_db)):
    try:
        return SummaryProjector(db).project(project_id, expanded)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.get("/projects/{project_id}/summary/export.csv", summary="Export visible rows as CSV")
def export_projection(project_id: int, expanded: List[str] = Query(default=[]),
                      expand_all: bool = False, db: Session = Depends(get_db)):
    try:
        content = SummaryProjector(db).export_csv(project_id, expanded, expand_all=expand_all)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return StreamingResponse(
        io.StringIO(content),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=project_{project_id}_summary.csv"},
    )


@router.post(
    "/projects/{project_id}/summary/refresh",
    response_model=SummaryTotals,
    summary="Rebuild cached project totals"
)
def refresh_summary(project_id: int, db: Session = Depends(get_db)):
    service = ProjectSummaryService(db)
    try:
        service.refresh(project_id)
        return service.get(project_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post("/summary/populate-all", response_model=PopulateResponse,
             summary="Rebuild cached totals for every project")
def populate_all(db: Session = Depends(get_db)):
    return {"message": ProjectSummaryService(db).populate_all()}


@router.get("/projects/{project_id}/orphans", response_model=List[OrphanResponse],
            summary="List orphaned elements")
def list_orphans(project_id: int, db: Session = Depends(get_db)):
    try:
        orphans = OrphanReconciler(db).find_orphans(project_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return [
        {"id": e.id, "name": e.name, "amount_cents": e.amount_cents, "structure_id": e.structure_id}
        for e in orphans
    ]


@router.post(
    "/projects/{project_id}/orphans/fix",
    response_model=ReconciliationResponse,
    summary="Reattach orphaned elements",
    description="Idempotent; a failed run reports how many elements remain and can be retried."
)
def fix_orphans(project_id: int, db: Session = Depends(get_db)):
    try:
        return OrphanReconciler(db).fix_orphaned_elements(project_id).to_dict()
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
