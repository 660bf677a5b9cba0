"""
API v1 - REST endpoints for the budget ledger.

- Bill endpoints (create, delete, cancel, duplicate, payments, allocation retries)
- Budget node endpoints (nodes, status classification, rollups, estimate sync)
- Summary endpoints (projection, CSV export, totals cache, orphan repair)
"""
from fastapi import APIRouter

from .bills import router as bills_router
from .budget_nodes import router as budget_nodes_router
from .summary import router as summary_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(bills_router, tags=["Bills"])
api_router.include_router(budget_nodes_router, tags=["Budget Nodes"])
api_router.include_router(summary_router, tags=["Summary"])
