"""
Budget Ledger - FastAPI application with background maintenance jobs.
"""
import logging
from datetime import date

from fastapi import FastAPI
from apscheduler.schedulers.background import BackgroundScheduler

from budget_ledger import __version__
from budget_ledger.config import get_config
from budget_ledger.models import SessionLocal, get_db, init_db  # noqa: F401
from budget_ledger.api.v1 import api_router as v1_router
from budget_ledger.domain.services import BillLedgerService, ProjectSummaryService

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Budget Ledger",
    description="Bills, payments and budget rollups for construction projects",
    version=__version__
)

app.include_router(v1_router)


@app.on_event("startup")
async def startup_event():
    init_db()
    setup_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


scheduler = None

def setup_scheduler():
    global scheduler
    config = get_config()
    scheduler = BackgroundScheduler()

    # Stale summary totals
    scheduler.add_job(refresh_stale_summaries, 'interval', minutes=config.refresh_interval_minutes)

    # Payments whose allocation is still pending or failed
    scheduler.add_job(retry_allocations, 'interval', minutes=config.refresh_interval_minutes)

    # Overdue bills once a day
    scheduler.add_job(mark_overdue, 'cron', hour=config.overdue_check_hour, minute=0)

    scheduler.start()


def refresh_stale_summaries():
    """Background job rebuilding summaries that were invalidated or aged out."""
    db = SessionLocal()
    try:
        refreshed = ProjectSummaryService(db).refresh_stale()
        if refreshed:
            logger.info(f"Refreshed {len(refreshed)} stale summaries")
    except Exception as e:
        logger.error(f"Summary refresh job failed: {e}")
    finally:
        db.close()


def retry_allocations():
    db = SessionLocal()
    try:
        outcome = BillLedgerService(db).retry_failed_allocations()
        if outcome["attempted"]:
            logger.info(
                f"Allocation retry: {outcome['applied']} applied, {outcome['failed']} still failing"
            )
    except Exception as e:
        logger.error(f"Allocation retry job failed: {e}")
    finally:
        db.close()


def mark_overdue():
    db = SessionLocal()
    try:
        BillLedgerService(db).mark_overdue_bills(date.today())
    except Exception as e:
        logger.error(f"Overdue check failed: {e}")
    finally:
        db.close()
