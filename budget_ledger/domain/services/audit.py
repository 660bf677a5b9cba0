"""
Audit helpers - best-effort activity trail and error records.

Both run in their own short transaction after the business transaction has
committed. A failure to write the activity trail is logged and dropped;
the ledger operation it describes has already happened.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from budget_ledger.infrastructure.repositories import (
    ActivityLogRepository,
    LedgerErrorLogRepository,
)

logger = logging.getLogger(__name__)


def record_activity(session: Session, action: str, entity_type: str,
                    entity_id: Optional[int], project_id: Optional[int] = None,
                    details: Optional[dict] = None) -> bool:
    """Write one activity_log row. Returns False if the write failed."""
    try:
        ActivityLogRepository(session).record(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            project_id=project_id,
            details=details,
        )
        session.commit()
        return True
    except SQLAlchemyError as e:
        session.rollback()
        logger.warning(f"Could not write activity '{action}' for {entity_type} {entity_id}: {e}")
        return False


def record_ledger_error(session: Session, operation: str, message: str,
                        project_id: Optional[int] = None, bill_id: Optional[int] = None,
                        payment_id: Optional[int] = None,
                        node_ids: Optional[Iterable[int]] = None) -> bool:
    """
    Write an error record for manual reconciliation.

    The error is also logged at ERROR level with the same context, so it is
    never lost even if the record cannot be stored.
    """
    node_ids = list(node_ids or [])
    logger.error(
        f"{operation} failed (project={project_id}, bill={bill_id}, "
        f"payment={payment_id}, nodes={node_ids}): {message}"
    )
    try:
        LedgerErrorLogRepository(session).record(
            operation=operation,
            message=message,
            project_id=project_id,
            bill_id=bill_id,
            payment_id=payment_id,
            node_ids=node_ids,
        )
        session.commit()
        return True
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Could not store error record for {operation}: {e}")
        return False
