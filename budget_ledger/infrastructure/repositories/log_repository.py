"""
Log Repositories - activity trail and ledger error records.
"""
import json
from datetime import datetime
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session

from budget_ledger.models import ActivityLog, LedgerErrorLog
from .base_repository import BaseRepository


class ActivityLogRepository(BaseRepository[ActivityLog]):

    def __init__(self, session: Session):
        super().__init__(session, ActivityLog)

    def record(self, action: str, entity_type: str, entity_id: Optional[int],
               project_id: Optional[int] = None, details: Optional[dict] = None) -> ActivityLog:
        entry = ActivityLog(
            project_id=project_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            details=json.dumps(details, default=str) if details else None,
            created_at=datetime.utcnow(),
        )
        self.session.add(entry)
        return entry

    def get_by_action(self, action: str) -> List[ActivityLog]:
        return self.session.query(ActivityLog).filter(
            ActivityLog.action == action
        ).order_by(ActivityLog.id).all()


class LedgerErrorLogRepository(BaseRepository[LedgerErrorLog]):
    """Error records awaiting manual or automatic reconciliation."""

    def __init__(self, session: Session):
        super().__init__(session, LedgerErrorLog)

    def record(self, operation: str, message: str, project_id: Optional[int] = None,
               bill_id: Optional[int] = None, payment_id: Optional[int] = None,
               node_ids: Optional[Iterable[int]] = None) -> LedgerErrorLog:
        entry = LedgerErrorLog(
            project_id=project_id,
            operation=operation,
            bill_id=bill_id,
            payment_id=payment_id,
            node_ids=json.dumps(sorted(set(node_ids))) if node_ids else None,
            message=message,
            resolved=False,
            created_at=datetime.utcnow(),
        )
        self.session.add(entry)
        return entry

    def get_unresolved(self, operation: Optional[str] = None) -> List[LedgerErrorLog]:
        query = self.session.query(LedgerErrorLog).filter(LedgerErrorLog.resolved.is_(False))
        if operation:
            query = query.filter(LedgerErrorLog.operation == operation)
        return query.order_by(LedgerErrorLog.id).all()

    def resolve_for_payment(self, payment_id: int) -> int:
        return self.session.query(LedgerErrorLog).filter(
            LedgerErrorLog.payment_id == payment_id,
            LedgerErrorLog.resolved.is_(False),
        ).update(
            {'resolved': True, 'resolved_at': datetime.utcnow()},
            synchronize_session='fetch',
        )
