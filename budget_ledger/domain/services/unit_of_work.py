"""
Unit of Work helpers - run one logical ledger operation as one transaction.

Optimistic locking (version_id columns) turns a lost update into
StaleDataError at flush time. run_in_transaction rolls back, re-runs the
whole operation from fresh reads, and gives up with ConcurrencyError after
the configured number of attempts. Store errors are wrapped with context.
"""
import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from budget_ledger.config import get_config
from budget_ledger.domain.exceptions import (
    ConcurrencyError,
    DomainError,
    LedgerStoreError,
)

logger = logging.getLogger(__name__)

R = TypeVar('R')


def run_in_transaction(
    session: Session,
    operation: Callable[[], R],
    *,
    entity_type: str,
    entity_id,
    operation_name: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> R:
    """
    Execute operation and commit, retrying on optimistic-lock conflicts.

    Args:
        session: Session the operation works in
        operation: Zero-argument callable doing the reads and writes
        entity_type: Entity named in errors (e.g. 'Bill')
        entity_id: Its identifier
        operation_name: Label for logs and wrapped store errors
        max_attempts: Override of concurrency.max_attempts

    Returns:
        Whatever operation returns

    Raises:
        ConcurrencyError: Conflicts persisted through every attempt
        LedgerStoreError: Any other store failure, with context
        DomainError: Business rule violations raised by the operation
    """
    attempts = max_attempts or get_config().max_attempts
    name = operation_name or f"{entity_type.lower()} update"

    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            session.commit()
            return result
        except StaleDataError:
            session.rollback()
            logger.warning(
                f"Concurrent modification during {name} on {entity_type} {entity_id} "
                f"(attempt {attempt}/{attempts})"
            )
        except DomainError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise LedgerStoreError(name, e, {entity_type.lower(): entity_id}) from e

    raise ConcurrencyError(entity_type, entity_id, attempts)
