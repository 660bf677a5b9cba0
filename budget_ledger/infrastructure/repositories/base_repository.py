"""
Base Repository - shared lookups for the ledger repositories.

Repositories hold no business rules beyond existence and uniqueness checks;
they flush when callers need generated ids but never commit.
"""
from typing import Callable, Generic, TypeVar, List, Optional, Type
from sqlalchemy.orm import Session

from budget_ledger.models import Base
from budget_ledger.domain.exceptions import DomainError

T = TypeVar('T', bound=Base)


class BaseRepository(Generic[T]):
    """
    Lookups by primary key and by project for one model class.

    Subclasses set ``not_found_error`` to the DomainError raised by
    get_or_raise for a missing row.
    """

    not_found_error: Optional[Callable[[int], DomainError]] = None

    def __init__(self, session: Session, model_class: Type[T]):
        self.session = session
        self.model_class = model_class

    def get_by_id(self, entity_id: int) -> Optional[T]:
        return self.session.get(self.model_class, entity_id)

    def get_or_raise(self, entity_id: int) -> T:
        """
        Load a row or raise the entity's not-found error.

        Raises:
            NotFoundError subclass for the entity (LookupError when the
            repository declares none)
        """
        entity = self.get_by_id(entity_id)
        if entity is not None:
            return entity
        if self.not_found_error is None:
            raise LookupError(f"{self.model_class.__name__} {entity_id} not found")
        raise self.not_found_error(entity_id)

    def get_for_project(self, project_id: int) -> List[T]:
        """Rows of one project in id order."""
        return self.session.query(self.model_class).filter(
            self.model_class.project_id == project_id
        ).order_by(self.model_class.id).all()

    def delete(self, entity: T) -> None:
        self.session.delete(entity)
