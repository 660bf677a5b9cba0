"""
Estimate Repository - Data access for estimate structures and elements.

Orphan detection lives here so the projection and the reconciler agree on
what an orphan is: an element whose structure_id is NULL or points at a
structure row that no longer exists.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy import or_, and_
from sqlalchemy.orm import Session

from budget_ledger.models import EstimateStructure, EstimateElement
from budget_ledger.domain.exceptions import DuplicateStructureError, NotFoundError
from .base_repository import BaseRepository


class EstimateRepository(BaseRepository[EstimateStructure]):
    """Repository for the estimate-side structure/element pair."""

    not_found_error = staticmethod(lambda structure_id: NotFoundError("Estimate structure", structure_id))

    def __init__(self, session: Session):
        super().__init__(session, EstimateStructure)

    # -------------------------------------------------------------------------
    # Structures
    # -------------------------------------------------------------------------

    def get_structures(self, project_id: int) -> List[EstimateStructure]:
        return self.get_for_project(project_id)

    def find_structure_by_name(self, project_id: int, name: str) -> Optional[EstimateStructure]:
        """Oldest structure with exactly this name."""
        return self.session.query(EstimateStructure).filter(
            EstimateStructure.project_id == project_id,
            EstimateStructure.name == name,
        ).order_by(EstimateStructure.id).first()

    def create_structure(self, project_id: int, name: str, amount_cents: int = 0,
                         order_index: int = 0) -> EstimateStructure:
        """
        Create a structure, refusing a name already used in the project.

        Raises:
            DuplicateStructureError: If (project_id, name) is taken
        """
        if self.find_structure_by_name(project_id, name) is not None:
            raise DuplicateStructureError(name, project_id)
        structure = EstimateStructure(
            project_id=project_id,
            name=name,
            amount_cents=amount_cents,
            order_index=order_index,
            created_at=datetime.utcnow(),
        )
        self.session.add(structure)
        self.session.flush()
        return structure

    # -------------------------------------------------------------------------
    # Elements
    # -------------------------------------------------------------------------

    def get_elements(self, project_id: int) -> List[EstimateElement]:
        return self.session.query(EstimateElement).filter(
            EstimateElement.project_id == project_id
        ).order_by(EstimateElement.id).all()

    def get_element(self, element_id: int) -> EstimateElement:
        element = self.session.get(EstimateElement, element_id)
        if element is None:
            raise NotFoundError("Estimate element", element_id)
        return element

    def create_element(self, project_id: int, name: str, amount_cents: int = 0,
                       structure_id: Optional[int] = None,
                       order_index: int = 0) -> EstimateElement:
        element = EstimateElement(
            project_id=project_id,
            structure_id=structure_id,
            name=name,
            amount_cents=amount_cents,
            order_index=order_index,
            created_at=datetime.utcnow(),
        )
        self.session.add(element)
        self.session.flush()
        return element

    def get_orphaned_elements(self, project_id: int) -> List[EstimateElement]:
        """Elements with a NULL or dangling structure reference."""
        return self.session.query(EstimateElement).outerjoin(
            EstimateStructure,
            and_(
                EstimateStructure.id == EstimateElement.structure_id,
                EstimateStructure.project_id == EstimateElement.project_id,
            ),
        ).filter(
            EstimateElement.project_id == project_id,
            or_(
                EstimateElement.structure_id.is_(None),
                EstimateStructure.id.is_(None),
            ),
        ).order_by(EstimateElement.id).all()

    def reassign_elements(self, element_ids: List[int], structure_id: int) -> int:
        """
        Bulk re-point elements to a structure.

        Returns:
            Number of rows updated
        """
        if not element_ids:
            return 0
        count = self.session.query(EstimateElement).filter(
            EstimateElement.id.in_(element_ids)
        ).update(
            {'structure_id': structure_id, 'updated_at': datetime.utcnow()},
            synchronize_session='fetch',
        )
        return count
