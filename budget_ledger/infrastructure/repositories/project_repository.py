"""
Project Repository - Data access for projects and their summary cache rows.
"""
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session

from budget_ledger.models import Project, ProjectSummary
from budget_ledger.domain.exceptions import ProjectNotFoundError
from .base_repository import BaseRepository


class ProjectRepository(BaseRepository[Project]):
    """Repository for Project entities."""

    not_found_error = ProjectNotFoundError

    def __init__(self, session: Session):
        super().__init__(session, Project)

    def create(self, name: str, project_number: Optional[str] = None,
               description: Optional[str] = None) -> Project:
        project = Project(
            uuid=str(uuid.uuid4()),
            name=name,
            project_number=project_number,
            description=description,
            created_at=datetime.utcnow(),
        )
        self.session.add(project)
        self.session.flush()
        return project

    def get_all_ids(self) -> List[int]:
        return [row[0] for row in self.session.query(Project.id).order_by(Project.id).all()]


class ProjectSummaryRepository(BaseRepository[ProjectSummary]):
    """Repository for the one-row-per-project summary cache."""

    def __init__(self, session: Session):
        super().__init__(session, ProjectSummary)

    def get_by_project(self, project_id: int) -> Optional[ProjectSummary]:
        return self.session.query(ProjectSummary).filter(
            ProjectSummary.project_id == project_id
        ).first()

    def get_or_create(self, project_id: int) -> ProjectSummary:
        summary = self.get_by_project(project_id)
        if summary is None:
            summary = ProjectSummary(project_id=project_id)
            self.session.add(summary)
        return summary

    def get_stale_project_ids(self) -> List[int]:
        rows = self.session.query(ProjectSummary.project_id).filter(
            ProjectSummary.is_stale.is_(True)
        ).order_by(ProjectSummary.project_id).all()
        return [row[0] for row in rows]

    def mark_stale(self, project_id: int) -> int:
        """Flag a project's cached totals as stale. Returns rows updated."""
        return self.session.query(ProjectSummary).filter(
            ProjectSummary.project_id == project_id
        ).update({'is_stale': True}, synchronize_session='fetch')
