"""
Project persistence.

ProjectStore reads and writes Project rows and their PDF files. Change logs
are stored as JSON and converted to ChangeInstruction objects at this
boundary, so every stored entry is validated when it is loaded.
"""

import hashlib
import logging
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.db import FILE_ROLES, ROLE_ADDENDUM, Project, ProjectFile
from conform_engine.errors import InstructionValidationError
from conform_engine.models import (
    ChangeInstruction,
    ChangeStatus,
    ParsedPlan,
    QAndAItem,
    next_change_id,
)

logger = logging.getLogger(__name__)


class ProjectNotFoundError(Exception):
    """No project with the requested id."""


class ChangeNotFoundError(Exception):
    """A change id does not exist in the project's change log."""


# Fields a reviewer may edit by hand
EDITABLE_FIELDS = (
    "description",
    "exact_text_to_find",
    "new_text_to_insert",
    "location_hint",
    "spec_section",
    "discipline",
    "target_page_number",
    "source_page",
    "insert_after_original_page_number",
    "original_page_number",
)


def compute_hash_from_bytes(file_data: bytes) -> str:
    """Compute SHA-256 hash from binary data."""
    return hashlib.sha256(file_data).hexdigest()


class ProjectStore:
    """Database access for conforming projects."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    def create_project(self, project_name: str) -> Project:
        project = Project(project_name=project_name, change_log=[], qa_log=[], quarantined=[])
        self.db.add(project)
        self.db.commit()
        self.db.refresh(project)
        logger.info(f"Created project {project.id} ({project_name})")
        return project

    def list_projects(self) -> List[Project]:
        return self.db.query(Project).order_by(Project.created_at.desc()).all()

    def get_project(self, project_id: UUID) -> Project:
        project = self.db.query(Project).filter(Project.id == project_id).first()
        if project is None:
            raise ProjectNotFoundError(f"Project not found: {project_id}")
        return project

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def store_file(
        self,
        project: Project,
        role: str,
        filename: str,
        data: bytes,
        page_count: Optional[int] = None,
    ) -> ProjectFile:
        """
        Store a PDF for ``project``.

        A project has at most one file per base role; uploading a new base
        document replaces the previous one. Addenda are keyed by filename.
        """
        if role not in FILE_ROLES:
            raise ValueError(f"Unknown file role: {role}")

        query = self.db.query(ProjectFile).filter(
            ProjectFile.project_id == project.id,
            ProjectFile.role == role,
        )
        if role == ROLE_ADDENDUM:
            query = query.filter(ProjectFile.filename == filename)
        for existing in query.all():
            self.db.delete(existing)
        self.db.flush()

        record = ProjectFile(
            project_id=project.id,
            role=role,
            filename=filename,
            file_hash=compute_hash_from_bytes(data),
            file_data=data,
            file_size=len(data),
            page_count=page_count,
        )
        self.db.add(record)

        if role != ROLE_ADDENDUM:
            setattr(project, f"{role}_page_count", page_count)

        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Stored {role} '{filename}' for project {project.id} ({len(data)} bytes)")
        return record

    def list_files(self, project: Project, role: Optional[str] = None) -> List[ProjectFile]:
        query = self.db.query(ProjectFile).filter(ProjectFile.project_id == project.id)
        if role is not None:
            query = query.filter(ProjectFile.role == role)
        return query.order_by(ProjectFile.created_at).all()

    def get_file(self, project: Project, role: str, filename: Optional[str] = None) -> Optional[ProjectFile]:
        query = self.db.query(ProjectFile).filter(
            ProjectFile.project_id == project.id,
            ProjectFile.role == role,
        )
        if filename is not None:
            query = query.filter(ProjectFile.filename == filename)
        return query.first()

    # -------------------------------------------------------------------------
    # Change log
    # -------------------------------------------------------------------------

    def load_change_log(self, project: Project) -> List[ChangeInstruction]:
        return [ChangeInstruction.from_dict(item) for item in project.change_log or []]

    def load_qa_log(self, project: Project) -> List[QAndAItem]:
        return [QAndAItem.from_dict(item) for item in project.qa_log or []]

    def save_change_log(self, project: Project, change_log: Iterable[ChangeInstruction]) -> None:
        # Reassign so SQLAlchemy sees the JSON column as modified
        project.change_log = [c.to_dict() for c in change_log]
        self.db.commit()

    def append_plan(self, project: Project, plan: ParsedPlan) -> List[ChangeInstruction]:
        """Add a parsed conforming plan to the project's logs."""
        change_log = self.load_change_log(project) + list(plan.change_instructions)
        project.change_log = [c.to_dict() for c in change_log]
        project.qa_log = list(project.qa_log or []) + [q.to_dict() for q in plan.questions_and_answers]
        project.quarantined = list(project.quarantined or []) + [q.to_dict() for q in plan.quarantined]
        self.db.commit()
        return change_log

    def next_id(self, project: Project) -> int:
        """First id free for both changes and Q&A items."""
        qa_ids = [q.id for q in self.load_qa_log(project) if q.id is not None]
        return max(next_change_id(self.load_change_log(project)), max(qa_ids, default=-1) + 1)

    @staticmethod
    def _find(change_log: List[ChangeInstruction], change_id: int) -> ChangeInstruction:
        for change in change_log:
            if change.id == change_id:
                return change
        raise ChangeNotFoundError(f"Change not found: {change_id}")

    def update_statuses(
        self,
        project: Project,
        change_ids: Iterable[int],
        status: ChangeStatus,
    ) -> List[ChangeInstruction]:
        """Set ``status`` on every listed change in one commit."""
        change_log = self.load_change_log(project)
        for change_id in change_ids:
            self._find(change_log, change_id).status = status
        self.save_change_log(project, change_log)
        return change_log

    def update_change(self, project: Project, change_id: int, fields: Dict[str, Any]) -> ChangeInstruction:
        """
        Apply reviewer edits to one change.

        Raises:
            InstructionValidationError: a field is not editable or the result
                is not a valid instruction
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise InstructionValidationError(f"Fields cannot be edited: {sorted(unknown)}")

        change_log = self.load_change_log(project)
        change = self._find(change_log, change_id)
        updated = ChangeInstruction.from_dict({**change.to_dict(), **fields, "is_manual": True})
        change_log[change_log.index(change)] = updated
        self.save_change_log(project, change_log)
        return updated

    def place_change(
        self,
        project: Project,
        change_id: int,
        page_number: int,
        exact_text: Optional[str] = None,
    ) -> ChangeInstruction:
        """Manually place a change on a page, optionally pinning its text."""
        change_log = self.load_change_log(project)
        change = self._find(change_log, change_id)
        change.assign_page(page_number)
        if exact_text:
            change.exact_text_to_find = exact_text
        change.is_manual = True
        self.save_change_log(project, change_log)
        return change

    def save_reports(self, project: Project, **reports: Any) -> None:
        """Store triage_report, executive_summary and/or cost_analysis."""
        for name, value in reports.items():
            setattr(project, name, value)
        self.db.commit()

    def reset(self, project: Project) -> None:
        """Clear the change log, Q&A log, reports and addenda; keep base documents."""
        project.change_log = []
        project.qa_log = []
        project.quarantined = []
        project.triage_report = None
        project.executive_summary = None
        project.cost_analysis = None
        for record in self.list_files(project, ROLE_ADDENDUM):
            self.db.delete(record)
        self.db.commit()
        logger.info(f"Reset project {project.id}")
