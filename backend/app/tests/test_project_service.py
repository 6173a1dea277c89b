"""
Tests for ProjectStore against an in-memory SQLite database.
"""

import uuid

import pytest

from app.db import ROLE_ADDENDUM, ROLE_BASE_SPECS, ProjectFile
from app.services.project_service import (
    ChangeNotFoundError,
    ProjectNotFoundError,
    ProjectStore,
    compute_hash_from_bytes,
)
from conform_engine.errors import InstructionValidationError
from conform_engine.models import ChangeStatus, parse_ai_plan


@pytest.fixture
def store(db_session):
    return ProjectStore(db_session)


@pytest.fixture
def project(store):
    return store.create_project("Riverside Library")


@pytest.fixture
def planned_project(store, project, raw_plan):
    store.append_plan(project, parse_ai_plan(raw_plan, store.next_id(project)))
    return project


class TestProjects:

    def test_create_and_get(self, store, project):
        loaded = store.get_project(project.id)
        assert loaded.project_name == "Riverside Library"
        assert loaded.change_log == []
        assert store.list_projects() == [loaded]

    def test_unknown_project_raises(self, store):
        with pytest.raises(ProjectNotFoundError):
            store.get_project(uuid.uuid4())


class TestFiles:
    """Base documents are single-slot; addenda are keyed by filename."""

    def test_store_base_document(self, store, project, specs_pdf):
        record = store.store_file(project, ROLE_BASE_SPECS, "specs.pdf", specs_pdf, page_count=3)

        assert record.file_hash == compute_hash_from_bytes(specs_pdf)
        assert record.file_size == len(specs_pdf)
        assert project.base_specs_page_count == 3
        assert store.get_file(project, ROLE_BASE_SPECS).filename == "specs.pdf"

    def test_new_base_document_replaces_previous(self, store, project, specs_pdf):
        store.store_file(project, ROLE_BASE_SPECS, "specs_v1.pdf", specs_pdf, page_count=3)
        store.store_file(project, ROLE_BASE_SPECS, "specs_v2.pdf", b"%PDF-v2", page_count=5)

        files = store.list_files(project, ROLE_BASE_SPECS)
        assert [f.filename for f in files] == ["specs_v2.pdf"]
        assert project.base_specs_page_count == 5

    def test_addenda_accumulate_by_filename(self, store, project, addendum_pdf):
        store.store_file(project, ROLE_ADDENDUM, "Addendum1.pdf", addendum_pdf)
        store.store_file(project, ROLE_ADDENDUM, "Addendum2.pdf", addendum_pdf)
        store.store_file(project, ROLE_ADDENDUM, "Addendum1.pdf", b"%PDF-reissued")

        files = store.list_files(project, ROLE_ADDENDUM)
        assert sorted(f.filename for f in files) == ["Addendum1.pdf", "Addendum2.pdf"]
        assert store.get_file(project, ROLE_ADDENDUM, "Addendum1.pdf").file_data == b"%PDF-reissued"

    def test_unknown_role_rejected(self, store, project):
        with pytest.raises(ValueError):
            store.store_file(project, "photos", "site.pdf", b"%PDF")


class TestChangeLog:

    def test_append_plan_persists_changes_qa_and_quarantine(self, store, planned_project):
        change_log = store.load_change_log(planned_project)

        assert [c.id for c in change_log] == [1, 2]
        assert [q.id for q in store.load_qa_log(planned_project)] == [0]
        assert len(planned_project.quarantined) == 1
        assert change_log[0].addendum_name == "Addendum1.pdf"

    def test_next_id_follows_changes_and_qa(self, store, project, planned_project, raw_plan):
        assert store.next_id(project) == 3

        store.append_plan(project, parse_ai_plan(raw_plan, store.next_id(project)))
        ids = [c.id for c in store.load_change_log(project)] + [q.id for q in store.load_qa_log(project)]
        assert len(ids) == len(set(ids))

    def test_update_statuses(self, store, planned_project):
        store.update_statuses(planned_project, [1, 2], ChangeStatus.REJECTED)
        assert {c.status for c in store.load_change_log(planned_project)} == {ChangeStatus.REJECTED}

    def test_update_statuses_unknown_id(self, store, planned_project):
        with pytest.raises(ChangeNotFoundError):
            store.update_statuses(planned_project, [1, 99], ChangeStatus.APPROVED)
        # Nothing was committed
        assert store.load_change_log(planned_project)[0].status == ChangeStatus.APPROVED

    def test_update_change_marks_manual(self, store, planned_project):
        updated = store.update_change(planned_project, 1, {"new_text_to_insert": "aluminum"})

        assert updated.new_text_to_insert == "aluminum"
        assert updated.is_manual is True
        assert store.load_change_log(planned_project)[0].new_text_to_insert == "aluminum"

    def test_update_change_rejects_protected_fields(self, store, planned_project):
        with pytest.raises(InstructionValidationError):
            store.update_change(planned_project, 1, {"change_type": "PAGE_DELETE"})

    def test_update_change_rejects_bad_page_value(self, store, planned_project):
        with pytest.raises(InstructionValidationError):
            store.update_change(planned_project, 1, {"original_page_number": "second"})

    def test_place_change(self, store, planned_project):
        placed = store.place_change(planned_project, 1, 2, exact_text="galvanized")

        assert placed.original_page_number == 2
        assert placed.exact_text_to_find == "galvanized"
        assert placed.is_manual is True

    def test_place_page_add_rejected(self, store, planned_project):
        with pytest.raises(InstructionValidationError):
            store.place_change(planned_project, 2, 1)


class TestReset:

    def test_reset_keeps_base_documents(self, store, planned_project, specs_pdf, addendum_pdf, db_session):
        store.store_file(planned_project, ROLE_BASE_SPECS, "specs.pdf", specs_pdf, page_count=3)
        store.store_file(planned_project, ROLE_ADDENDUM, "Addendum1.pdf", addendum_pdf)
        store.save_reports(planned_project, executive_summary="- Handrails revised")

        store.reset(planned_project)

        assert planned_project.change_log == []
        assert planned_project.qa_log == []
        assert planned_project.executive_summary is None
        roles = [f.role for f in db_session.query(ProjectFile).all()]
        assert roles == [ROLE_BASE_SPECS]
