"""
Projects router for the addenda review surface.

Endpoints:
- POST / - Create project; GET / - List projects; GET /{project_id} - Details
- POST /{project_id}/documents/{document_type} - Upload base drawings/specs
- POST /{project_id}/addenda - Upload and analyze addenda
- GET /{project_id}/changes - Change log, Q&A log and quarantined items
- POST /{project_id}/changes/status - Batch approve/reject
- PATCH /{project_id}/changes/{change_id} - Manual edit
- POST /{project_id}/changes/{change_id}/placement - Manual placement
- GET /{project_id}/changes/{change_id}/word-diff | /spotlight
- GET /{project_id}/conformed/{document_type} - Conformed sequence
- GET /{project_id}/conformed/{document_type}/pages/{n}/preview | /annotations | /pixel-diff
- GET /{project_id}/export/{document_type} - Conformed PDF
- GET /{project_id}/reports/{kind} - Summary, comparison and Q&A reports
- POST /{project_id}/triage | /executive-summary | /cost-impact
- POST /{project_id}/reset
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db import ROLE_ADDENDUM, Project, get_db
from app.services.conform_workflow import (
    BASE_ROLES,
    ConformWorkflow,
    discard_workflow,
    encode_png,
    get_workflow,
)
from app.services.gemini_service import GeminiService, LLMServiceError, SourceFile
from app.services.project_service import (
    ChangeNotFoundError,
    ProjectNotFoundError,
    ProjectStore,
    compute_hash_from_bytes,
)
from conform_engine.change_report import (
    comparison_report,
    qa_report,
    render_report_pdf,
    summary_report,
)
from conform_engine.conformed_pdf_writer import conformed_filename
from conform_engine.diff_utils import word_diff
from conform_engine.errors import ConformEngineError, InstructionValidationError, RenderCancelledError
from conform_engine.models import BoundingBox, ChangeStatus, ConformedPageInfo, DocumentType

logger = logging.getLogger(__name__)

router = APIRouter()

CONSISTENCY_QUESTION = "Do these base documents and addenda all belong to the same construction project?"


# =============================================================================
# Request / Response Models
# =============================================================================

class CreateProjectRequest(BaseModel):
    project_name: str


class ProjectFileResponse(BaseModel):
    id: str
    role: str
    filename: str
    file_size: Optional[int] = None
    page_count: Optional[int] = None


class ProjectResponse(BaseModel):
    id: str
    project_name: str
    base_drawings_page_count: Optional[int] = None
    base_specs_page_count: Optional[int] = None
    change_count: int
    files: List[ProjectFileResponse] = []
    created_at: str


class StatusUpdateRequest(BaseModel):
    change_ids: List[int]
    status: ChangeStatus


class SelectionRect(BaseModel):
    x: float
    y: float
    width: float
    height: float


class PlacementRequest(BaseModel):
    """Place a change on a base page, optionally picking its text with a selection rectangle."""
    page_number: int
    rect: Optional[SelectionRect] = None
    scale: float = 1.0


# =============================================================================
# Helper Functions
# =============================================================================

def get_gemini_service() -> GeminiService:
    return GeminiService()


def _get_project(store: ProjectStore, project_id: UUID) -> Project:
    try:
        return store.get_project(project_id)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _project_response(store: ProjectStore, project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=str(project.id),
        project_name=project.project_name,
        base_drawings_page_count=project.base_drawings_page_count,
        base_specs_page_count=project.base_specs_page_count,
        change_count=len(project.change_log or []),
        files=[
            ProjectFileResponse(
                id=str(f.id),
                role=f.role,
                filename=f.filename,
                file_size=f.file_size,
                page_count=f.page_count,
            )
            for f in store.list_files(project)
        ],
        created_at=project.created_at.isoformat(),
    )


async def _load_workflow(store: ProjectStore, project: Project) -> ConformWorkflow:
    """Workflow for the project with every stored file opened."""
    workflow = get_workflow(str(project.id))
    await workflow.sync_files(store.list_files(project))
    return workflow


def _base_page_count(project: Project, document_type: DocumentType) -> int:
    return getattr(project, f"{BASE_ROLES[document_type]}_page_count") or 0


def _conformed_page(
    store: ProjectStore,
    workflow: ConformWorkflow,
    project: Project,
    document_type: DocumentType,
    page_number: int,
) -> ConformedPageInfo:
    result = workflow.conformed_sequence(
        store.load_change_log(project), document_type, _base_page_count(project, document_type)
    )
    if not 1 <= page_number <= result.page_count:
        raise HTTPException(
            status_code=404,
            detail=f"Conformed page {page_number} not found ({result.page_count} pages)",
        )
    return result.pages[page_number - 1]


def _find_change(store: ProjectStore, project: Project, change_id: int):
    for change in store.load_change_log(project):
        if change.id == change_id:
            return change
    raise HTTPException(status_code=404, detail=f"Change not found: {change_id}")


async def _read_pdf(file: UploadFile) -> bytes:
    if not file.filename or not file.filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="Only PDF files are accepted")
    try:
        return await file.read()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to read file: {e}")


def _png_response(png: bytes, headers: Optional[Dict[str, str]] = None) -> Response:
    return Response(content=png, media_type="image/png", headers=headers)


# =============================================================================
# Projects
# =============================================================================

@router.post("", response_model=ProjectResponse)
async def create_project(request: CreateProjectRequest, db: Session = Depends(get_db)):
    store = ProjectStore(db)
    project = store.create_project(request.project_name)
    return _project_response(store, project)


@router.get("", response_model=List[ProjectResponse])
async def list_projects(db: Session = Depends(get_db)):
    store = ProjectStore(db)
    return [_project_response(store, p) for p in store.list_projects()]


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: UUID, db: Session = Depends(get_db)):
    store = ProjectStore(db)
    return _project_response(store, _get_project(store, project_id))


@router.post("/{project_id}/documents/{document_type}", response_model=ProjectResponse)
async def upload_base_document(
    project_id: UUID,
    document_type: DocumentType,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    """Upload (or replace) the base drawings or specifications PDF."""
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    data = await _read_pdf(file)
    role = BASE_ROLES[document_type]

    workflow = get_workflow(str(project.id))
    try:
        handle = await workflow.sync_document(role, file.filename, data, compute_hash_from_bytes(data))
    except ConformEngineError as e:
        raise HTTPException(status_code=400, detail=str(e))

    store.store_file(project, role, file.filename, data, page_count=handle.page_count)
    return _project_response(store, project)


@router.post("/{project_id}/reset", response_model=ProjectResponse)
async def reset_project(project_id: UUID, db: Session = Depends(get_db)):
    """Clear changes, Q&A, reports and addenda. Base documents are kept."""
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    store.reset(project)
    await discard_workflow(str(project.id))
    return _project_response(store, project)


# =============================================================================
# Addenda analysis
# =============================================================================

@router.post("/{project_id}/addenda")
async def analyze_addenda(
    project_id: UUID,
    files: List[UploadFile] = File(...),
    skip_consistency_check: bool = Query(False),
    db: Session = Depends(get_db),
    gemini: GeminiService = Depends(get_gemini_service),
):
    """
    Upload addenda, generate the conforming plan and locate every change.

    Returns 409 when the consistency check says the documents belong to
    different projects (resubmit with skip_consistency_check to override).
    """
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    addenda = [SourceFile(filename=f.filename, data=await _read_pdf(f)) for f in files]

    bases = {}
    for document_type, role in BASE_ROLES.items():
        record = store.get_file(project, role)
        bases[document_type] = SourceFile(record.filename, record.file_data) if record else None

    if not skip_consistency_check:
        verification = await gemini.verify_consistency([*bases.values(), *addenda], CONSISTENCY_QUESTION)
        if not verification["is_consistent"]:
            raise HTTPException(status_code=409, detail=verification["reasoning"])

    try:
        plan = await gemini.propose_changes(
            addenda,
            bases[DocumentType.DRAWINGS],
            bases[DocumentType.SPECS],
            start_id=store.next_id(project),
        )
    except LLMServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))

    for source in addenda:
        store.store_file(project, ROLE_ADDENDUM, source.filename, source.data)

    store.append_plan(project, plan)
    change_log = store.load_change_log(project)
    workflow = await _load_workflow(store, project)
    reports = await workflow.locate(change_log)
    store.save_change_log(project, change_log)

    return {
        "change_log": [c.to_dict() for c in change_log],
        "questions_and_answers": [q.to_dict() for q in plan.questions_and_answers],
        "quarantined": [q.to_dict() for q in plan.quarantined],
        "unmapped": {dt.value: report.unmapped for dt, report in reports.items()},
    }


# =============================================================================
# Change log
# =============================================================================

@router.get("/{project_id}/changes")
async def list_changes(project_id: UUID, db: Session = Depends(get_db)):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    return {
        "change_log": [c.to_dict() for c in store.load_change_log(project)],
        "questions_and_answers": project.qa_log or [],
        "quarantined": project.quarantined or [],
    }


@router.post("/{project_id}/changes/status")
async def update_change_statuses(project_id: UUID, request: StatusUpdateRequest, db: Session = Depends(get_db)):
    """Approve or reject a batch of changes; the conformed sequence follows on next read."""
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    try:
        change_log = store.update_statuses(project, request.change_ids, request.status)
    except ChangeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"change_log": [c.to_dict() for c in change_log]}


@router.patch("/{project_id}/changes/{change_id}")
async def edit_change(project_id: UUID, change_id: int, fields: Dict[str, Any], db: Session = Depends(get_db)):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    try:
        change = store.update_change(project, change_id, fields)
    except ChangeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InstructionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return change.to_dict()


@router.post("/{project_id}/changes/{change_id}/placement")
async def place_change(
    project_id: UUID,
    change_id: int,
    request: PlacementRequest,
    db: Session = Depends(get_db),
):
    """Manually place a change; a selection rectangle also pins the text under it."""
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    change = _find_change(store, project, change_id)

    page_count = _base_page_count(project, change.source_original_document)
    if not 1 <= request.page_number <= page_count:
        raise HTTPException(status_code=400, detail=f"Page {request.page_number} is outside the base document")

    selected_text = None
    if request.rect is not None:
        workflow = await _load_workflow(store, project)
        rect = BoundingBox(request.rect.x, request.rect.y, request.rect.width, request.rect.height)
        selected_text = await workflow.text_in_rect(
            change.source_original_document, request.page_number, rect, request.scale
        )

    try:
        placed = store.place_change(project, change_id, request.page_number, exact_text=selected_text)
    except InstructionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"change": placed.to_dict(), "selected_text": selected_text}


@router.get("/{project_id}/changes/{change_id}/word-diff")
async def change_word_diff(project_id: UUID, change_id: int, db: Session = Depends(get_db)):
    store = ProjectStore(db)
    change = _find_change(store, _get_project(store, project_id), change_id)
    tokens = word_diff(change.exact_text_to_find or "", change.new_text_to_insert or "")
    return {"change_id": change_id, "tokens": [t.to_dict() for t in tokens]}


@router.get("/{project_id}/changes/{change_id}/spotlight")
async def change_spotlight(
    project_id: UUID,
    change_id: int,
    scale: Optional[float] = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    change = _find_change(store, project, change_id)
    workflow = await _load_workflow(store, project)
    try:
        png = await workflow.render_spotlight(change, scale)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RenderCancelledError:
        return Response(status_code=204)
    return _png_response(png)


# =============================================================================
# Conformed sequence
# =============================================================================

@router.get("/{project_id}/conformed/{document_type}")
async def get_conformed_sequence(project_id: UUID, document_type: DocumentType, db: Session = Depends(get_db)):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    workflow = get_workflow(str(project.id))
    result = workflow.conformed_sequence(
        store.load_change_log(project), document_type, _base_page_count(project, document_type)
    )
    return {
        "document_type": document_type.value,
        "page_count": result.page_count,
        "pages": [p.to_dict() for p in result.pages],
        "warnings": [w.to_dict() for w in result.warnings],
    }


@router.get("/{project_id}/conformed/{document_type}/pages/{page_number}/preview")
async def preview_page(
    project_id: UUID,
    document_type: DocumentType,
    page_number: int,
    scale: Optional[float] = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    """Annotated PNG of a conformed page. 204 when superseded by a newer preview request."""
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    workflow = await _load_workflow(store, project)
    page_info = _conformed_page(store, workflow, project, document_type, page_number)
    try:
        preview = await workflow.render_preview(page_info, document_type, scale)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RenderCancelledError:
        return Response(status_code=204)
    return _png_response(preview.png)


@router.get("/{project_id}/conformed/{document_type}/pages/{page_number}/annotations")
async def page_annotations(
    project_id: UUID,
    document_type: DocumentType,
    page_number: int,
    scale: Optional[float] = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    """Clickable highlight and note areas for a conformed page."""
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    workflow = await _load_workflow(store, project)
    page_info = _conformed_page(store, workflow, project, document_type, page_number)
    try:
        areas = await workflow.clickable_areas(page_info, document_type, scale)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "page": page_info.to_dict(),
        "clickable_areas": [a.to_dict() for a in areas],
    }


@router.get("/{project_id}/conformed/{document_type}/pages/{page_number}/pixel-diff")
async def page_pixel_diff(
    project_id: UUID,
    document_type: DocumentType,
    page_number: int,
    db: Session = Depends(get_db),
):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    workflow = await _load_workflow(store, project)
    page_info = _conformed_page(store, workflow, project, document_type, page_number)
    if page_info.map.original_page_for_comparison is None:
        raise HTTPException(status_code=400, detail=f"Conformed page {page_number} is not a replaced page")
    try:
        result = await workflow.page_diff(page_info, document_type)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _png_response(
        encode_png(result.image),
        headers={
            "X-Changed-Pixels": str(result.changed_pixels),
            "X-Changed-Ratio": f"{result.ratio:.6f}",
        },
    )


@router.get("/{project_id}/export/{document_type}")
async def export_conformed_pdf(project_id: UUID, document_type: DocumentType, db: Session = Depends(get_db)):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    workflow = await _load_workflow(store, project)
    result = workflow.conformed_sequence(
        store.load_change_log(project), document_type, _base_page_count(project, document_type)
    )
    try:
        data = await workflow.export_pdf(result.pages, document_type)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    filename = conformed_filename(project.project_name, document_type)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# =============================================================================
# Reports
# =============================================================================

@router.get("/{project_id}/reports/{kind}")
async def get_report(
    project_id: UUID,
    kind: str,
    format: str = Query("json", pattern="^(json|pdf)$"),
    db: Session = Depends(get_db),
):
    store = ProjectStore(db)
    project = _get_project(store, project_id)

    if kind == "summary":
        table = summary_report(store.load_change_log(project))
    elif kind == "comparison":
        table = comparison_report(store.load_change_log(project))
    elif kind == "qa":
        table = qa_report(store.load_qa_log(project))
    else:
        raise HTTPException(status_code=404, detail=f"Unknown report: {kind}")

    if format == "json":
        return table.to_dict()

    filename = f"{table.title.replace(' ', '_')}.pdf"
    return Response(
        content=render_report_pdf(table),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{project_id}/triage")
async def triage_addenda(
    project_id: UUID,
    db: Session = Depends(get_db),
    gemini: GeminiService = Depends(get_gemini_service),
):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    addenda = [SourceFile(f.filename, f.file_data) for f in store.list_files(project, ROLE_ADDENDUM)]
    if not addenda:
        raise HTTPException(status_code=400, detail="No addenda uploaded")
    try:
        report = await gemini.generate_triage_report(addenda)
    except LLMServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    store.save_reports(project, triage_report=report)
    return report


@router.post("/{project_id}/executive-summary")
async def executive_summary(
    project_id: UUID,
    db: Session = Depends(get_db),
    gemini: GeminiService = Depends(get_gemini_service),
):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    try:
        summary = await gemini.generate_executive_summary(store.load_change_log(project))
    except LLMServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    store.save_reports(project, executive_summary=summary)
    return {"summary": summary}


@router.post("/{project_id}/cost-impact")
async def cost_impact(
    project_id: UUID,
    db: Session = Depends(get_db),
    gemini: GeminiService = Depends(get_gemini_service),
):
    store = ProjectStore(db)
    project = _get_project(store, project_id)
    approved = [c for c in store.load_change_log(project) if c.is_approved]
    try:
        analysis = await gemini.generate_cost_impact(approved)
    except LLMServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    store.save_reports(project, cost_analysis=analysis)
    return analysis
