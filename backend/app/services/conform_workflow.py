"""
Conform Workflow

Per-project controller that ties the conform engine together for the REST
layer: it keeps the project's PDFs open in a DocumentRegistry, indexes and
locates changes, recomputes the conformed sequence whenever the change log
changes, and renders previews, diffs and the conformed export.

The conformed sequence is never persisted; it is memoised on a fingerprint
of the change log and recomputed on demand.
"""

import asyncio
import hashlib
import io
import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image

from app.config import settings
from conform_engine.annotation import (
    AnnotationLayoutConfig,
    AnnotationLayoutEngine,
    PageAnnotator,
)
from conform_engine.conformed_assembler import AssemblyResult, assemble_with_warnings
from conform_engine.conformed_pdf_writer import ConformedPdfWriter
from conform_engine.coordinate_finder import extract_text_in_rect
from conform_engine.diff_utils import PixelDiffResult, render_page_pair_diff
from conform_engine.document_registry import DocumentRegistry
from conform_engine.export_planner import build_export_plan
from conform_engine.models import (
    BoundingBox,
    ChangeInstruction,
    ClickableArea,
    ConformedPageInfo,
    DocumentType,
    SourceDocument,
)
from conform_engine.page_locator import LocatorConfig, LocatorReport, PageLocator
from conform_engine.pdf_engine import DocumentHandle, PageHandle, PyMuPDFEngine
from conform_engine.render_scheduler import RenderScheduler
from conform_engine.text_indexer import PageIndexEntry, TextIndexer

logger = logging.getLogger(__name__)


BASE_ROLES = {
    DocumentType.DRAWINGS: "base_drawings",
    DocumentType.SPECS: "base_specs",
}
ADDENDUM_ROLE = "addendum"


@dataclass
class PagePreview:
    png: bytes
    clickable_areas: List[ClickableArea]


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def change_log_fingerprint(change_log: Sequence[ChangeInstruction], page_count: int) -> str:
    """Stable digest of everything the assembler reads."""
    payload = json.dumps(
        {"page_count": page_count, "changes": [c.to_dict() for c in change_log]},
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ConformWorkflow:
    """Locate, assemble, preview and export for one project."""

    OWNER = "conform_workflow"

    def __init__(self, project_id: str, engine: Optional[PyMuPDFEngine] = None):
        self.project_id = project_id
        self.engine = engine or PyMuPDFEngine()
        self.registry = DocumentRegistry(self.engine)
        self.scheduler = RenderScheduler()
        self.indexer = TextIndexer(self.engine, settings.index_page_token_threshold)
        self.locator = PageLocator(LocatorConfig.from_settings(settings))
        self.annotator = PageAnnotator(
            self.engine,
            AnnotationLayoutEngine(AnnotationLayoutConfig.from_settings(settings)),
        )
        self.writer = ConformedPdfWriter()

        self._keys: Dict[Tuple[str, str], str] = {}
        self._indexes: Dict[str, List[PageIndexEntry]] = {}
        self._assemblies: Dict[DocumentType, Tuple[str, AssemblyResult]] = {}

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    async def sync_document(self, role: str, filename: str, data: bytes, file_hash: str) -> DocumentHandle:
        """
        Make sure the stored file is open in the registry.

        A re-upload (new base document, or an addendum with the same filename
        and new content) closes the stale handle once its outstanding page
        tasks have settled.
        """
        # One slot per base role, one per addendum filename
        slot = (role, filename if role == ADDENDUM_ROLE else "")
        key = f"{role}:{filename}:{file_hash[:16]}"
        previous = self._keys.get(slot)

        if previous == key and key in self.registry:
            return self.registry.get(key)

        handle = await self.registry.open(key, data, owner=self.OWNER)
        self._keys[slot] = key

        # The stale document stays open until its replacement has loaded
        if previous is not None and previous != key and previous in self.registry:
            await self.registry.close(previous, self.OWNER)
            self._indexes.pop(previous, None)
        return handle

    async def sync_files(self, files: Sequence) -> None:
        """Open every project file (objects with role, filename, file_data, file_hash)."""
        for record in files:
            await self.sync_document(record.role, record.filename, record.file_data, record.file_hash)

    def base_key(self, document_type: DocumentType) -> Optional[str]:
        role = BASE_ROLES[document_type]
        for (slot_role, _), key in self._keys.items():
            if slot_role == role:
                return key
        return None

    def addendum_keys(self) -> Dict[str, str]:
        """Addendum filename -> registry key."""
        return {name: key for (role, name), key in self._keys.items() if role == ADDENDUM_ROLE}

    def _require_base(self, document_type: DocumentType) -> str:
        key = self.base_key(document_type)
        if key is None:
            raise LookupError(f"No base {document_type.value} document loaded")
        return key

    async def close(self) -> None:
        await self.scheduler.cancel_all()
        await self.registry.close_all(self.OWNER)
        self._keys.clear()
        self._indexes.clear()
        self._assemblies.clear()

    # =========================================================================
    # INDEX / LOCATE
    # =========================================================================

    async def index(self, key: str) -> List[PageIndexEntry]:
        if key not in self._indexes:
            async with self.registry.acquire(key) as handle:
                self._indexes[key] = await self.indexer.build_index(handle)
        return self._indexes[key]

    async def locate(self, change_log: Sequence[ChangeInstruction]) -> Dict[DocumentType, LocatorReport]:
        """Resolve page numbers for every unlocated change, per base document."""
        reports: Dict[DocumentType, LocatorReport] = {}
        for document_type in DocumentType:
            key = self.base_key(document_type)
            if key is None:
                continue
            index = await self.index(key)
            reports[document_type] = self.locator.locate_all(change_log, index, document_type)
        return reports

    # =========================================================================
    # CONFORMED SEQUENCE
    # =========================================================================

    def conformed_sequence(
        self,
        change_log: Sequence[ChangeInstruction],
        document_type: DocumentType,
        base_page_count: int,
    ) -> AssemblyResult:
        """Conformed pages for ``document_type``, recomputed only when the log changes."""
        fingerprint = change_log_fingerprint(change_log, base_page_count)
        cached = self._assemblies.get(document_type)
        if cached is not None and cached[0] == fingerprint:
            return cached[1]

        result = assemble_with_warnings(change_log, base_page_count, document_type)
        self._assemblies[document_type] = (fingerprint, result)
        return result

    def base_page_count(self, document_type: DocumentType) -> int:
        key = self.base_key(document_type)
        return self.registry.get(key).page_count if key else 0

    # =========================================================================
    # RENDERING
    # =========================================================================

    def _source_key(self, page_info: ConformedPageInfo, document_type: DocumentType) -> str:
        page_map = page_info.map
        if page_map.source_document == SourceDocument.ORIGINAL:
            return self._require_base(document_type)
        key = self.addendum_keys().get(page_map.addendum_name or "")
        if key is None:
            raise LookupError(f"Addendum '{page_map.addendum_name}' is not loaded")
        return key

    async def render_preview(
        self,
        page_info: ConformedPageInfo,
        document_type: DocumentType,
        scale: Optional[float] = None,
    ) -> PagePreview:
        """
        Annotated PNG of one conformed page.

        Only one preview per document type is in flight; a newer request
        supersedes the older one, which raises RenderCancelledError.
        """
        scale = scale or settings.render_scale
        key = self._source_key(page_info, document_type)

        async def job() -> PagePreview:
            async with self.registry.acquire(key) as handle:
                page = await self.engine.get_page(handle, page_info.map.source_page_number)
                image = (await self.engine.render_to_bitmap(page, scale)).convert("RGBA")
                areas = await self.annotator.annotate(page, page_info.approved_text_changes, scale, surface=image)
            return PagePreview(png=encode_png(image.convert("RGB")), clickable_areas=areas)

        return await self.scheduler.submit((document_type, "preview"), job)

    async def clickable_areas(
        self,
        page_info: ConformedPageInfo,
        document_type: DocumentType,
        scale: Optional[float] = None,
    ) -> List[ClickableArea]:
        """Annotation hit areas for a conformed page, without rendering it."""
        if not page_info.approved_text_changes:
            return []
        key = self._source_key(page_info, document_type)
        async with self.registry.acquire(key) as handle:
            page = await self.engine.get_page(handle, page_info.map.source_page_number)
            return await self.annotator.annotate(page, page_info.approved_text_changes, scale or settings.render_scale)

    async def render_spotlight(
        self,
        change: ChangeInstruction,
        scale: Optional[float] = None,
    ) -> bytes:
        """PNG of the base page a change is located on, with the change spotlighted."""
        scale = scale or settings.render_scale
        if change.located_page is None:
            raise LookupError(f"Change {change.id} has not been located")
        key = self._require_base(change.source_original_document)

        async def job() -> bytes:
            async with self.registry.acquire(key) as handle:
                page = await self.engine.get_page(handle, change.located_page)
                image = (await self.engine.render_to_bitmap(page, scale)).convert("RGBA")
                await self.annotator.spotlight(page, change, scale, surface=image)
            return encode_png(image.convert("RGB"))

        return await self.scheduler.submit((change.source_original_document, "spotlight"), job)

    async def page_diff(self, page_info: ConformedPageInfo, document_type: DocumentType) -> PixelDiffResult:
        """Pixel diff of a replaced page against the original it replaced."""
        original_page = page_info.map.original_page_for_comparison
        if original_page is None:
            raise LookupError(f"Conformed page {page_info.conformed_page_number} did not replace an original page")

        base_key = self._require_base(document_type)
        addendum_key = self._source_key(page_info, document_type)
        async with self.registry.acquire(base_key) as base, self.registry.acquire(addendum_key) as addendum:
            return await render_page_pair_diff(
                base,
                original_page,
                addendum,
                page_info.map.source_page_number,
                scale=settings.render_scale,
                threshold=settings.pixel_diff_threshold,
                engine=self.engine,
            )

    async def text_in_rect(self, document_type: DocumentType, page_number: int, rect: BoundingBox, scale: float) -> str:
        """Text under a selection rectangle drawn on a base page preview."""
        key = self._require_base(document_type)
        async with self.registry.acquire(key) as handle:
            page: PageHandle = await self.engine.get_page(handle, page_number)
            runs = await self.engine.get_text_runs(page)
        return extract_text_in_rect(runs, rect, scale)

    # =========================================================================
    # EXPORT
    # =========================================================================

    async def export_pdf(self, pages: Sequence[ConformedPageInfo], document_type: DocumentType) -> bytes:
        """
        Write the conformed PDF.

        The base and every addendum are borrowed from the registry for the
        whole write, and their locks are held while the worker thread reads
        them. Locks are taken base first, then addenda in key order.
        """
        base_key = self._require_base(document_type)
        addenda = sorted(self.addendum_keys().items(), key=lambda item: item[1])

        async with AsyncExitStack() as stack:
            base = await stack.enter_async_context(self.registry.acquire(base_key))
            addendum_handles = {
                name: await stack.enter_async_context(self.registry.acquire(key)) for name, key in addenda
            }
            plans = await build_export_plan(pages, base, self.engine)

            await stack.enter_async_context(base.lock)
            for handle in addendum_handles.values():
                await stack.enter_async_context(handle.lock)

            addendum_docs = {name: handle.doc for name, handle in addendum_handles.items()}
            return await asyncio.to_thread(self.writer.write, base.doc, addendum_docs, plans)


# =============================================================================
# WORKFLOW CACHE
# =============================================================================


_workflows: Dict[str, ConformWorkflow] = {}


def get_workflow(project_id: str) -> ConformWorkflow:
    """Get or create the workflow for a project."""
    workflow = _workflows.get(project_id)
    if workflow is None:
        workflow = ConformWorkflow(project_id)
        _workflows[project_id] = workflow
    return workflow


async def discard_workflow(project_id: str) -> None:
    workflow = _workflows.pop(project_id, None)
    if workflow is not None:
        await workflow.close()


async def close_all_workflows() -> None:
    for project_id in list(_workflows):
        await discard_workflow(project_id)
