"""
Conform Engine - Addenda Conforming Core

Locates addendum change instructions inside base construction documents,
assembles the conformed page sequence from the approved subset and renders
located changes onto pages.

Components:
    - text_indexer: per-page text index with index/TOC page detection
    - page_locator: keyword scoring of pages for unlocated instructions
    - coordinate_finder: on-page boxes for a piece of text
    - annotation/: margin-note layout and drawing backends
    - conformed_assembler: approved changes -> conformed page sequence
    - export_planner / conformed_pdf_writer: conformed PDF export
    - diff_utils: word and pixel diffs for review
    - document_registry / render_scheduler: document and render lifecycles

Usage:
    from conform_engine import PyMuPDFEngine, TextIndexer, PageLocator, assemble

    engine = PyMuPDFEngine()
    handle = await engine.load_document(pdf_bytes, name="specs")
    index = await TextIndexer(engine).build_index(handle)
    PageLocator().locate_all(change_log, index, DocumentType.SPECS)
    pages = assemble(change_log, handle.page_count, DocumentType.SPECS)
"""

from .conformed_assembler import AssemblyResult, AssemblyWarning, assemble, assemble_with_warnings
from .coordinate_finder import extract_text_in_rect, find_text_coordinates
from .document_registry import DocumentRegistry
from .errors import (
    ConformEngineError,
    DocumentOwnershipError,
    DocumentRegistryError,
    InstructionValidationError,
    RenderCancelledError,
)
from .models import (
    BoundingBox,
    ChangeInstruction,
    ChangeStatus,
    ChangeType,
    ClickableArea,
    ConformedPageInfo,
    DocumentType,
    PageMapItem,
    SourceDocument,
    TextRun,
)
from .page_locator import LocatorConfig, PageLocator
from .pdf_engine import DocumentHandle, PageHandle, PyMuPDFEngine
from .render_scheduler import RenderScheduler
from .text_indexer import PageIndexEntry, TextIndexer

__version__ = "1.0.0"

__all__ = [
    "AssemblyResult",
    "AssemblyWarning",
    "BoundingBox",
    "ChangeInstruction",
    "ChangeStatus",
    "ChangeType",
    "ClickableArea",
    "ConformEngineError",
    "ConformedPageInfo",
    "DocumentHandle",
    "DocumentOwnershipError",
    "DocumentRegistry",
    "DocumentRegistryError",
    "DocumentType",
    "InstructionValidationError",
    "LocatorConfig",
    "PageHandle",
    "PageIndexEntry",
    "PageLocator",
    "PageMapItem",
    "PyMuPDFEngine",
    "RenderCancelledError",
    "RenderScheduler",
    "SourceDocument",
    "TextIndexer",
    "TextRun",
    "assemble",
    "assemble_with_warnings",
    "extract_text_in_rect",
    "find_text_coordinates",
]
