"""Shared fixtures for conform engine tests."""

from types import SimpleNamespace
from typing import Dict, List, Sequence, Union

import fitz  # PyMuPDF
import pytest
from PIL import Image

from conform_engine.models import (
    BoundingBox,
    ChangeInstruction,
    ChangeStatus,
    ChangeType,
    DocumentType,
    TextRun,
)
from conform_engine.pdf_engine import PageHandle


def make_runs(texts: Sequence[str], y: float = 100.0, char_width: float = 5.0, height: float = 10.0) -> List[TextRun]:
    """Lay texts out left to right on one line, one run per text."""
    runs = []
    x = 50.0
    for text in texts:
        width = len(text) * char_width
        runs.append(TextRun(text=text, box=BoundingBox(x, y, width, height)))
        x += width
    return runs


class FakePdfEngine:
    """
    In-memory stand-in for PyMuPDFEngine.

    ``pages`` maps page numbers to their runs, or to an exception raised
    when the page's text is read.
    """

    def __init__(self, pages: Dict[int, Union[List[TextRun], Exception]], width: float = 612.0, height: float = 792.0):
        self.pages = pages
        self.width = width
        self.height = height
        self.calls: List[int] = []

    def handle(self, name: str = "doc") -> SimpleNamespace:
        return SimpleNamespace(name=name, page_count=len(self.pages))

    async def get_page_count(self, handle) -> int:
        return len(self.pages)

    async def get_page(self, handle, page_number: int) -> PageHandle:
        return PageHandle(document=handle, page_number=page_number, width=self.width, height=self.height)

    async def get_text_runs(self, page: PageHandle) -> List[TextRun]:
        self.calls.append(page.page_number)
        runs = self.pages[page.page_number]
        if isinstance(runs, Exception):
            raise runs
        return runs

    async def render_to_bitmap(self, page: PageHandle, scale: float) -> Image.Image:
        return Image.new("RGB", (int(self.width * scale), int(self.height * scale)), "white")


@pytest.fixture
def make_change():
    """Factory for ChangeInstruction with sensible defaults."""
    counter = {"next": 1}

    def _make(change_type: ChangeType = ChangeType.TEXT_REPLACE, **kwargs) -> ChangeInstruction:
        if "id" not in kwargs:
            kwargs["id"] = counter["next"]
            counter["next"] += 1
        kwargs.setdefault("source_original_document", DocumentType.SPECS)
        kwargs.setdefault("status", ChangeStatus.APPROVED)
        kwargs.setdefault("addendum_name", "Addendum1.pdf")
        return ChangeInstruction(change_type=change_type, **kwargs)

    return _make


def build_pdf(page_texts: Sequence[Sequence[str]], width: float = 612, height: float = 792) -> bytes:
    """PDF with one page per entry, each line of text inserted 20pt apart."""
    doc = fitz.open()
    try:
        for lines in page_texts:
            page = doc.new_page(width=width, height=height)
            for i, line in enumerate(lines):
                page.insert_text(fitz.Point(72, 100 + i * 20), line, fontsize=11, fontname="helv")
        return doc.tobytes()
    finally:
        doc.close()


@pytest.fixture
def spec_pdf_bytes() -> bytes:
    """Three-page specification PDF."""
    return build_pdf([
        ["SECTION 05 50 00", "METAL FABRICATIONS"],
        ["Handrails shall be galvanized steel.", "Finish: shop primed."],
        ["SECTION 08 80 00", "GLAZING"],
    ])


@pytest.fixture
def addendum_pdf_bytes() -> bytes:
    return build_pdf([["ADDENDUM 1 REVISED SHEET A-101"], ["ADDENDUM 1 NEW SHEET A-102"]])
