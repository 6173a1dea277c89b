"""
PDF Engine

Async adapter over PyMuPDF that exposes the few operations the conform
engine needs: load a document, count and fetch pages, read text runs with
their boxes, and render a page to a bitmap.

Page numbers are 1-indexed everywhere outside this module.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

import fitz  # PyMuPDF
from PIL import Image

from .errors import ConformEngineError
from .models.geometry import BoundingBox, TextRun

logger = logging.getLogger(__name__)


@dataclass
class DocumentHandle:
    """An open PyMuPDF document. Calls against one document are serialised through its lock."""

    name: str
    doc: fitz.Document
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def page_count(self) -> int:
        return self.doc.page_count

    @property
    def is_closed(self) -> bool:
        return self.doc.is_closed


@dataclass
class PageHandle:
    document: DocumentHandle
    page_number: int
    width: float
    height: float


class PyMuPDFEngine:
    """
    PDF engine backed by PyMuPDF.

    Blocking PyMuPDF calls run in a worker thread so the event loop stays
    responsive while large drawing sets are parsed or rasterized.
    """

    async def load_document(self, data: bytes, name: str = "document") -> DocumentHandle:
        """Open a PDF from bytes."""
        try:
            doc = await asyncio.to_thread(fitz.open, stream=data, filetype="pdf")
        except Exception as e:
            logger.error(f"Failed to open PDF '{name}': {e}")
            raise ConformEngineError(f"Could not open PDF '{name}': {e}") from e

        if doc.page_count == 0:
            doc.close()
            raise ConformEngineError(f"PDF '{name}' has no pages")

        logger.info(f"Loaded '{name}' ({doc.page_count} pages)")
        return DocumentHandle(name=name, doc=doc)

    async def get_page_count(self, handle: DocumentHandle) -> int:
        return handle.page_count

    async def get_page(self, handle: DocumentHandle, page_number: int) -> PageHandle:
        if page_number < 1 or page_number > handle.page_count:
            raise ConformEngineError(
                f"Page {page_number} out of range for '{handle.name}' ({handle.page_count} pages)"
            )
        async with handle.lock:
            rect = await asyncio.to_thread(lambda: handle.doc[page_number - 1].rect)
        return PageHandle(document=handle, page_number=page_number, width=rect.width, height=rect.height)

    async def get_text_runs(self, page: PageHandle) -> List[TextRun]:
        async with page.document.lock:
            return await asyncio.to_thread(self._read_text_runs, page.document.doc, page.page_number)

    async def render_to_bitmap(self, page: PageHandle, scale: float) -> Image.Image:
        async with page.document.lock:
            return await asyncio.to_thread(self._render, page.document.doc, page.page_number, scale)

    @staticmethod
    def _read_text_runs(doc: fitz.Document, page_number: int) -> List[TextRun]:
        """
        One run per text span, in PyMuPDF reading order.

        The last span of each line gets a trailing space when it has none, so
        concatenated page text keeps word boundaries across line breaks.
        """
        runs: List[TextRun] = []
        blocks = doc[page_number - 1].get_text("dict")["blocks"]

        for block in blocks:
            if block.get("type") != 0:  # Not a text block
                continue
            for line in block.get("lines", []):
                spans = [s for s in line.get("spans", []) if s.get("text")]
                for i, span in enumerate(spans):
                    text = span["text"]
                    if i == len(spans) - 1 and not text[-1].isspace():
                        text += " "
                    x0, y0, x1, y1 = span["bbox"]
                    runs.append(TextRun(text=text, box=BoundingBox(x0, y0, x1 - x0, y1 - y0)))

        return runs

    @staticmethod
    def _render(doc: fitz.Document, page_number: int, scale: float) -> Image.Image:
        pix = doc[page_number - 1].get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        return Image.frombytes("RGB", [pix.width, pix.height], pix.samples)

    async def close_document(self, handle: DocumentHandle) -> None:
        async with handle.lock:
            if not handle.is_closed:
                handle.doc.close()
