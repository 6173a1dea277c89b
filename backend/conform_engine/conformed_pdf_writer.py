"""
Conformed PDF Writer

Builds the conformed PDF with PyMuPDF: copies every conformed page from the
base document or its addendum, whites out deleted text and draws inserted
text according to the page's edit plan.
"""

import logging
import re
from typing import List, Mapping, Optional, Sequence

import fitz  # PyMuPDF

from .models.change_instruction import DocumentType
from .models.geometry import BoundingBox
from .models.page_map import SourceDocument
from .export_planner import PageEditPlan, TextInsertion

logger = logging.getLogger(__name__)


def conformed_filename(title: Optional[str], document_type: Optional[DocumentType]) -> str:
    """``Conformed_<clean title>.pdf``, falling back to the document type name."""
    clean = ""
    if title:
        clean = re.sub(r"[^a-z0-9\s-]", "", title, flags=re.IGNORECASE)
        clean = re.sub(r"\s+", "_", clean)
    if not clean:
        if document_type == DocumentType.DRAWINGS:
            clean = "Drawings"
        elif document_type == DocumentType.SPECS:
            clean = "Specifications"
        else:
            clean = "Document"
    return f"Conformed_{clean}.pdf"


def wrap_to_width(text: str, max_width: float, font_size: float, fontname: str = "helv") -> List[str]:
    """Greedy word wrap measured with the PDF font metrics."""
    lines: List[str] = []
    for paragraph in text.split("\n"):
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}" if current else word
            if current and fitz.get_text_length(candidate, fontname=fontname, fontsize=font_size) > max_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


class ConformedPdfWriter:

    def __init__(self, fontname: str = "helv"):
        self.fontname = fontname

    def write(
        self,
        base: fitz.Document,
        addenda: Mapping[str, fitz.Document],
        plans: Sequence[PageEditPlan],
    ) -> bytes:
        """
        Assemble the conformed PDF and return its bytes.

        Pages whose addendum is not loaded are skipped (and logged), the rest
        of the document is still produced.
        """
        output = fitz.open()
        skipped = 0

        try:
            for plan in plans:
                if plan.source_document == SourceDocument.ORIGINAL:
                    source = base
                else:
                    source = addenda.get(plan.addendum_name or "")
                    if source is None:
                        logger.error(
                            f"Addendum '{plan.addendum_name}' is not loaded; "
                            f"skipping conformed page {plan.conformed_page_number}"
                        )
                        skipped += 1
                        continue

                page_index = plan.source_page_number - 1
                if not 0 <= page_index < source.page_count:
                    logger.error(
                        f"Source page {plan.source_page_number} does not exist; "
                        f"skipping conformed page {plan.conformed_page_number}"
                    )
                    skipped += 1
                    continue

                output.insert_pdf(source, from_page=page_index, to_page=page_index)
                if plan.has_edits:
                    self._apply_edits(output[-1], plan)

            data = output.tobytes(garbage=3, deflate=True)
        finally:
            output.close()

        logger.info(f"Wrote conformed PDF: {len(plans) - skipped} pages ({skipped} skipped)")
        return data

    def _apply_edits(self, page: fitz.Page, plan: PageEditPlan) -> None:
        height = page.rect.height

        for whiteout in plan.whiteouts:
            rect = fitz.Rect(*whiteout.box.from_pdf_space(height).to_tuple())
            page.draw_rect(rect, color=None, fill=(1, 1, 1), overlay=True)

        for insertion in plan.insertions:
            self._draw_insertion(page, insertion, height)

    def _draw_insertion(self, page: fitz.Page, insertion: TextInsertion, height: float) -> None:
        if insertion.max_width:
            lines = wrap_to_width(insertion.text, insertion.max_width, insertion.font_size, self.fontname)
        else:
            lines = insertion.text.split("\n")

        line_height = insertion.line_height or insertion.font_size
        baseline = BoundingBox(insertion.x, insertion.y, 0, 0).from_pdf_space(height)
        for i, line in enumerate(lines):
            page.insert_text(
                fitz.Point(baseline.x, baseline.y + i * line_height),
                line,
                fontsize=insertion.font_size,
                fontname=self.fontname,
                color=insertion.color,
            )
