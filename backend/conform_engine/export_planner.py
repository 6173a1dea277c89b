"""
Export Planner

Turns a conformed page's approved text changes into concrete edits for the
PDF writer: white-out boxes over deleted/replaced text and positioned text
insertions. Everything in a PageEditPlan is in PDF page space (origin
bottom-left, points).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .coordinate_finder import find_text_coordinates
from .models.change_instruction import ChangeType
from .models.geometry import BoundingBox, TextRun
from .models.page_map import ConformedPageInfo, SourceDocument
from .pdf_engine import DocumentHandle, PyMuPDFEngine

logger = logging.getLogger(__name__)


INSERT_FONT_SIZE = 9.0
INSERT_LINE_HEIGHT = 10.0
INSERT_COLOR = (0.0, 0.0, 0.0)

NOTE_FONT_SIZE = 10.0
NOTE_X = 20.0
NOTE_TOP_OFFSET = 30.0
NOTE_COLOR = (0.8, 0.0, 0.0)


@dataclass(frozen=True)
class WhiteoutBox:
    box: BoundingBox
    change_id: int


@dataclass(frozen=True)
class TextInsertion:
    """Text drawn with its first baseline at (x, y)."""

    text: str
    x: float
    y: float
    font_size: float
    change_id: int
    line_height: Optional[float] = None
    max_width: Optional[float] = None
    color: Tuple[float, float, float] = INSERT_COLOR
    is_note: bool = False


@dataclass(frozen=True)
class PageEditPlan:
    conformed_page_number: int
    source_document: SourceDocument
    source_page_number: int
    addendum_name: Optional[str] = None
    whiteouts: Tuple[WhiteoutBox, ...] = field(default_factory=tuple)
    insertions: Tuple[TextInsertion, ...] = field(default_factory=tuple)

    @property
    def has_edits(self) -> bool:
        return bool(self.whiteouts or self.insertions)

    def to_dict(self) -> dict:
        return {
            "conformed_page_number": self.conformed_page_number,
            "source_document": self.source_document.value,
            "source_page_number": self.source_page_number,
            "addendum_name": self.addendum_name,
            "whiteouts": [{"change_id": w.change_id, **w.box.to_dict()} for w in self.whiteouts],
            "insertions": [
                {
                    "change_id": i.change_id,
                    "text": i.text,
                    "x": i.x,
                    "y": i.y,
                    "font_size": i.font_size,
                    "line_height": i.line_height,
                    "max_width": i.max_width,
                    "is_note": i.is_note,
                }
                for i in self.insertions
            ],
        }


def plan_page_edits(
    page_info: ConformedPageInfo,
    runs: Sequence[TextRun],
    page_height: float,
) -> PageEditPlan:
    """
    Edits for one conformed page.

    ``runs`` are the source page's text runs in top-left page space;
    results are converted to PDF space using ``page_height``.
    """
    page_map = page_info.map
    whiteouts: List[WhiteoutBox] = []
    insertions: List[TextInsertion] = []

    if page_map.source_document == SourceDocument.ORIGINAL:
        for change in page_info.approved_text_changes:
            if change.change_type in (ChangeType.TEXT_DELETE, ChangeType.TEXT_REPLACE):
                for box in find_text_coordinates(runs, change.exact_text_to_find):
                    whiteouts.append(WhiteoutBox(box=box.to_pdf_space(page_height), change_id=change.id))

            if change.change_type in (ChangeType.TEXT_ADD, ChangeType.TEXT_REPLACE) and change.new_text_to_insert:
                anchors = find_text_coordinates(runs, change.exact_text_to_find or change.location_hint)
                if anchors:
                    anchor = anchors[0].to_pdf_space(page_height)
                    insertions.append(TextInsertion(
                        text=change.new_text_to_insert,
                        x=anchor.x,
                        y=anchor.y + anchor.height - INSERT_FONT_SIZE,
                        font_size=INSERT_FONT_SIZE,
                        line_height=INSERT_LINE_HEIGHT,
                        max_width=anchor.width,
                        change_id=change.id,
                    ))
                else:
                    hint = change.location_hint or "N/A"
                    insertions.append(TextInsertion(
                        text=f"ADDENDUM NOTE: {hint} - {change.new_text_to_insert}",
                        x=NOTE_X,
                        y=page_height - NOTE_TOP_OFFSET,
                        font_size=NOTE_FONT_SIZE,
                        color=NOTE_COLOR,
                        change_id=change.id,
                        is_note=True,
                    ))

    return PageEditPlan(
        conformed_page_number=page_info.conformed_page_number,
        source_document=page_map.source_document,
        source_page_number=page_map.source_page_number,
        addendum_name=page_map.addendum_name,
        whiteouts=tuple(whiteouts),
        insertions=tuple(insertions),
    )


async def build_export_plan(
    pages: Sequence[ConformedPageInfo],
    base: DocumentHandle,
    engine: Optional[PyMuPDFEngine] = None,
) -> List[PageEditPlan]:
    """Edit plans for a whole conformed sequence, reading text from ``base``."""
    engine = engine or PyMuPDFEngine()
    plans: List[PageEditPlan] = []

    for page_info in pages:
        if page_info.map.source_document == SourceDocument.ORIGINAL and page_info.approved_text_changes:
            page = await engine.get_page(base, page_info.map.source_page_number)
            runs = await engine.get_text_runs(page)
            plans.append(plan_page_edits(page_info, runs, page.height))
        else:
            plans.append(plan_page_edits(page_info, [], 0.0))

    edited = sum(1 for p in plans if p.has_edits)
    logger.info(f"Export plan: {len(plans)} pages, {edited} with text edits")
    return plans
