"""
Page Annotator

Fetches a page's text runs, computes the annotation layout and paints it
onto a drawing surface. The returned clickable areas are how a rendered page
reports back which change the user clicked.
"""

import logging
from typing import List, Optional, Sequence

from ..models.change_instruction import ChangeInstruction
from ..models.geometry import ClickableArea
from ..pdf_engine import PageHandle, PyMuPDFEngine
from .annotation_layout import (
    AnnotationLayoutEngine,
    PageAnnotationLayout,
    SpotlightLayout,
)
from .annotation_renderer import renderer_for

logger = logging.getLogger(__name__)


class PageAnnotator:

    def __init__(
        self,
        engine: Optional[PyMuPDFEngine] = None,
        layout_engine: Optional[AnnotationLayoutEngine] = None,
    ):
        self.engine = engine or PyMuPDFEngine()
        self.layout_engine = layout_engine or AnnotationLayoutEngine()

    async def compute_layout(
        self,
        page: PageHandle,
        changes: Sequence[ChangeInstruction],
        scale: float = 1.0,
    ) -> PageAnnotationLayout:
        runs = await self.engine.get_text_runs(page)
        text_changes = [c for c in changes if c.is_text_change]
        return self.layout_engine.layout_page(
            page.width * scale, page.height * scale, runs, text_changes, scale
        )

    async def annotate(
        self,
        page: PageHandle,
        changes: Sequence[ChangeInstruction],
        scale: float = 1.0,
        surface=None,
    ) -> List[ClickableArea]:
        """
        Annotate ``page`` with its text changes.

        Args:
            page: page the changes belong to
            changes: approved text changes attached to the page
            scale: viewport scale of ``surface``
            surface: RGBA PIL image or PyMuPDF page to paint; geometry only
                when omitted

        Returns:
            Highlight and margin-note rectangles tagged with change ids
        """
        layout = await self.compute_layout(page, changes, scale)
        if surface is not None:
            renderer_for(surface).draw(surface, layout)

        unplaced = sum(1 for note in layout.notes if not note.is_anchored)
        if unplaced:
            logger.info(f"Page {page.page_number}: {unplaced} change(s) shown as unanchored notes")
        return layout.clickable_areas

    async def spotlight(
        self,
        page: PageHandle,
        change: ChangeInstruction,
        scale: float = 1.0,
        surface=None,
    ) -> SpotlightLayout:
        """Hover/selection highlight for a single change."""
        runs = [] if change.is_page_change else await self.engine.get_text_runs(page)
        spotlight = self.layout_engine.layout_spotlight(
            page.width * scale, page.height * scale, runs, change, scale
        )
        if surface is not None:
            renderer_for(surface).draw_spotlight(surface, spotlight)
        return spotlight
