"""
Annotation Layout

Pure geometry for page annotations: highlight boxes over located text,
margin notes stacked in a right-hand column, and curved leader lines from
the first occurrence of a change to its note. Nothing here draws; the
renderers in annotation_renderer.py paint a PageAnnotationLayout onto a
raster image or a PDF page.

All coordinates are viewport space (origin top-left, scaled).
"""

import logging
import textwrap
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ..coordinate_finder import find_text_coordinates
from ..models.change_instruction import ChangeInstruction, ChangeType
from ..models.geometry import BoundingBox, ClickableArea, TextRun

logger = logging.getLogger(__name__)

Point = Tuple[float, float]
RGBA = Tuple[int, int, int, int]


# =============================================================================
# THEMES
# =============================================================================


class NoteTheme(str, Enum):
    ADD = "add"
    REPLACE = "replace"
    DELETE = "delete"
    FALLBACK = "fallback"
    UNLOCATED = "unlocated"


@dataclass(frozen=True)
class ThemeColors:
    highlight: RGBA
    stroke: RGBA
    note_fill: RGBA
    text: RGBA


_EMERALD = ThemeColors(
    highlight=(16, 185, 129, 51),
    stroke=(5, 150, 105, 255),
    note_fill=(236, 253, 245, 255),
    text=(6, 95, 70, 255),
)
_RED = ThemeColors(
    highlight=(239, 68, 68, 51),
    stroke=(220, 38, 38, 255),
    note_fill=(254, 242, 242, 255),
    text=(153, 27, 27, 255),
)
_AMBER = ThemeColors(
    highlight=(245, 158, 11, 64),
    stroke=(217, 119, 6, 255),
    note_fill=(255, 251, 235, 255),
    text=(146, 64, 14, 255),
)

THEME_COLORS = {
    NoteTheme.ADD: _EMERALD,
    NoteTheme.REPLACE: _EMERALD,
    NoteTheme.DELETE: _RED,
    NoteTheme.FALLBACK: _AMBER,
    NoteTheme.UNLOCATED: _AMBER,
}

SPOTLIGHT_COLOR: RGBA = (245, 158, 11, 64)     # amber, 0.25
PAGE_CHANGE_TINT: RGBA = (59, 130, 246, 26)    # blue, 0.1


# =============================================================================
# LAYOUT TYPES
# =============================================================================


@dataclass
class AnnotationLayoutConfig:
    """Margin column and note typography, in unscaled page units."""

    margin_x_fraction: float = 0.76
    margin_width_fraction: float = 0.22
    margin_top: float = 50.0
    note_spacing: float = 10.0
    font_size: float = 9.0
    title_font_size: float = 10.0
    line_height: float = 11.0
    note_padding: float = 5.0
    char_width_ratio: float = 0.55
    spotlight_padding: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "AnnotationLayoutConfig":
        return cls(
            margin_x_fraction=settings.annotation_margin_x_fraction,
            margin_width_fraction=settings.annotation_margin_width_fraction,
            margin_top=settings.annotation_margin_top,
            note_spacing=settings.annotation_note_spacing,
            font_size=settings.annotation_font_size,
        )


@dataclass(frozen=True)
class HighlightBox:
    box: BoundingBox
    change_id: int
    theme: NoteTheme


@dataclass(frozen=True)
class LeaderLine:
    """Cubic bezier from the located text to its margin note."""

    start: Point
    control1: Point
    control2: Point
    end: Point
    change_id: int
    theme: NoteTheme

    def sample(self, steps: int = 24) -> List[Point]:
        """Points along the curve, for backends without native bezier support."""
        points = []
        for i in range(steps + 1):
            t = i / steps
            u = 1 - t
            x = (u ** 3 * self.start[0] + 3 * u ** 2 * t * self.control1[0]
                 + 3 * u * t ** 2 * self.control2[0] + t ** 3 * self.end[0])
            y = (u ** 3 * self.start[1] + 3 * u ** 2 * t * self.control1[1]
                 + 3 * u * t ** 2 * self.control2[1] + t ** 3 * self.end[1])
            points.append((x, y))
        return points


@dataclass(frozen=True)
class MarginNote:
    box: BoundingBox
    change_id: int
    theme: NoteTheme
    title: str
    lines: Tuple[str, ...]
    font_size: float
    title_font_size: float
    line_height: float
    padding: float

    @property
    def is_anchored(self) -> bool:
        return self.theme != NoteTheme.UNLOCATED


@dataclass
class PageAnnotationLayout:
    width: float
    height: float
    highlights: List[HighlightBox] = field(default_factory=list)
    notes: List[MarginNote] = field(default_factory=list)
    leaders: List[LeaderLine] = field(default_factory=list)
    clickable_areas: List[ClickableArea] = field(default_factory=list)

    def note_for(self, change_id: int) -> Optional[MarginNote]:
        for note in self.notes:
            if note.change_id == change_id:
                return note
        return None


@dataclass
class SpotlightLayout:
    width: float
    height: float
    boxes: List[BoundingBox] = field(default_factory=list)
    full_page: bool = False

    @property
    def color(self) -> RGBA:
        return PAGE_CHANGE_TINT if self.full_page else SPOTLIGHT_COLOR


# =============================================================================
# LAYOUT
# =============================================================================


def locate_change(
    runs: Sequence[TextRun], change: ChangeInstruction, scale: float = 1.0
) -> Tuple[List[BoundingBox], bool]:
    """
    Occurrences of a change on the page and whether they came from the
    location hint rather than the exact text.
    """
    boxes = find_text_coordinates(runs, change.exact_text_to_find, scale)
    if boxes:
        return boxes, False
    boxes = find_text_coordinates(runs, change.location_hint, scale)
    return boxes, bool(boxes)


def choose_theme(change: ChangeInstruction, located: bool, fallback: bool) -> NoteTheme:
    if not located:
        return NoteTheme.UNLOCATED
    if fallback:
        return NoteTheme.FALLBACK
    if change.change_type == ChangeType.TEXT_DELETE:
        return NoteTheme.DELETE
    if change.change_type == ChangeType.TEXT_REPLACE:
        return NoteTheme.REPLACE
    return NoteTheme.ADD


def _note_title(change: ChangeInstruction, theme: NoteTheme) -> str:
    label = change.change_type.short_label
    if theme == NoteTheme.UNLOCATED:
        return f"#{change.id} {label} (not positioned)"
    if theme == NoteTheme.FALLBACK:
        return f"#{change.id} {label} (approx.)"
    return f"#{change.id} {label}"


def _note_body(change: ChangeInstruction) -> str:
    if change.change_type == ChangeType.TEXT_DELETE and change.exact_text_to_find:
        return f"Delete: {change.exact_text_to_find}"
    if change.new_text_to_insert:
        return change.new_text_to_insert
    return change.description or ""


class AnnotationLayoutEngine:
    """Computes PageAnnotationLayout and SpotlightLayout for one page."""

    def __init__(self, config: Optional[AnnotationLayoutConfig] = None):
        self.config = config or AnnotationLayoutConfig()

    def wrap_note(self, text: str, column_width: float, scale: float) -> List[str]:
        cfg = self.config
        usable = max(column_width - 2 * cfg.note_padding * scale, 1.0)
        chars_per_line = max(int(usable / (cfg.font_size * scale * cfg.char_width_ratio)), 8)
        if not text.strip():
            return []
        return textwrap.wrap(text, width=chars_per_line)

    def layout_page(
        self,
        width: float,
        height: float,
        runs: Sequence[TextRun],
        changes: Sequence[ChangeInstruction],
        scale: float = 1.0,
    ) -> PageAnnotationLayout:
        """
        Lay out every text change for a page of ``width`` x ``height``
        (viewport units). ``runs`` are in unscaled page space.

        Every change gets exactly one margin note. Highlights are only drawn
        for deletions and replacements since additions have no old text.
        """
        cfg = self.config
        layout = PageAnnotationLayout(width=width, height=height)
        margin_x = width * cfg.margin_x_fraction
        column_width = width * cfg.margin_width_fraction
        cursor_y = cfg.margin_top * scale

        for change in changes:
            boxes, fallback = locate_change(runs, change, scale)
            theme = choose_theme(change, bool(boxes), fallback)

            if boxes and change.change_type in (ChangeType.TEXT_DELETE, ChangeType.TEXT_REPLACE):
                for box in boxes:
                    layout.highlights.append(HighlightBox(box=box, change_id=change.id, theme=theme))
                    layout.clickable_areas.append(ClickableArea.from_box(box, change.id, "highlight"))

            lines = tuple(self.wrap_note(_note_body(change), column_width, scale))
            note_height = (
                2 * cfg.note_padding
                + cfg.title_font_size
                + len(lines) * cfg.line_height
                + (cfg.line_height - cfg.font_size if lines else 0)
            ) * scale
            note_box = BoundingBox(margin_x, cursor_y, column_width, note_height)

            note = MarginNote(
                box=note_box,
                change_id=change.id,
                theme=theme,
                title=_note_title(change, theme),
                lines=lines,
                font_size=cfg.font_size * scale,
                title_font_size=cfg.title_font_size * scale,
                line_height=cfg.line_height * scale,
                padding=cfg.note_padding * scale,
            )
            layout.notes.append(note)
            layout.clickable_areas.append(ClickableArea.from_box(note_box, change.id, "note"))

            if boxes:
                layout.leaders.append(self._leader(boxes[0], note, scale))
            else:
                logger.debug(f"Change {change.id} not positioned on page; margin note only")

            cursor_y += note_height + cfg.note_spacing * scale

        return layout

    def _leader(self, anchor: BoundingBox, note: MarginNote, scale: float) -> LeaderLine:
        start = (anchor.right, anchor.y + anchor.height / 2)
        end = (note.box.x, note.box.y + (note.padding + note.title_font_size / 2))
        mid_x = start[0] + (end[0] - start[0]) / 2
        return LeaderLine(
            start=start,
            control1=(mid_x, start[1]),
            control2=(mid_x, end[1]),
            end=end,
            change_id=note.change_id,
            theme=note.theme,
        )

    def layout_spotlight(
        self,
        width: float,
        height: float,
        runs: Sequence[TextRun],
        change: ChangeInstruction,
        scale: float = 1.0,
    ) -> SpotlightLayout:
        """Full-page tint for page changes, padded boxes over found text otherwise."""
        if change.is_page_change:
            return SpotlightLayout(width=width, height=height, full_page=True)

        boxes, _ = locate_change(runs, change, scale)
        padding = self.config.spotlight_padding
        return SpotlightLayout(
            width=width,
            height=height,
            boxes=[box.padded(padding) for box in boxes],
        )
