"""
Annotation Renderers

Paint a PageAnnotationLayout onto a drawing surface:

* RasterAnnotationRenderer - PIL image (page previews)
* PdfAnnotationRenderer - PyMuPDF page (annotated PDF export)

Both take the layout as-is; any scaling has already happened in layout.
"""

import logging
from typing import Tuple, Union

import fitz  # PyMuPDF
from PIL import Image, ImageDraw, ImageFont

from .annotation_layout import (
    THEME_COLORS,
    MarginNote,
    PageAnnotationLayout,
    SpotlightLayout,
)

logger = logging.getLogger(__name__)


def _unit_rgb(color: Tuple[int, int, int, int]) -> Tuple[float, float, float]:
    """0-255 RGBA -> 0.0-1.0 RGB for PyMuPDF."""
    return (color[0] / 255.0, color[1] / 255.0, color[2] / 255.0)


def _unit_alpha(color: Tuple[int, int, int, int]) -> float:
    return color[3] / 255.0


class RasterAnnotationRenderer:
    """Draws layouts onto PIL images through a translucent RGBA overlay."""

    def __init__(self, leader_width: int = 1, corner_radius: int = 4):
        self.leader_width = leader_width
        self.corner_radius = corner_radius
        self._fonts = {}

    def _font(self, size: float) -> ImageFont.ImageFont:
        key = max(int(round(size)), 6)
        if key not in self._fonts:
            self._fonts[key] = ImageFont.load_default(size=key)
        return self._fonts[key]

    @staticmethod
    def _overlay_for(image: Image.Image) -> Image.Image:
        if image.mode != "RGBA":
            raise ValueError(f"Raster annotation needs an RGBA image, got {image.mode}")
        return Image.new("RGBA", image.size, (0, 0, 0, 0))

    def draw(self, image: Image.Image, layout: PageAnnotationLayout) -> None:
        """Composite the layout onto ``image`` in place."""
        overlay = self._overlay_for(image)
        draw = ImageDraw.Draw(overlay)

        for highlight in layout.highlights:
            colors = THEME_COLORS[highlight.theme]
            draw.rectangle(highlight.box.to_tuple(), fill=colors.highlight)

        for leader in layout.leaders:
            colors = THEME_COLORS[leader.theme]
            draw.line(leader.sample(), fill=colors.stroke, width=self.leader_width)

        for note in layout.notes:
            self._draw_note(draw, note)

        image.alpha_composite(overlay)

    def _draw_note(self, draw: ImageDraw.ImageDraw, note: MarginNote) -> None:
        colors = THEME_COLORS[note.theme]
        draw.rounded_rectangle(
            note.box.to_tuple(),
            radius=self.corner_radius,
            fill=colors.note_fill,
            outline=colors.stroke,
        )

        x = note.box.x + note.padding
        y = note.box.y + note.padding
        draw.text((x, y), note.title, fill=colors.stroke, font=self._font(note.title_font_size))
        y += note.title_font_size + (note.line_height - note.font_size)

        body_font = self._font(note.font_size)
        for line in note.lines:
            draw.text((x, y), line, fill=colors.text, font=body_font)
            y += note.line_height

    def draw_spotlight(self, image: Image.Image, spotlight: SpotlightLayout) -> None:
        overlay = self._overlay_for(image)
        draw = ImageDraw.Draw(overlay)

        if spotlight.full_page:
            draw.rectangle((0, 0, image.width, image.height), fill=spotlight.color)
        else:
            for box in spotlight.boxes:
                draw.rectangle(box.to_tuple(), fill=spotlight.color)

        image.alpha_composite(overlay)


class PdfAnnotationRenderer:
    """
    Draws layouts onto PyMuPDF pages as page content.

    Layouts must be computed at scale 1.0 so viewport space equals the
    page's own top-left coordinate space.
    """

    def __init__(self, stroke_width: float = 0.75, fontname: str = "helv"):
        self.stroke_width = stroke_width
        self.fontname = fontname

    def draw(self, page: fitz.Page, layout: PageAnnotationLayout) -> None:
        shape = page.new_shape()

        for highlight in layout.highlights:
            colors = THEME_COLORS[highlight.theme]
            shape.draw_rect(fitz.Rect(*highlight.box.to_tuple()))
            shape.finish(
                color=None,
                fill=_unit_rgb(colors.highlight),
                fill_opacity=_unit_alpha(colors.highlight),
            )

        for leader in layout.leaders:
            colors = THEME_COLORS[leader.theme]
            shape.draw_bezier(
                fitz.Point(*leader.start),
                fitz.Point(*leader.control1),
                fitz.Point(*leader.control2),
                fitz.Point(*leader.end),
            )
            shape.finish(color=_unit_rgb(colors.stroke), width=self.stroke_width, closePath=False)

        for note in layout.notes:
            colors = THEME_COLORS[note.theme]
            shape.draw_rect(fitz.Rect(*note.box.to_tuple()))
            shape.finish(
                color=_unit_rgb(colors.stroke),
                fill=_unit_rgb(colors.note_fill),
                width=self.stroke_width,
            )

        shape.commit()

        for note in layout.notes:
            self._write_note_text(page, note)

    def _write_note_text(self, page: fitz.Page, note: MarginNote) -> None:
        colors = THEME_COLORS[note.theme]
        inner = fitz.Rect(*note.box.padded(-note.padding).to_tuple())
        text = "\n".join((note.title,) + note.lines)
        overflow = page.insert_textbox(
            inner,
            text,
            fontsize=note.font_size,
            fontname=self.fontname,
            color=_unit_rgb(colors.text),
        )
        if overflow < 0:
            logger.debug(f"Margin note for change {note.change_id} overflowed its box")

    def draw_spotlight(self, page: fitz.Page, spotlight: SpotlightLayout) -> None:
        shape = page.new_shape()
        rects = (
            [fitz.Rect(0, 0, spotlight.width, spotlight.height)]
            if spotlight.full_page
            else [fitz.Rect(*box.to_tuple()) for box in spotlight.boxes]
        )
        for rect in rects:
            shape.draw_rect(rect)
            shape.finish(color=None, fill=_unit_rgb(spotlight.color), fill_opacity=_unit_alpha(spotlight.color))
        shape.commit()


def renderer_for(surface) -> Union[RasterAnnotationRenderer, PdfAnnotationRenderer]:
    """Renderer matching a drawing surface."""
    if isinstance(surface, Image.Image):
        return RasterAnnotationRenderer()
    if isinstance(surface, fitz.Page):
        return PdfAnnotationRenderer()
    raise TypeError(f"No annotation renderer for {type(surface).__name__}")
