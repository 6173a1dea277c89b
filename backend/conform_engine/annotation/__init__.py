"""
Annotation geometry and drawing backends.

Layout (geometry) is separate from drawing so it can be computed and tested
without any rendering surface.
"""

from .annotation_layout import (
    AnnotationLayoutConfig,
    AnnotationLayoutEngine,
    HighlightBox,
    LeaderLine,
    MarginNote,
    NoteTheme,
    PageAnnotationLayout,
    SpotlightLayout,
)
from .annotation_renderer import PdfAnnotationRenderer, RasterAnnotationRenderer, renderer_for
from .annotator import PageAnnotator

__all__ = [
    "AnnotationLayoutConfig",
    "AnnotationLayoutEngine",
    "HighlightBox",
    "LeaderLine",
    "MarginNote",
    "NoteTheme",
    "PageAnnotationLayout",
    "PageAnnotator",
    "PdfAnnotationRenderer",
    "RasterAnnotationRenderer",
    "SpotlightLayout",
    "renderer_for",
]
