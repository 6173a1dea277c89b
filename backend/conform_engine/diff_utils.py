"""
Diff utilities for reviewing changes (visual only, never applied to a
document).

* word_diff - word-level LCS diff between the old and new text of a change
* pixel_diff - anti-aliasing tolerant pixel comparison of two page renders
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from PIL import Image, ImageChops, ImageFilter

from .pdf_engine import DocumentHandle, PyMuPDFEngine

logger = logging.getLogger(__name__)


# =============================================================================
# WORD DIFF
# =============================================================================


class DiffOp(str, Enum):
    UNCHANGED = "unchanged"
    INSERTED = "inserted"
    DELETED = "deleted"


@dataclass(frozen=True)
class DiffToken:
    op: DiffOp
    text: str

    def to_dict(self) -> dict:
        return {"op": self.op.value, "text": self.text}


def _split_words(text: str) -> List[str]:
    """Words and the whitespace between them, so joining restores the text."""
    return re.split(r"(\s+)", text or "")


def word_diff(old_text: str, new_text: str) -> List[DiffToken]:
    """
    LCS diff over whitespace-preserving word tokens.

    When both directions are equally long the backtrack prefers an
    insertion, so deletions come out ahead of the insertions that replace
    them.
    """
    old_words = _split_words(old_text)
    new_words = _split_words(new_text)
    n, m = len(old_words), len(new_words)

    dp = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(1, n + 1):
        for j in range(1, m + 1):
            if old_words[i - 1] == new_words[j - 1]:
                dp[i][j] = dp[i - 1][j - 1] + 1
            else:
                dp[i][j] = max(dp[i - 1][j], dp[i][j - 1])

    tokens: List[DiffToken] = []
    i, j = n, m
    while i > 0 or j > 0:
        if i > 0 and j > 0 and old_words[i - 1] == new_words[j - 1]:
            tokens.append(DiffToken(DiffOp.UNCHANGED, old_words[i - 1]))
            i -= 1
            j -= 1
        elif j > 0 and (i == 0 or dp[i][j - 1] >= dp[i - 1][j]):
            tokens.append(DiffToken(DiffOp.INSERTED, new_words[j - 1]))
            j -= 1
        else:
            tokens.append(DiffToken(DiffOp.DELETED, old_words[i - 1]))
            i -= 1

    tokens.reverse()
    return [t for t in tokens if t.text]


# =============================================================================
# PIXEL DIFF
# =============================================================================


DIFF_COLOR = (255, 0, 0, 255)


@dataclass
class PixelDiffResult:
    changed_pixels: int
    total_pixels: int
    bbox: Optional[Tuple[int, int, int, int]]
    image: Image.Image

    @property
    def ratio(self) -> float:
        return self.changed_pixels / self.total_pixels if self.total_pixels else 0.0

    @property
    def identical(self) -> bool:
        return self.changed_pixels == 0


def _pad_to(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    if image.size == size:
        return image
    canvas = Image.new("L", size, 255)
    canvas.paste(image, (0, 0))
    return canvas


def _outside_neighbourhood(pixel: Image.Image, other: Image.Image) -> Image.Image:
    """How far each pixel of ``pixel`` falls outside the 3x3 value range of ``other``."""
    low = other.filter(ImageFilter.MinFilter(3))
    high = other.filter(ImageFilter.MaxFilter(3))
    below = ImageChops.subtract(low, pixel)
    above = ImageChops.subtract(pixel, high)
    return ImageChops.lighter(below, above)


def pixel_diff(
    before: Image.Image,
    after: Image.Image,
    threshold: float = 0.1,
) -> PixelDiffResult:
    """
    Compare two renders on luminance.

    A pixel counts as changed when its difference exceeds ``threshold``
    (0-1) and it cannot be explained by a one-pixel shift of an edge in
    either image, which is what anti-aliasing produces.
    """
    size = (max(before.width, after.width), max(before.height, after.height))
    a = _pad_to(before.convert("L"), size)
    b = _pad_to(after.convert("L"), size)
    cutoff = int(round(threshold * 255))

    def over_cutoff(image: Image.Image) -> Image.Image:
        return image.point(lambda v: 255 if v > cutoff else 0)

    changed = over_cutoff(ImageChops.difference(a, b))
    not_antialiased = ImageChops.lighter(
        over_cutoff(_outside_neighbourhood(a, b)),
        over_cutoff(_outside_neighbourhood(b, a)),
    )
    mask = ImageChops.darker(changed, not_antialiased)

    changed_pixels = mask.histogram()[255]
    faded = Image.blend(a, Image.new("L", size, 255), 0.8).convert("RGBA")
    highlighted = Image.composite(Image.new("RGBA", size, DIFF_COLOR), faded, mask)

    return PixelDiffResult(
        changed_pixels=changed_pixels,
        total_pixels=size[0] * size[1],
        bbox=mask.getbbox(),
        image=highlighted,
    )


async def render_page_pair_diff(
    before: DocumentHandle,
    before_page: int,
    after: DocumentHandle,
    after_page: int,
    scale: float = 1.5,
    threshold: float = 0.1,
    engine: Optional[PyMuPDFEngine] = None,
) -> PixelDiffResult:
    """Render two pages at a shared scale and pixel-diff them."""
    engine = engine or PyMuPDFEngine()
    before_image = await engine.render_to_bitmap(await engine.get_page(before, before_page), scale)
    after_image = await engine.render_to_bitmap(await engine.get_page(after, after_page), scale)

    result = pixel_diff(before_image, after_image, threshold)
    logger.debug(
        f"Pixel diff {before.name}:{before_page} vs {after.name}:{after_page}: "
        f"{result.changed_pixels} changed ({result.ratio:.2%})"
    )
    return result
