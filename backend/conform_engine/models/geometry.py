"""
Geometry primitives.

Two coordinate conventions are in play and are never mixed:

* viewport space - origin top-left, y grows downwards, scaled by the render
  scale. Text runs, annotation layout and clickable areas use it (a scale of
  1.0 is PyMuPDF's native page space).
* PDF space - origin bottom-left, y grows upwards, in points. The export plan
  uses it.

Conversion happens explicitly through BoundingBox.to_pdf_space /
BoundingBox.from_pdf_space.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def union(self, other: "BoundingBox") -> "BoundingBox":
        left = min(self.x, other.x)
        top = min(self.y, other.y)
        return BoundingBox(
            x=left,
            y=top,
            width=max(self.right, other.right) - left,
            height=max(self.bottom, other.bottom) - top,
        )

    @classmethod
    def union_all(cls, boxes: Iterable["BoundingBox"]) -> Optional["BoundingBox"]:
        result = None
        for box in boxes:
            result = box if result is None else result.union(box)
        return result

    def scaled(self, scale: float) -> "BoundingBox":
        return BoundingBox(self.x * scale, self.y * scale, self.width * scale, self.height * scale)

    def padded(self, amount: float) -> "BoundingBox":
        return BoundingBox(
            self.x - amount,
            self.y - amount,
            self.width + 2 * amount,
            self.height + 2 * amount,
        )

    def intersects(self, other: "BoundingBox") -> bool:
        return (
            self.x < other.right
            and other.x < self.right
            and self.y < other.bottom
            and other.y < self.bottom
        )

    def to_pdf_space(self, page_height: float) -> "BoundingBox":
        """Top-left page box -> bottom-left PDF box (same size, y flipped)."""
        return BoundingBox(self.x, page_height - self.bottom, self.width, self.height)

    def from_pdf_space(self, page_height: float) -> "BoundingBox":
        """Bottom-left PDF box -> top-left page box. Flipping is its own inverse."""
        return BoundingBox(self.x, page_height - self.y - self.height, self.width, self.height)

    def to_tuple(self) -> tuple:
        return (self.x, self.y, self.right, self.bottom)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class TextRun:
    """A run of text reported by the PDF engine with its box in page space (top-left)."""
    text: str
    box: BoundingBox


@dataclass(frozen=True)
class ClickableArea:
    """Interactive rectangle on a rendered page, tagged with its owning change."""
    x: float
    y: float
    width: float
    height: float
    change_id: int
    kind: str  # "highlight" | "note"

    @property
    def box(self) -> BoundingBox:
        return BoundingBox(self.x, self.y, self.width, self.height)

    @classmethod
    def from_box(cls, box: BoundingBox, change_id: int, kind: str) -> "ClickableArea":
        return cls(box.x, box.y, box.width, box.height, change_id, kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "change_id": self.change_id,
            "kind": self.kind,
        }
