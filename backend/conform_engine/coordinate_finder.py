"""
Coordinate Finder

Finds where a piece of text sits on a page, given the page's text runs.
Matching is case-sensitive and whitespace-tolerant: runs of whitespace in
both the page text and the search text collapse to a single space, so a
match may span several runs and lines. "Not found" is an empty list.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from .models.geometry import BoundingBox, TextRun

logger = logging.getLogger(__name__)


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text)


def build_page_string(runs: Sequence[TextRun]) -> Tuple[str, List[int]]:
    """
    Concatenate run texts with whitespace collapsed, recording for every
    character of the result the index of the run that produced it.
    """
    chars: List[str] = []
    owners: List[int] = []
    previous_was_space = False

    for run_index, run in enumerate(runs):
        for char in run.text:
            if char.isspace():
                if previous_was_space:
                    continue
                chars.append(" ")
                previous_was_space = True
            else:
                chars.append(char)
                previous_was_space = False
            owners.append(run_index)

    return "".join(chars), owners


def find_text_coordinates(
    runs: Sequence[TextRun],
    search_text: Optional[str],
    scale: float = 1.0,
) -> List[BoundingBox]:
    """
    Bounding box of every non-overlapping occurrence of ``search_text``.

    Each box is the union of the runs the occurrence covers, scaled into
    viewport space by ``scale``.
    """
    needle = _collapse_whitespace(search_text or "").strip()
    if not needle or not runs:
        return []

    page_text, owners = build_page_string(runs)
    boxes: List[BoundingBox] = []
    position = page_text.find(needle)

    while position != -1:
        end = position + len(needle)
        covered = sorted(set(owners[position:end]))
        box = BoundingBox.union_all(runs[i].box for i in covered)
        if box is not None:
            boxes.append(box.scaled(scale) if scale != 1.0 else box)
        position = page_text.find(needle, end)

    return boxes


def extract_text_in_rect(
    runs: Sequence[TextRun],
    rect: BoundingBox,
    scale: float = 1.0,
) -> str:
    """
    Text of every run whose viewport box intersects ``rect``, ordered top
    to bottom and whitespace-collapsed.
    """
    selected = []
    for run in runs:
        box = run.box.scaled(scale)
        if box.intersects(rect):
            selected.append((box.y, run.text))

    selected.sort(key=lambda item: item[0])
    return _collapse_whitespace(" ".join(text for _, text in selected)).strip()
