"""Data models for the conform engine."""

from .change_instruction import (
    ChangeInstruction,
    ChangeStatus,
    ChangeType,
    DocumentType,
    ParsedPlan,
    QAndAItem,
    QuarantinedInstruction,
    next_change_id,
    parse_ai_instruction,
    parse_ai_plan,
)
from .geometry import BoundingBox, ClickableArea, TextRun
from .page_map import ConformedPageInfo, PageMapItem, SourceDocument

__all__ = [
    "BoundingBox",
    "ChangeInstruction",
    "ChangeStatus",
    "ChangeType",
    "ClickableArea",
    "ConformedPageInfo",
    "DocumentType",
    "PageMapItem",
    "ParsedPlan",
    "QAndAItem",
    "QuarantinedInstruction",
    "SourceDocument",
    "TextRun",
    "next_change_id",
    "parse_ai_instruction",
    "parse_ai_plan",
]
