"""
Conformed page sequence models.

These are derived values. The assembler rebuilds them wholesale on every
recomputation, so they are frozen.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .change_instruction import ChangeInstruction, DocumentType


class SourceDocument(str, Enum):
    """Where a conformed page's content comes from."""
    ORIGINAL = "original"
    ADDENDUM = "addendum"


@dataclass(frozen=True)
class PageMapItem:
    """One position in the conformed sequence."""
    conformed_page_number: int
    source_document: SourceDocument
    source_page_number: int
    reason: str
    original_document_type: DocumentType
    original_page_for_comparison: Optional[int] = None
    insert_after_original_page_number: Optional[int] = None
    addendum_name: Optional[str] = None
    change_id: Optional[int] = None

    @property
    def is_original(self) -> bool:
        return self.source_document == SourceDocument.ORIGINAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conformed_page_number": self.conformed_page_number,
            "source_document": self.source_document.value,
            "source_page_number": self.source_page_number,
            "reason": self.reason,
            "original_document_type": self.original_document_type.value,
            "original_page_for_comparison": self.original_page_for_comparison,
            "insert_after_original_page_number": self.insert_after_original_page_number,
            "addendum_name": self.addendum_name,
            "change_id": self.change_id,
        }


@dataclass(frozen=True)
class ConformedPageInfo:
    """Final per-page render unit: a map entry plus its approved text edits."""
    map: PageMapItem
    conformed_page_number: int
    approved_text_changes: Tuple[ChangeInstruction, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conformed_page_number": self.conformed_page_number,
            "map": self.map.to_dict(),
            "approved_text_changes": [c.to_dict() for c in self.approved_text_changes],
        }
