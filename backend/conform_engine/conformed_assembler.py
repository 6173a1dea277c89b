"""
Conformed Document Assembler

Derives the conformed page sequence of one base document from its page
count and the approved page-level changes, then attaches approved text
changes to the original pages that survive.

Order of operations:
    1. seed original pages 1..n
    2. replace (an addendum page takes the original's slot)
    3. delete (only pages that are still original)
    4. add (ascending anchor; equal anchors keep their relative order)
    5. resequence
    6. attach text changes to original pages only

The result is a pure function of its inputs and is rebuilt, never edited.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from .models.change_instruction import ChangeInstruction, ChangeType, DocumentType
from .models.page_map import ConformedPageInfo, PageMapItem, SourceDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssemblyWarning:
    """A change that was applied with a fallback, or could not be applied."""
    change_id: int
    message: str

    def to_dict(self) -> dict:
        return {"change_id": self.change_id, "message": self.message}


@dataclass(frozen=True)
class AssemblyResult:
    pages: Tuple[ConformedPageInfo, ...] = field(default_factory=tuple)
    warnings: Tuple[AssemblyWarning, ...] = field(default_factory=tuple)

    @property
    def page_count(self) -> int:
        return len(self.pages)


@dataclass
class _WorkingPage:
    """Mutable scratch entry used while the sequence is being built."""
    source_document: SourceDocument
    source_page_number: int
    reason: str
    document_type: DocumentType
    original_page_for_comparison: Optional[int] = None
    insert_after_original_page_number: Optional[int] = None
    addendum_name: Optional[str] = None
    change_id: Optional[int] = None

    def is_original_page(self, page_number: int) -> bool:
        return self.source_document == SourceDocument.ORIGINAL and self.source_page_number == page_number


def _addendum_page(change: ChangeInstruction, **extra) -> _WorkingPage:
    return _WorkingPage(
        source_document=SourceDocument.ADDENDUM,
        source_page_number=change.source_page,
        reason=change.description,
        document_type=change.source_original_document,
        addendum_name=change.addendum_name,
        change_id=change.id,
        **extra,
    )


def assemble_with_warnings(
    instructions: Sequence[ChangeInstruction],
    base_page_count: int,
    document_type: DocumentType,
) -> AssemblyResult:
    """
    Build the conformed sequence for ``document_type``.

    Only APPROVED instructions tagged for ``document_type`` take part; the
    rest of ``instructions`` is ignored. An ADD whose anchor page is gone
    is appended at the end and reported as a warning.
    """
    approved = [
        c for c in instructions
        if c.is_approved and c.source_original_document == document_type
    ]
    warnings: List[AssemblyWarning] = []

    replaces: Dict[int, ChangeInstruction] = {}
    deletes = set()
    adds: List[ChangeInstruction] = []
    text_changes: List[ChangeInstruction] = []

    for change in approved:
        if change.change_type == ChangeType.PAGE_REPLACE:
            if change.target_page_number:
                replaces[change.target_page_number] = change
            else:
                warnings.append(AssemblyWarning(change.id, "Replacement has no target page"))
        elif change.change_type == ChangeType.PAGE_DELETE:
            if change.target_page_number:
                deletes.add(change.target_page_number)
            else:
                warnings.append(AssemblyWarning(change.id, "Deletion has no target page"))
        elif change.change_type == ChangeType.PAGE_ADD:
            adds.append(change)
        elif change.is_text_change:
            text_changes.append(change)

    # 1. Seed
    working: List[_WorkingPage] = [
        _WorkingPage(
            source_document=SourceDocument.ORIGINAL,
            source_page_number=page_number,
            reason=f"Original page {page_number}",
            document_type=document_type,
        )
        for page_number in range(1, base_page_count + 1)
    ]

    # 2. Replace
    for target, change in replaces.items():
        if not 1 <= target <= base_page_count:
            warnings.append(AssemblyWarning(
                change.id, f"Replacement target page {target} is outside the base document"
            ))
            continue
        working[target - 1] = _addendum_page(change, original_page_for_comparison=target)

    # 3. Delete
    working = [
        page for page in working
        if not (page.source_document == SourceDocument.ORIGINAL and page.source_page_number in deletes)
    ]

    # 4. Add
    last_anchor: Optional[int] = None
    last_index = -1
    last_found = True
    for change in sorted(adds, key=lambda c: c.insert_after_original_page_number or 0):
        anchor = change.insert_after_original_page_number or 0
        new_page = _addendum_page(change, insert_after_original_page_number=anchor)

        if anchor == last_anchor:
            index = last_index + 1
            found_anchor = last_found
        elif anchor == 0:
            index = 0
            found_anchor = True
        else:
            found = next((i for i, p in enumerate(working) if p.is_original_page(anchor)), None)
            found_anchor = found is not None
            index = found + 1 if found_anchor else len(working)

        if not found_anchor:
            message = f"Anchor page {anchor} not found; page appended at end"
            warnings.append(AssemblyWarning(change.id, message))
            logger.warning(f"{document_type.value} change {change.id}: {message}")

        working.insert(index, new_page)
        last_anchor, last_index, last_found = anchor, index, found_anchor

    # 5 + 6. Resequence and attach text changes
    text_by_page: Dict[int, List[ChangeInstruction]] = {}
    for change in text_changes:
        if change.original_page_number:
            text_by_page.setdefault(change.original_page_number, []).append(change)

    pages = []
    for position, page in enumerate(working):
        conformed_page_number = position + 1
        attached: Tuple[ChangeInstruction, ...] = ()
        if page.source_document == SourceDocument.ORIGINAL:
            attached = tuple(replace(c) for c in text_by_page.get(page.source_page_number, ()))

        pages.append(ConformedPageInfo(
            map=PageMapItem(
                conformed_page_number=conformed_page_number,
                source_document=page.source_document,
                source_page_number=page.source_page_number,
                reason=page.reason,
                original_document_type=page.document_type,
                original_page_for_comparison=page.original_page_for_comparison,
                insert_after_original_page_number=page.insert_after_original_page_number,
                addendum_name=page.addendum_name,
                change_id=page.change_id,
            ),
            conformed_page_number=conformed_page_number,
            approved_text_changes=attached,
        ))

    return AssemblyResult(pages=tuple(pages), warnings=tuple(warnings))


def assemble(
    instructions: Sequence[ChangeInstruction],
    base_page_count: int,
    document_type: DocumentType,
) -> List[ConformedPageInfo]:
    """Conformed page sequence for ``document_type`` (see assemble_with_warnings)."""
    return list(assemble_with_warnings(instructions, base_page_count, document_type).pages)
