"""
Change Instruction Models

Typed representation of the change instructions proposed for an addendum,
validated at the boundary so that malformed LLM output never reaches the
locator or the assembler.

Usage:
    from conform_engine.models.change_instruction import (
        ChangeInstruction,
        ChangeType,
        ChangeStatus,
        DocumentType,
    )
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import InstructionValidationError


# =============================================================================
# ENUMS
# =============================================================================


class ChangeType(str, Enum):
    """Kinds of revisions an addendum can describe."""
    PAGE_ADD = "PAGE_ADD"
    PAGE_DELETE = "PAGE_DELETE"
    PAGE_REPLACE = "PAGE_REPLACE"
    TEXT_ADD = "TEXT_ADD"
    TEXT_DELETE = "TEXT_DELETE"
    TEXT_REPLACE = "TEXT_REPLACE"
    GENERAL_NOTE = "GENERAL_NOTE"

    @property
    def is_page_change(self) -> bool:
        return self.value.startswith("PAGE_")

    @property
    def is_text_change(self) -> bool:
        return self.value.startswith("TEXT_")

    @property
    def short_label(self) -> str:
        """Action label without the PAGE_/TEXT_ prefix (e.g. "REPLACE")."""
        return self.value.split("_", 1)[-1]


class ChangeStatus(str, Enum):
    """Reviewer decision on a change."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DocumentType(str, Enum):
    """Base document a change targets."""
    DRAWINGS = "drawings"
    SPECS = "specs"


# =============================================================================
# DATACLASSES
# =============================================================================


def _optional_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InstructionValidationError(
            f"Field '{key}' must be an integer, got {value!r}", payload=data
        )


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    return str(value)


@dataclass
class ChangeInstruction:
    """
    One revision extracted from an addendum.

    Page-level fields:
        target_page_number: original page to delete or replace
        source_page: page inside the addendum PDF supplying new content
        insert_after_original_page_number: anchor for PAGE_ADD (0 = prepend)

    Text-level fields:
        original_page_number: resolved page in the base document
        exact_text_to_find / new_text_to_insert: the edit itself
        location_hint, spec_section, semantic_search_query, discipline:
            search aids used by the locator and the annotator
    """
    id: int
    change_type: ChangeType
    source_original_document: DocumentType
    status: ChangeStatus = ChangeStatus.PENDING
    addendum_name: str = ""
    description: str = ""

    # Page changes
    target_page_number: Optional[int] = None
    source_page: int = 0
    insert_after_original_page_number: Optional[int] = None

    # Text changes
    original_page_number: Optional[int] = None
    exact_text_to_find: Optional[str] = None
    new_text_to_insert: Optional[str] = None
    location_hint: Optional[str] = None
    spec_section: Optional[str] = None
    semantic_search_query: Optional[str] = None
    discipline: Optional[str] = None

    is_manual: bool = False

    @property
    def is_page_change(self) -> bool:
        return self.change_type.is_page_change

    @property
    def is_text_change(self) -> bool:
        return self.change_type.is_text_change

    @property
    def is_approved(self) -> bool:
        return self.status == ChangeStatus.APPROVED

    @property
    def needs_page_location(self) -> bool:
        """True for the change types whose page field the locator resolves."""
        return self.is_text_change or self.change_type in (
            ChangeType.PAGE_DELETE,
            ChangeType.PAGE_REPLACE,
        )

    @property
    def located_page(self) -> Optional[int]:
        if self.is_text_change:
            return self.original_page_number or None
        if self.needs_page_location:
            return self.target_page_number or None
        return None

    @property
    def is_unlocated(self) -> bool:
        return self.needs_page_location and self.located_page is None

    def assign_page(self, page_number: int) -> None:
        """Write a resolved page number into the field this change type uses."""
        if self.is_text_change:
            self.original_page_number = page_number
        elif self.needs_page_location:
            self.target_page_number = page_number
        else:
            raise InstructionValidationError(
                f"Change {self.id} ({self.change_type.value}) has no locatable page field"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "change_type": self.change_type.value,
            "source_original_document": self.source_original_document.value,
            "status": self.status.value,
            "addendum_name": self.addendum_name,
            "description": self.description,
            "target_page_number": self.target_page_number,
            "source_page": self.source_page,
            "insert_after_original_page_number": self.insert_after_original_page_number,
            "original_page_number": self.original_page_number,
            "exact_text_to_find": self.exact_text_to_find,
            "new_text_to_insert": self.new_text_to_insert,
            "location_hint": self.location_hint,
            "spec_section": self.spec_section,
            "semantic_search_query": self.semantic_search_query,
            "discipline": self.discipline,
            "is_manual": self.is_manual,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeInstruction":
        """
        Build from a stored or API dictionary, rejecting unknown tags.

        Raises:
            InstructionValidationError: unknown change_type, document type or
                status, or a non-integer id/page field
        """
        if not isinstance(data, dict):
            raise InstructionValidationError(f"Change instruction must be an object, got {type(data).__name__}")

        try:
            change_type = ChangeType(data.get("change_type"))
        except ValueError:
            raise InstructionValidationError(
                f"Unrecognized change_type {data.get('change_type')!r}", payload=data
            )

        try:
            document_type = DocumentType(data.get("source_original_document"))
        except ValueError:
            raise InstructionValidationError(
                f"Unrecognized source_original_document {data.get('source_original_document')!r}",
                payload=data,
            )

        try:
            status = ChangeStatus(data.get("status") or ChangeStatus.PENDING.value)
        except ValueError:
            raise InstructionValidationError(f"Unrecognized status {data.get('status')!r}", payload=data)

        change_id = _optional_int(data, "id")
        if change_id is None:
            raise InstructionValidationError("Change instruction is missing its id", payload=data)

        return cls(
            id=change_id,
            change_type=change_type,
            source_original_document=document_type,
            status=status,
            addendum_name=data.get("addendum_name") or "",
            description=data.get("description") or "",
            target_page_number=_optional_int(data, "target_page_number"),
            source_page=_optional_int(data, "source_page") or 0,
            insert_after_original_page_number=_optional_int(data, "insert_after_original_page_number"),
            original_page_number=_optional_int(data, "original_page_number"),
            exact_text_to_find=_optional_str(data, "exact_text_to_find"),
            new_text_to_insert=_optional_str(data, "new_text_to_insert"),
            location_hint=_optional_str(data, "location_hint"),
            spec_section=_optional_str(data, "spec_section"),
            semantic_search_query=_optional_str(data, "semantic_search_query"),
            discipline=_optional_str(data, "discipline"),
            is_manual=bool(data.get("is_manual", False)),
        )


@dataclass
class QAndAItem:
    """Question and answer pair published in an addendum."""
    question: str
    answer: str
    id: Optional[int] = None
    impact_summary: Optional[str] = None
    source_addendum_file: Optional[str] = None
    discipline: Optional[str] = None
    spec_section: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "answer": self.answer,
            "impact_summary": self.impact_summary,
            "source_addendum_file": self.source_addendum_file,
            "discipline": self.discipline,
            "spec_section": self.spec_section,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QAndAItem":
        return cls(
            question=data.get("question", ""),
            answer=data.get("answer", ""),
            id=data.get("id"),
            impact_summary=data.get("impact_summary"),
            source_addendum_file=data.get("source_addendum_file"),
            discipline=data.get("discipline"),
            spec_section=data.get("spec_section"),
        )


@dataclass
class QuarantinedInstruction:
    """Raw LLM payload that failed validation, kept for reviewer inspection."""
    payload: Dict[str, Any]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"payload": self.payload, "reason": self.reason}


@dataclass
class ParsedPlan:
    """Outcome of parsing a conforming plan returned by the LLM."""
    change_instructions: List[ChangeInstruction] = field(default_factory=list)
    questions_and_answers: List[QAndAItem] = field(default_factory=list)
    quarantined: List[QuarantinedInstruction] = field(default_factory=list)


# =============================================================================
# LLM PLAN PARSING
# =============================================================================


def _base_filename(path: str) -> str:
    return path[path.rfind("/") + 1:] if path else ""


def parse_ai_instruction(raw: Dict[str, Any], change_id: int) -> ChangeInstruction:
    """
    Convert one LLM change instruction into a ChangeInstruction.

    The LLM payload nests its fields under ``search_target`` and
    ``data_payload``; new instructions start out APPROVED so the reviewer only
    has to reject what is wrong.
    """
    if not isinstance(raw, dict):
        raise InstructionValidationError(f"Instruction must be an object, got {type(raw).__name__}")

    search_target = raw.get("search_target") or {}
    payload = raw.get("data_payload") or {}
    if not isinstance(search_target, dict) or not isinstance(payload, dict):
        raise InstructionValidationError("search_target and data_payload must be objects", payload=raw)

    source_page = (
        _optional_int(payload, "addendum_source_page_number")
        or _optional_int(payload, "source_page_in_addendum")
        or 0
    )

    return ChangeInstruction.from_dict({
        "id": change_id,
        "status": ChangeStatus.APPROVED.value,
        "change_type": raw.get("change_type"),
        "source_original_document": search_target.get("document_type"),
        "addendum_name": _base_filename(raw.get("source_addendum_file") or ""),
        "description": raw.get("human_readable_description") or "",
        "location_hint": search_target.get("location_hint"),
        "semantic_search_query": search_target.get("semantic_search_query"),
        "spec_section": raw.get("spec_section"),
        "discipline": raw.get("discipline"),
        "exact_text_to_find": payload.get("text_to_find"),
        "new_text_to_insert": payload.get("replacement_text"),
        "target_page_number": payload.get("original_page_number_to_affect"),
        "insert_after_original_page_number": payload.get("insert_after_original_page_number"),
        "source_page": source_page,
    })


def parse_ai_plan(raw_plan: Dict[str, Any], start_id: int) -> ParsedPlan:
    """
    Parse a whole conforming plan, numbering Q&A items and instructions from
    ``start_id`` onwards. Invalid instructions are quarantined, not raised.
    """
    result = ParsedPlan()
    next_id = start_id

    for raw_qa in raw_plan.get("questions_and_answers") or []:
        if not isinstance(raw_qa, dict):
            continue
        item = QAndAItem.from_dict(raw_qa)
        item.id = next_id
        next_id += 1
        result.questions_and_answers.append(item)

    for raw in raw_plan.get("change_instructions") or []:
        try:
            instruction = parse_ai_instruction(raw, next_id)
        except InstructionValidationError as e:
            result.quarantined.append(QuarantinedInstruction(
                payload=raw if isinstance(raw, dict) else {"value": raw},
                reason=str(e),
            ))
            continue
        result.change_instructions.append(instruction)
        next_id += 1

    return result


def next_change_id(change_log: List[ChangeInstruction]) -> int:
    """First free id after the current maximum (0 for an empty log)."""
    return max((c.id for c in change_log), default=-1) + 1
