"""
Page Locator

Maps change instructions that are missing their page field onto a page of
the base document by keyword scoring against the text index.

Scoring (per page, per search term):
    0    either normalized string is empty
    100  normalized page text equals the normalized term
    50 + 20 (term at the very start) + 30 * len(term) / len(page)
         when the page text contains the term

Per-page scores combine with a descending linear weight over the ordered
search terms; likely index pages are penalised for text changes. The best
page must score strictly above the minimum, ties go to the lowest page.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .models.change_instruction import ChangeInstruction, DocumentType
from .text_indexer import PageIndexEntry

logger = logging.getLogger(__name__)


@dataclass
class LocatorConfig:
    """Empirical scoring constants; tune against a labelled corpus."""

    exact_score: float = 100.0
    substring_base: float = 50.0
    start_bonus: float = 20.0
    density_weight: float = 30.0
    min_score: float = 15.0
    index_page_penalty: float = 0.1

    @classmethod
    def from_settings(cls, settings) -> "LocatorConfig":
        return cls(
            exact_score=settings.locator_exact_score,
            substring_base=settings.locator_substring_base,
            start_bonus=settings.locator_start_bonus,
            density_weight=settings.locator_density_weight,
            min_score=settings.locator_min_score,
            index_page_penalty=settings.locator_index_page_penalty,
        )


@dataclass
class LocatorReport:
    """Outcome of one locate_all pass."""

    document_type: DocumentType
    mapped: Dict[int, int] = field(default_factory=dict)  # change id -> page
    unmapped: List[int] = field(default_factory=list)


# =============================================================================
# NORMALIZATION AND SCORING
# =============================================================================


def normalize_loose(text: Optional[str]) -> str:
    """Lowercase and collapse whitespace (prose matching)."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip().lower()


def normalize_strict(text: Optional[str]) -> str:
    """Lowercase and keep only [a-z0-9] (sheet number matching)."""
    if not text:
        return ""
    return re.sub(r"[^a-z0-9]", "", text.lower())


def build_search_terms(instruction: ChangeInstruction) -> List[str]:
    """Search terms in priority order, empty values and duplicates removed."""
    candidates = [
        instruction.semantic_search_query,
        instruction.location_hint,
        instruction.spec_section,
        instruction.exact_text_to_find,
    ]
    terms: List[str] = []
    for term in candidates:
        if term and term not in terms:
            terms.append(term)
    return terms


def score_term(page_text: str, term: str, config: LocatorConfig) -> float:
    """Score one already-normalized term against one already-normalized page."""
    if not page_text or not term:
        return 0.0
    if page_text == term:
        return config.exact_score

    position = page_text.find(term)
    if position < 0:
        return 0.0

    score = config.substring_base
    if position == 0:
        score += config.start_bonus
    score += config.density_weight * (len(term) / len(page_text))
    return score


def combine_term_scores(term_scores: Sequence[float]) -> float:
    """Term i of n contributes score_i * (n - i) / n."""
    n = len(term_scores)
    return sum(score * (n - i) / n for i, score in enumerate(term_scores))


def pick_best_page(page_scores: Dict[int, float], min_score: float) -> Optional[int]:
    """
    Page with the strictly highest score, scanning pages in ascending order.
    Returns None unless that score is greater than ``min_score``.
    """
    best_page = None
    best_score = 0.0
    for page_number in sorted(page_scores):
        score = page_scores[page_number]
        if best_page is None or score > best_score:
            best_page = page_number
            best_score = score

    if best_page is None or best_score <= min_score:
        return None
    return best_page


# =============================================================================
# LOCATOR
# =============================================================================


class PageLocator:
    """Scores every indexed page for an instruction and picks the best."""

    def __init__(self, config: Optional[LocatorConfig] = None):
        self.config = config or LocatorConfig()

    def score_pages(
        self,
        instruction: ChangeInstruction,
        index: Sequence[PageIndexEntry],
        normalized_pages: Optional[List[str]] = None,
    ) -> Dict[int, float]:
        """Aggregate score per page number for ``instruction``."""
        normalize = normalize_strict if instruction.is_page_change else normalize_loose
        terms = [normalize(t) for t in build_search_terms(instruction)]
        if normalized_pages is None:
            normalized_pages = [normalize(entry.full_text) for entry in index]

        scores: Dict[int, float] = {}
        for entry, page_text in zip(index, normalized_pages):
            total = combine_term_scores([score_term(page_text, term, self.config) for term in terms])
            if entry.is_likely_index_page and not instruction.is_page_change:
                total *= self.config.index_page_penalty
            scores[entry.page_number] = total
        return scores

    def locate(
        self,
        instruction: ChangeInstruction,
        index: Sequence[PageIndexEntry],
        normalized_pages: Optional[List[str]] = None,
    ) -> Optional[int]:
        """Best page for ``instruction`` or None when nothing clears the threshold."""
        if not index or not build_search_terms(instruction):
            return None
        scores = self.score_pages(instruction, index, normalized_pages)
        return pick_best_page(scores, self.config.min_score)

    def locate_all(
        self,
        instructions: Sequence[ChangeInstruction],
        index: Sequence[PageIndexEntry],
        document_type: DocumentType,
    ) -> LocatorReport:
        """
        Fill the page field of every unlocated instruction tagged for
        ``document_type``, in list order. Already-mapped instructions are
        left untouched.
        """
        report = LocatorReport(document_type=document_type)
        pending = [
            c for c in instructions
            if c.source_original_document == document_type and c.is_unlocated
        ]
        if not pending:
            return report

        strict_pages = [normalize_strict(e.full_text) for e in index]
        loose_pages = [normalize_loose(e.full_text) for e in index]

        for instruction in pending:
            pages = strict_pages if instruction.is_page_change else loose_pages
            page_number = self.locate(instruction, index, pages)
            if page_number is None:
                report.unmapped.append(instruction.id)
                continue
            instruction.assign_page(page_number)
            report.mapped[instruction.id] = page_number

        logger.info(
            f"Located {len(report.mapped)}/{len(pending)} {document_type.value} changes"
        )
        if report.unmapped:
            logger.warning(
                f"Could not locate {len(report.unmapped)} {document_type.value} changes: {report.unmapped}"
            )
        return report
