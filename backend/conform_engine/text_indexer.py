"""
Text Indexer

Builds the per-page text index the page locator searches. Pages are read
strictly in ascending order; a page that fails to extract gets an empty
entry and indexing carries on.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from .pdf_engine import DocumentHandle, PyMuPDFEngine

logger = logging.getLogger(__name__)


# Sheet identifiers such as A-101, S.502, M 2.01
SHEET_NUMBER_PATTERN = re.compile(r"[A-Z]{1,3}[-.\s]?[0-9]{1,3}(?:\.[0-9]{1,2})?", re.IGNORECASE)

DEFAULT_INDEX_PAGE_TOKEN_THRESHOLD = 12


@dataclass(frozen=True)
class PageIndexEntry:
    page_number: int
    full_text: str
    is_likely_index_page: bool = False

    def to_dict(self) -> dict:
        return {
            "page_number": self.page_number,
            "full_text": self.full_text,
            "is_likely_index_page": self.is_likely_index_page,
        }


def count_sheet_tokens(text: str) -> int:
    """Number of distinct sheet-number-like tokens in ``text``."""
    tokens = {
        re.sub(r"[^a-z0-9]", "", match.group(0).lower())
        for match in SHEET_NUMBER_PATTERN.finditer(text)
    }
    return len(tokens)


def is_likely_index_page(text: str, threshold: int = DEFAULT_INDEX_PAGE_TOKEN_THRESHOLD) -> bool:
    """A sheet index or table of contents lists more sheet numbers than ``threshold``."""
    return count_sheet_tokens(text) > threshold


class TextIndexer:
    """
    Extracts one PageIndexEntry per page.

    Text runs are joined with single spaces exactly as the engine reports
    them; normalization is left to match time.
    """

    def __init__(
        self,
        engine: Optional[PyMuPDFEngine] = None,
        index_page_token_threshold: int = DEFAULT_INDEX_PAGE_TOKEN_THRESHOLD,
    ):
        self.engine = engine or PyMuPDFEngine()
        self.index_page_token_threshold = index_page_token_threshold

    async def build_index(self, handle: DocumentHandle) -> List[PageIndexEntry]:
        page_count = await self.engine.get_page_count(handle)
        entries: List[PageIndexEntry] = []
        failures = 0

        for page_number in range(1, page_count + 1):
            try:
                page = await self.engine.get_page(handle, page_number)
                runs = await self.engine.get_text_runs(page)
            except Exception as e:
                failures += 1
                logger.warning(f"Text extraction failed for '{handle.name}' page {page_number}: {e}")
                entries.append(PageIndexEntry(page_number=page_number, full_text=""))
            else:
                full_text = " ".join(run.text for run in runs)
                entries.append(PageIndexEntry(
                    page_number=page_number,
                    full_text=full_text,
                    is_likely_index_page=is_likely_index_page(full_text, self.index_page_token_threshold),
                ))

            # Let other tasks run between pages
            await asyncio.sleep(0)

        index_pages = [e.page_number for e in entries if e.is_likely_index_page]
        logger.info(
            f"Indexed '{handle.name}': {len(entries)} pages, "
            f"{failures} extraction failures, index pages: {index_pages or 'none'}"
        )
        return entries
