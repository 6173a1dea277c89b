"""
Change Reports

Summary, tracked-comparison and Q&A reports over a project's change log.
Each report is a ReportTable (JSON-ready) that render_report_pdf turns into
a simple paginated PDF with PyMuPDF.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence

import fitz  # PyMuPDF

from .conformed_pdf_writer import wrap_to_width
from .models.change_instruction import ChangeInstruction, ChangeStatus, ChangeType, QAndAItem

logger = logging.getLogger(__name__)


REPORT_BRAND = "AddendaConform"

STATUS_COLORS = {
    ChangeStatus.APPROVED.value: (5 / 255, 150 / 255, 105 / 255),
    ChangeStatus.REJECTED.value: (200 / 255, 50 / 255, 50 / 255),
    ChangeStatus.PENDING.value: (200 / 255, 150 / 255, 0.0),
}


@dataclass
class ReportTable:
    title: str
    subtitle: str
    columns: List[str]
    column_widths: List[float]  # fractions of the usable width
    rows: List[List[str]] = field(default_factory=list)
    status_column: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "subtitle": self.subtitle,
            "columns": self.columns,
            "rows": self.rows,
        }


def clean_title(title: str) -> str:
    clean = re.sub(r"[^a-z0-9\s-]", "", title or "", flags=re.IGNORECASE)
    return re.sub(r"\s+", "_", clean.strip()) or "Project"


def _source_addendum(change_log: Sequence[ChangeInstruction]) -> str:
    return change_log[0].addendum_name if change_log and change_log[0].addendum_name else "N/A"


# =============================================================================
# REPORT CONTENT
# =============================================================================


def summary_report(change_log: Sequence[ChangeInstruction]) -> ReportTable:
    table = ReportTable(
        title="Summary of Changes Report",
        subtitle=f"Source Addendum: {_source_addendum(change_log)}",
        columns=["Status", "Type", "Spec/Doc", "Location", "Change Details"],
        column_widths=[0.12, 0.14, 0.14, 0.2, 0.4],
        status_column=0,
    )
    for change in change_log:
        if change.new_text_to_insert:
            details = change.new_text_to_insert
        elif change.exact_text_to_find:
            details = f"Original: {change.exact_text_to_find}"
        else:
            details = change.description or "N/A"
        table.rows.append([
            change.status.value,
            change.change_type.value.replace("_", " "),
            change.spec_section or "N/A",
            change.location_hint or "N/A",
            details,
        ])
    return table


def _comparison_details(change: ChangeInstruction) -> str:
    before = change.exact_text_to_find or "[No original content specified]"
    after = change.new_text_to_insert or "[No new content specified]"

    if change.change_type in (ChangeType.TEXT_ADD, ChangeType.PAGE_ADD):
        return f"ACTION: ADD\n\nADDED:\n{after}"
    if change.change_type in (ChangeType.TEXT_DELETE, ChangeType.PAGE_DELETE):
        return f"ACTION: DELETE\n\nDELETED:\n{before}"
    if change.change_type in (ChangeType.TEXT_REPLACE, ChangeType.PAGE_REPLACE):
        return f"ACTION: REPLACE\n\nBEFORE:\n{before}\n\nAFTER:\n{after}"
    return f"ACTION: {change.change_type.value}\n\nNOTE/CHANGE:\n{after}"


def comparison_report(change_log: Sequence[ChangeInstruction]) -> ReportTable:
    table = ReportTable(
        title="Comparison Document (Tracked)",
        subtitle=f"Source Addendum: {_source_addendum(change_log)}",
        columns=["Status", "Location", "Change Details"],
        column_widths=[0.15, 0.3, 0.55],
        status_column=0,
    )
    for change in change_log:
        location = "\n".join(v for v in (change.spec_section, change.location_hint) if v) or "N/A"
        table.rows.append([change.status.value, location, _comparison_details(change)])
    return table


def qa_report(qa_log: Sequence[QAndAItem]) -> ReportTable:
    table = ReportTable(
        title="Addenda Q&A Report",
        subtitle="",
        columns=["Discipline", "Source", "Question & Answer"],
        column_widths=[0.16, 0.22, 0.62],
    )
    for item in qa_log:
        table.rows.append([
            item.discipline or "General",
            item.source_addendum_file or "N/A",
            f"Q: {item.question}\n\nA: {item.answer}",
        ])
    return table


# =============================================================================
# PDF RENDERING
# =============================================================================


PAGE_WIDTH, PAGE_HEIGHT = fitz.paper_size("a4")
MARGIN = 42.0
FONT_SIZE = 8.0
LINE_HEIGHT = 10.0
CELL_PADDING = 4.0
HEADER_FILL = (41 / 255, 128 / 255, 185 / 255)


def _cell_lines(text: str, width: float) -> List[str]:
    return wrap_to_width(text, max(width - 2 * CELL_PADDING, 10.0), FONT_SIZE)


def render_report_pdf(table: ReportTable, generated_on: Optional[date] = None) -> bytes:
    """Render a report table as an A4 PDF with a header and page footers."""
    generated_on = generated_on or date.today()
    usable = PAGE_WIDTH - 2 * MARGIN
    widths = [usable * w for w in table.column_widths]

    doc = fitz.open()
    try:
        page, y = _new_report_page(doc, table, widths, generated_on, first=True)

        for row in table.rows:
            cells = [_cell_lines(text, w) for text, w in zip(row, widths)]
            row_height = max(len(lines) for lines in cells) * LINE_HEIGHT + 2 * CELL_PADDING

            if y + row_height > PAGE_HEIGHT - MARGIN:
                page, y = _new_report_page(doc, table, widths, generated_on, first=False)

            x = MARGIN
            for col, (lines, width) in enumerate(zip(cells, widths)):
                page.draw_rect(fitz.Rect(x, y, x + width, y + row_height), color=(0.8, 0.8, 0.8), width=0.5)
                color = (0, 0, 0)
                if table.status_column == col:
                    color = STATUS_COLORS.get(row[col], color)
                for i, line in enumerate(lines):
                    page.insert_text(
                        fitz.Point(x + CELL_PADDING, y + CELL_PADDING + FONT_SIZE + i * LINE_HEIGHT),
                        line,
                        fontsize=FONT_SIZE,
                        fontname="helv",
                        color=color,
                    )
                x += width
            y += row_height

        page_count = doc.page_count
        for index in range(page_count):
            footer = f"Page {index + 1} of {page_count} | {REPORT_BRAND} Report"
            footer_width = fitz.get_text_length(footer, fontname="helv", fontsize=FONT_SIZE)
            doc[index].insert_text(
                fitz.Point((PAGE_WIDTH - footer_width) / 2, PAGE_HEIGHT - 20),
                footer,
                fontsize=FONT_SIZE,
                color=(0.6, 0.6, 0.6),
            )

        data = doc.tobytes()
    finally:
        doc.close()

    logger.debug(f"Rendered '{table.title}' report: {len(table.rows)} rows")
    return data


def _new_report_page(doc, table: ReportTable, widths: List[float], generated_on: date, first: bool):
    page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
    y = MARGIN

    if first:
        page.insert_text(fitz.Point(MARGIN, y + 16), REPORT_BRAND, fontsize=20, fontname="hebo")
        page.insert_text(fitz.Point(MARGIN, y + 34), table.title, fontsize=12)
        if table.subtitle:
            page.insert_text(fitz.Point(MARGIN, y + 48), table.subtitle, fontsize=9, color=(0.6, 0.6, 0.6))
        stamp = f"Generated on: {generated_on.isoformat()}"
        stamp_width = fitz.get_text_length(stamp, fontname="helv", fontsize=9)
        page.insert_text(fitz.Point(PAGE_WIDTH - MARGIN - stamp_width, y + 16), stamp, fontsize=9, color=(0.6, 0.6, 0.6))
        y += 62

    header_height = LINE_HEIGHT + 2 * CELL_PADDING
    x = MARGIN
    for title, width in zip(table.columns, widths):
        page.draw_rect(fitz.Rect(x, y, x + width, y + header_height), color=None, fill=HEADER_FILL)
        page.insert_text(
            fitz.Point(x + CELL_PADDING, y + CELL_PADDING + FONT_SIZE),
            title,
            fontsize=FONT_SIZE,
            fontname="hebo",
            color=(1, 1, 1),
        )
        x += width
    return page, y + header_height
