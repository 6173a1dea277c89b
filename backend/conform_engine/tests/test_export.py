"""
Tests for export planning, the conformed PDF writer and change reports.
"""

import fitz  # PyMuPDF
import pytest

from conform_engine.change_report import (
    clean_title,
    comparison_report,
    qa_report,
    render_report_pdf,
    summary_report,
)
from conform_engine.conformed_assembler import assemble
from conform_engine.conformed_pdf_writer import ConformedPdfWriter, conformed_filename, wrap_to_width
from conform_engine.export_planner import (
    INSERT_FONT_SIZE,
    NOTE_COLOR,
    build_export_plan,
    plan_page_edits,
)
from conform_engine.models import (
    BoundingBox,
    ChangeStatus,
    ChangeType,
    DocumentType,
    QAndAItem,
    SourceDocument,
    TextRun,
)
from conform_engine.pdf_engine import PyMuPDFEngine


PAGE_HEIGHT = 792.0


@pytest.fixture
def runs():
    return [
        TextRun("Handrails shall be ", BoundingBox(72, 100, 95, 11)),
        TextRun("galvanized steel.", BoundingBox(167, 100, 80, 11)),
    ]


def _page_info(*changes):
    return assemble(list(changes), 1, DocumentType.SPECS)[0]


class TestPlanPageEdits:
    """Edit plans are produced in PDF space."""

    def test_replace_whiteout_and_insertion(self, make_change, runs):
        change = make_change(ChangeType.TEXT_REPLACE, original_page_number=1,
                             exact_text_to_find="galvanized steel", new_text_to_insert="stainless steel")
        plan = plan_page_edits(_page_info(change), runs, PAGE_HEIGHT)

        assert len(plan.whiteouts) == 1
        box = plan.whiteouts[0].box
        assert box == BoundingBox(167, PAGE_HEIGHT - 111, 80, 11)

        insertion = plan.insertions[0]
        assert insertion.x == 167
        assert insertion.y == pytest.approx(PAGE_HEIGHT - 100 - INSERT_FONT_SIZE)
        assert insertion.max_width == 80
        assert insertion.line_height == 10
        assert not insertion.is_note

    def test_delete_has_no_insertion(self, make_change, runs):
        change = make_change(ChangeType.TEXT_DELETE, original_page_number=1, exact_text_to_find="Handrails")
        plan = plan_page_edits(_page_info(change), runs, PAGE_HEIGHT)
        assert len(plan.whiteouts) == 1
        assert plan.insertions == ()

    def test_add_anchors_on_location_hint(self, make_change, runs):
        change = make_change(ChangeType.TEXT_ADD, original_page_number=1,
                             location_hint="Handrails", new_text_to_insert="Provide guards.")
        plan = plan_page_edits(_page_info(change), runs, PAGE_HEIGHT)
        assert plan.whiteouts == ()
        assert plan.insertions[0].x == 72

    def test_unanchored_insertion_becomes_note(self, make_change, runs):
        change = make_change(ChangeType.TEXT_ADD, original_page_number=1,
                             location_hint="Part 3", new_text_to_insert="Provide guards.")
        plan = plan_page_edits(_page_info(change), runs, PAGE_HEIGHT)

        note = plan.insertions[0]
        assert note.is_note
        assert note.text == "ADDENDUM NOTE: Part 3 - Provide guards."
        assert (note.x, note.y, note.font_size) == (20, PAGE_HEIGHT - 30, 10)
        assert note.color == NOTE_COLOR

    def test_addendum_pages_have_no_edits(self, make_change, runs):
        replace = make_change(ChangeType.PAGE_REPLACE, target_page_number=1, source_page=2)
        plan = plan_page_edits(_page_info(replace), runs, PAGE_HEIGHT)
        assert plan.source_document == SourceDocument.ADDENDUM
        assert not plan.has_edits


class TestConformedPdfWriter:
    """Writer tests against real in-memory PDFs."""

    @pytest.mark.asyncio
    async def test_writes_conformed_sequence(self, make_change, spec_pdf_bytes, addendum_pdf_bytes):
        engine = PyMuPDFEngine()
        base = await engine.load_document(spec_pdf_bytes, name="specs")
        addendum = await engine.load_document(addendum_pdf_bytes, name="Addendum1.pdf")

        changes = [
            make_change(ChangeType.PAGE_DELETE, target_page_number=3),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=0, source_page=2),
            make_change(ChangeType.TEXT_REPLACE, original_page_number=2,
                        exact_text_to_find="galvanized steel", new_text_to_insert="stainless steel"),
        ]
        pages = assemble(changes, base.page_count, DocumentType.SPECS)
        plans = await build_export_plan(pages, base, engine)

        data = ConformedPdfWriter().write(base.doc, {"Addendum1.pdf": addendum.doc}, plans)

        output = fitz.open(stream=data, filetype="pdf")
        try:
            assert output.page_count == 3
            assert "NEW SHEET A-102" in output[0].get_text()
            assert "METAL FABRICATIONS" in output[1].get_text()
            assert "stainless steel" in output[2].get_text()
        finally:
            output.close()
            await engine.close_document(base)
            await engine.close_document(addendum)

    @pytest.mark.asyncio
    async def test_missing_addendum_page_skipped(self, make_change, spec_pdf_bytes):
        engine = PyMuPDFEngine()
        base = await engine.load_document(spec_pdf_bytes, name="specs")
        add = make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=0, source_page=1,
                          addendum_name="Missing.pdf")
        plans = await build_export_plan(assemble([add], 3, DocumentType.SPECS), base, engine)

        data = ConformedPdfWriter().write(base.doc, {}, plans)

        output = fitz.open(stream=data, filetype="pdf")
        assert output.page_count == 3
        output.close()
        await engine.close_document(base)

    def test_conformed_filename(self):
        assert conformed_filename("Tower B: Specs (Rev 2)", DocumentType.SPECS) == "Conformed_Tower_B_Specs_Rev_2.pdf"
        assert conformed_filename("", DocumentType.DRAWINGS) == "Conformed_Drawings.pdf"
        assert conformed_filename(None, DocumentType.SPECS) == "Conformed_Specifications.pdf"

    def test_wrap_to_width(self):
        lines = wrap_to_width("stainless steel handrails with brushed finish", 60, 9)
        assert len(lines) > 1
        assert " ".join(lines) == "stainless steel handrails with brushed finish"


class TestChangeReports:

    def test_summary_rows(self, make_change):
        log = [
            make_change(ChangeType.TEXT_REPLACE, spec_section="05 50 00", location_hint="2.1.A",
                        exact_text_to_find="old", new_text_to_insert="new"),
            make_change(ChangeType.TEXT_DELETE, exact_text_to_find="remove me", status=ChangeStatus.REJECTED),
        ]
        table = summary_report(log)

        assert table.subtitle == "Source Addendum: Addendum1.pdf"
        assert table.rows[0] == ["APPROVED", "TEXT REPLACE", "05 50 00", "2.1.A", "new"]
        assert table.rows[1][4] == "Original: remove me"
        assert table.rows[1][2] == "N/A"

    def test_comparison_details(self, make_change):
        log = [
            make_change(ChangeType.TEXT_REPLACE, exact_text_to_find="old", new_text_to_insert="new",
                        spec_section="05 50 00", location_hint="2.1.A"),
            make_change(ChangeType.PAGE_ADD),
        ]
        table = comparison_report(log)
        assert table.rows[0][1] == "05 50 00\n2.1.A"
        assert table.rows[0][2] == "ACTION: REPLACE\n\nBEFORE:\nold\n\nAFTER:\nnew"
        assert table.rows[1][2] == "ACTION: ADD\n\nADDED:\n[No new content specified]"

    def test_qa_rows(self):
        table = qa_report([QAndAItem(question="Paint?", answer="Yes.")])
        assert table.rows == [["General", "N/A", "Q: Paint?\n\nA: Yes."]]

    def test_render_report_pdf_paginates(self, make_change):
        log = [make_change(ChangeType.TEXT_ADD, new_text_to_insert="line " * 40) for _ in range(40)]
        data = render_report_pdf(summary_report(log))

        doc = fitz.open(stream=data, filetype="pdf")
        try:
            assert doc.page_count > 1
            assert "Summary of Changes Report" in doc[0].get_text()
            assert f"Page 1 of {doc.page_count}" in doc[0].get_text()
        finally:
            doc.close()

    def test_clean_title(self):
        assert clean_title("Tower B / Phase 2") == "Tower_B_Phase_2"
        assert clean_title("") == "Project"
