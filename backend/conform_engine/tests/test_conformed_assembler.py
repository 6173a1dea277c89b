"""
Unit tests for the conformed document assembler.
"""

import logging

import pytest

from conform_engine.conformed_assembler import assemble, assemble_with_warnings
from conform_engine.models import ChangeStatus, ChangeType, DocumentType, SourceDocument


def _sequence(pages):
    """Compact (source, page) view of a conformed sequence."""
    return [(p.map.source_document.value[0], p.map.source_page_number) for p in pages]


class TestBasicAssembly:

    def test_no_changes_yields_original_pages(self):
        pages = assemble([], 3, DocumentType.SPECS)
        assert _sequence(pages) == [("o", 1), ("o", 2), ("o", 3)]
        assert [p.conformed_page_number for p in pages] == [1, 2, 3]
        assert pages[1].map.reason == "Original page 2"

    def test_empty_base_without_adds(self, make_change):
        delete = make_change(ChangeType.PAGE_DELETE, target_page_number=1)
        assert assemble([delete], 0, DocumentType.SPECS) == []

    def test_empty_base_with_add(self, make_change):
        add = make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=0, source_page=1)
        pages = assemble([add], 0, DocumentType.SPECS)
        assert _sequence(pages) == [("a", 1)]

    def test_only_approved_changes_for_document_type(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_DELETE, target_page_number=1, status=ChangeStatus.PENDING),
            make_change(ChangeType.PAGE_DELETE, target_page_number=2, status=ChangeStatus.REJECTED),
            make_change(ChangeType.PAGE_DELETE, target_page_number=3,
                        source_original_document=DocumentType.DRAWINGS),
        ]
        assert _sequence(assemble(changes, 3, DocumentType.SPECS)) == [("o", 1), ("o", 2), ("o", 3)]

    def test_idempotent(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_REPLACE, target_page_number=2, source_page=1),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=3, source_page=2),
            make_change(ChangeType.TEXT_ADD, original_page_number=1, new_text_to_insert="x"),
        ]
        assert assemble(changes, 5, DocumentType.SPECS) == assemble(changes, 5, DocumentType.SPECS)


class TestPageOperations:
    """Replace, delete and add semantics."""

    def test_replace_keeps_slot_and_traceability(self, make_change):
        replace = make_change(ChangeType.PAGE_REPLACE, target_page_number=2, source_page=4,
                              description="Revised detail")
        pages = assemble([replace], 3, DocumentType.SPECS)

        assert _sequence(pages) == [("o", 1), ("a", 4), ("o", 3)]
        replaced = pages[1].map
        assert replaced.original_page_for_comparison == 2
        assert replaced.addendum_name == "Addendum1.pdf"
        assert replaced.reason == "Revised detail"
        assert replaced.change_id == replace.id

    def test_last_replace_for_a_page_wins(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_REPLACE, target_page_number=1, source_page=1),
            make_change(ChangeType.PAGE_REPLACE, target_page_number=1, source_page=2),
        ]
        assert _sequence(assemble(changes, 1, DocumentType.SPECS)) == [("a", 2)]

    def test_replace_takes_precedence_over_delete(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_DELETE, target_page_number=2),
            make_change(ChangeType.PAGE_REPLACE, target_page_number=2, source_page=1),
        ]
        pages = assemble(changes, 3, DocumentType.SPECS)
        assert _sequence(pages) == [("o", 1), ("a", 1), ("o", 3)]

    def test_page_count_invariant(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_DELETE, target_page_number=2),
            make_change(ChangeType.PAGE_DELETE, target_page_number=5),
            make_change(ChangeType.PAGE_REPLACE, target_page_number=7, source_page=1),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=1, source_page=2),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=9, source_page=3),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=0, source_page=4),
        ]
        assert len(assemble(changes, 10, DocumentType.SPECS)) == 10 - 2 + 3

    def test_adds_with_same_anchor_keep_order(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=3, source_page=10),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=3, source_page=11),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=3, source_page=12),
        ]
        pages = assemble(changes, 4, DocumentType.SPECS)
        assert _sequence(pages) == [
            ("o", 1), ("o", 2), ("o", 3), ("a", 10), ("a", 11), ("a", 12), ("o", 4),
        ]

    def test_adds_sorted_by_anchor(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=2, source_page=20),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=1, source_page=10),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=0, source_page=1),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=0, source_page=2),
        ]
        pages = assemble(changes, 2, DocumentType.SPECS)
        assert _sequence(pages) == [("a", 1), ("a", 2), ("o", 1), ("a", 10), ("o", 2), ("a", 20)]
        assert pages[3].map.insert_after_original_page_number == 1

    def test_add_after_replaced_page_falls_back_to_end(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_REPLACE, target_page_number=2, source_page=1),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=2, source_page=2),
        ]
        pages = assemble(changes, 3, DocumentType.SPECS)
        assert _sequence(pages) == [("o", 1), ("a", 1), ("o", 3), ("a", 2)]

    def test_orphaned_add_appended_with_warning(self, make_change):
        delete = make_change(ChangeType.PAGE_DELETE, target_page_number=2)
        add = make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=2, source_page=5)

        result = assemble_with_warnings([delete, add], 3, DocumentType.SPECS)

        assert _sequence(result.pages) == [("o", 1), ("o", 3), ("a", 5)]
        assert [w.change_id for w in result.warnings] == [add.id]
        assert "not found" in result.warnings[0].message

    def test_every_add_on_a_missing_anchor_is_warned(self, make_change, caplog):
        delete = make_change(ChangeType.PAGE_DELETE, target_page_number=2)
        first = make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=2, source_page=5)
        second = make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=2, source_page=6)

        with caplog.at_level(logging.WARNING, logger="conform_engine.conformed_assembler"):
            result = assemble_with_warnings([delete, first, second], 3, DocumentType.SPECS)

        assert _sequence(result.pages) == [("o", 1), ("o", 3), ("a", 5), ("a", 6)]
        assert {w.change_id for w in result.warnings} == {first.id, second.id}
        assert sum("not found" in r.getMessage() for r in caplog.records) == 2

    def test_replace_out_of_range_is_reported(self, make_change):
        replace = make_change(ChangeType.PAGE_REPLACE, target_page_number=9, source_page=1)
        result = assemble_with_warnings([replace], 3, DocumentType.SPECS)
        assert result.page_count == 3
        assert result.warnings[0].change_id == replace.id


class TestTextAttachment:
    """Approved text changes attach to original pages only."""

    def test_text_changes_attach_to_original_page(self, make_change):
        text = make_change(ChangeType.TEXT_REPLACE, original_page_number=3, exact_text_to_find="a")
        add = make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=0, source_page=1)
        pages = assemble([text, add], 3, DocumentType.SPECS)

        assert pages[3].map.source_page_number == 3
        assert [c.id for c in pages[3].approved_text_changes] == [text.id]
        assert all(not p.approved_text_changes for p in pages[:3])

    def test_addendum_pages_never_receive_text_changes(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_REPLACE, target_page_number=2, source_page=2),
            make_change(ChangeType.TEXT_DELETE, original_page_number=2, exact_text_to_find="b"),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=2, source_page=3),
        ]
        pages = assemble(changes, 2, DocumentType.SPECS)

        for page in pages:
            if page.map.source_document == SourceDocument.ADDENDUM:
                assert page.approved_text_changes == ()

    def test_unapproved_text_changes_not_attached(self, make_change):
        text = make_change(ChangeType.TEXT_ADD, original_page_number=1, status=ChangeStatus.PENDING)
        assert assemble([text], 1, DocumentType.SPECS)[0].approved_text_changes == ()

    def test_output_does_not_share_instructions(self, make_change):
        text = make_change(ChangeType.TEXT_ADD, original_page_number=1, new_text_to_insert="before")
        pages = assemble([text], 1, DocumentType.SPECS)
        text.new_text_to_insert = "after"
        assert pages[0].approved_text_changes[0].new_text_to_insert == "before"


class TestScenarios:

    def test_delete_and_prepend(self, make_change):
        changes = [
            make_change(ChangeType.PAGE_DELETE, target_page_number=4),
            make_change(ChangeType.PAGE_ADD, insert_after_original_page_number=0, source_page=1,
                        addendum_name="Addendum1.pdf"),
        ]
        pages = assemble(changes, 10, DocumentType.SPECS)

        assert len(pages) == 10
        assert pages[0].map.source_document == SourceDocument.ADDENDUM
        assert pages[0].map.source_page_number == 1
        assert pages[0].map.addendum_name == "Addendum1.pdf"
        assert [p.map.source_page_number for p in pages[1:]] == [1, 2, 3, 5, 6, 7, 8, 9, 10]
        assert all(p.map.source_document == SourceDocument.ORIGINAL for p in pages[1:])
        assert [p.conformed_page_number for p in pages] == list(range(1, 11))
