"""Shared fixtures for service-layer tests."""

import os

# Point settings at an in-memory database before the app modules load
os.environ["DATABASE_URL"] = "sqlite://"

import fitz  # PyMuPDF
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base


def pdf_bytes(page_texts) -> bytes:
    doc = fitz.open()
    try:
        for lines in page_texts:
            page = doc.new_page(width=612, height=792)
            for i, line in enumerate(lines):
                page.insert_text(fitz.Point(72, 100 + i * 20), line, fontsize=11, fontname="helv")
        return doc.tobytes()
    finally:
        doc.close()


@pytest.fixture
def specs_pdf() -> bytes:
    return pdf_bytes([
        ["SECTION 05 50 00", "METAL FABRICATIONS"],
        ["Handrails shall be galvanized steel.", "Finish: shop primed."],
        ["SECTION 08 80 00", "GLAZING"],
    ])


@pytest.fixture
def drawings_pdf() -> bytes:
    return pdf_bytes([["A-101 FLOOR PLAN"], ["A-201 ELEVATIONS"]])


@pytest.fixture
def addendum_pdf() -> bytes:
    return pdf_bytes([["ADDENDUM 1 REVISED SHEET A-201"], ["ADDENDUM 1 NEW SHEET A-202"]])


@pytest.fixture
def db_session():
    """SQLite in-memory session shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def raw_plan():
    """Conforming plan as the model returns it."""
    return {
        "change_instructions": [
            {
                "change_type": "TEXT_REPLACE",
                "human_readable_description": "Change handrail finish to stainless steel",
                "source_addendum_file": "uploads/Addendum1.pdf",
                "search_target": {
                    "document_type": "specs",
                    "semantic_search_query": "handrails shall be galvanized",
                    "location_hint": "2.1 Handrails",
                },
                "data_payload": {
                    "text_to_find": "galvanized steel",
                    "replacement_text": "stainless steel",
                },
                "spec_section": "05 50 00",
            },
            {
                "change_type": "PAGE_ADD",
                "human_readable_description": "Add sheet A-202",
                "source_addendum_file": "Addendum1.pdf",
                "search_target": {"document_type": "drawings", "semantic_search_query": "A-202"},
                "data_payload": {"addendum_source_page_number": 2, "insert_after_original_page_number": 2},
            },
            {
                "change_type": "MOVE_WALL",
                "human_readable_description": "Not a known change type",
                "source_addendum_file": "Addendum1.pdf",
                "search_target": {"document_type": "drawings"},
                "data_payload": {},
            },
        ],
        "questions_and_answers": [
            {"question": "Is primer required?", "answer": "Yes, shop primed.", "source_addendum_file": "Addendum1.pdf"},
        ],
    }


@pytest.fixture
def make_pdf():
    """Factory for PDFs with one list of text lines per page."""
    return pdf_bytes
