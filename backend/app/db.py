"""
SQLAlchemy models for conforming projects.

A project keeps its change log, Q&A log and AI reports as JSON; the PDFs
themselves live in project_files. The conformed page sequence is derived on
demand and never stored.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON, BigInteger, Column, DateTime, ForeignKey, Index, Integer, LargeBinary,
    String, UniqueConstraint, Uuid, create_engine,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from app.config import settings


Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in development and tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


# File roles
ROLE_BASE_DRAWINGS = "base_drawings"
ROLE_BASE_SPECS = "base_specs"
ROLE_ADDENDUM = "addendum"
FILE_ROLES = (ROLE_BASE_DRAWINGS, ROLE_BASE_SPECS, ROLE_ADDENDUM)


class Project(Base):
    """A conforming project: two base documents plus any number of addenda."""

    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_name = Column(String(255), nullable=False)
    change_log = Column(JsonColumn, nullable=False, default=list)
    qa_log = Column(JsonColumn, nullable=False, default=list)
    quarantined = Column(JsonColumn, nullable=False, default=list)  # LLM items that failed validation
    base_drawings_page_count = Column(Integer, nullable=True)
    base_specs_page_count = Column(Integer, nullable=True)
    triage_report = Column(JsonColumn, nullable=True)
    executive_summary = Column(String, nullable=True)
    cost_analysis = Column(JsonColumn, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    files = relationship("ProjectFile", back_populates="project", cascade="all, delete-orphan")


class ProjectFile(Base):
    """Uploaded PDF (base document or addendum) stored as binary."""

    __tablename__ = "project_files"
    __table_args__ = (
        UniqueConstraint("project_id", "role", "filename", name="uq_project_files_role_name"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id"), nullable=False)
    role = Column(String(50), nullable=False)  # base_drawings, base_specs, addendum
    filename = Column(String(255), nullable=False)
    file_hash = Column(String(64), nullable=False)  # SHA256 of file_data
    file_data = Column(LargeBinary, nullable=False)
    file_size = Column(BigInteger, nullable=True)
    page_count = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="files")


# Indexes
Index("idx_project_files_project_id", ProjectFile.project_id)
Index("idx_project_files_role", ProjectFile.project_id, ProjectFile.role)


# Database engine and session factory
_engine = None
_SessionLocal = None


def get_engine():
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        if settings.is_sqlite:
            _engine = create_engine(
                settings.database_url,
                echo=settings.debug,
                connect_args={"check_same_thread": False},
            )
        else:
            _engine = create_engine(
                settings.database_url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=300,
                pool_pre_ping=True,  # Test connection before using (auto-reconnect)
                echo=settings.debug,
            )
    return _engine


def get_session_factory():
    """Get or create session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine()
        )
    return _SessionLocal


def get_db() -> Session:
    """Get database session (dependency injection)."""
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_schema():
    """Create tables if they do not exist."""
    Base.metadata.create_all(bind=get_engine())
