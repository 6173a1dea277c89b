"""
Conform engine exceptions.

Only boundary and lifecycle problems raise. Extraction failures, location
misses, missing coordinates and orphaned page additions degrade gracefully
and are reported through return values and logging instead.
"""


class ConformEngineError(Exception):
    """Base class for all conform engine errors."""


class InstructionValidationError(ConformEngineError):
    """An externally produced change instruction failed boundary validation."""

    def __init__(self, message: str, payload: dict | None = None):
        super().__init__(message)
        self.payload = payload or {}


class DocumentRegistryError(ConformEngineError):
    """A document handle was requested, opened twice, or closed incorrectly."""


class DocumentOwnershipError(DocumentRegistryError):
    """A component tried to close a document it did not open."""


class RenderCancelledError(ConformEngineError):
    """A page render was superseded by a newer render for the same viewport."""
