"""
Document Registry

Explicit registry of open PDF documents keyed by name. Any component may
read pages through a registered document; only the owner that opened it may
close it, and closing waits until every outstanding page task has settled.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

from .errors import DocumentOwnershipError, DocumentRegistryError
from .pdf_engine import DocumentHandle, PyMuPDFEngine

logger = logging.getLogger(__name__)


@dataclass
class _RegistryEntry:
    handle: DocumentHandle
    owner: str
    outstanding: int = 0
    closing: bool = False


class DocumentRegistry:
    """Shared-read, single-owner-for-teardown store of document handles."""

    def __init__(self, engine: Optional[PyMuPDFEngine] = None):
        self.engine = engine or PyMuPDFEngine()
        self._entries: Dict[str, _RegistryEntry] = {}
        self._settled = asyncio.Condition()

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def names(self) -> List[str]:
        return list(self._entries)

    def owner_of(self, name: str) -> str:
        return self._entry(name).owner

    def outstanding(self, name: str) -> int:
        return self._entry(name).outstanding

    def _entry(self, name: str) -> _RegistryEntry:
        entry = self._entries.get(name)
        if entry is None:
            raise DocumentRegistryError(f"Document '{name}' is not open")
        return entry

    async def open(self, name: str, data: bytes, owner: str) -> DocumentHandle:
        """Load and register a document under ``name``, owned by ``owner``."""
        if name in self._entries:
            raise DocumentRegistryError(f"Document '{name}' is already open")

        handle = await self.engine.load_document(data, name=name)
        self._entries[name] = _RegistryEntry(handle=handle, owner=owner)
        logger.debug(f"Registered '{name}' for owner '{owner}'")
        return handle

    def get(self, name: str) -> DocumentHandle:
        entry = self._entry(name)
        if entry.closing:
            raise DocumentRegistryError(f"Document '{name}' is closing")
        return entry.handle

    @asynccontextmanager
    async def acquire(self, name: str) -> AsyncIterator[DocumentHandle]:
        """
        Borrow a document for the duration of a page task.

        The document cannot be closed while any borrow is outstanding.
        """
        entry = self._entry(name)
        if entry.closing:
            raise DocumentRegistryError(f"Document '{name}' is closing")

        entry.outstanding += 1
        try:
            yield entry.handle
        finally:
            entry.outstanding -= 1
            async with self._settled:
                self._settled.notify_all()

    async def close(self, name: str, owner: str) -> None:
        """
        Close a document once its outstanding tasks have settled.

        Raises:
            DocumentOwnershipError: ``owner`` did not open the document
        """
        entry = self._entry(name)
        if entry.owner != owner:
            raise DocumentOwnershipError(
                f"'{owner}' cannot close '{name}': it is owned by '{entry.owner}'"
            )

        entry.closing = True
        async with self._settled:
            await self._settled.wait_for(lambda: entry.outstanding == 0)

        await self.engine.close_document(entry.handle)
        del self._entries[name]
        logger.debug(f"Closed '{name}'")

    async def close_all(self, owner: str) -> None:
        for name in [n for n, e in self._entries.items() if e.owner == owner]:
            await self.close(name, owner)
