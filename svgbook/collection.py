"""
Document Collection
===================
Ordered list of pages as supplied by intake. Order here is output order.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional

from .models import Document, DocumentStatus

logger = logging.getLogger(__name__)


class DocumentCollection:
    """Owns the documents of one book; removal destroys a document."""

    def __init__(self, documents: Iterable[Document] = ()):
        self._documents: list[Document] = list(documents)

    def add(self, document: Document) -> Document:
        self._documents.append(document)
        return document

    def add_markup(self, name: str, text: str) -> Document:
        """
        Parse and append a page.

        Raises:
            MarkupError: If the markup is invalid; nothing is added.
        """
        document = Document.from_markup(name, text)
        logger.debug(f"Added page {name} ({document.id})")
        return self.add(document)

    def get(self, doc_id: str) -> Optional[Document]:
        for document in self._documents:
            if document.id == doc_id:
                return document
        return None

    def require(self, doc_id: str) -> Document:
        document = self.get(doc_id)
        if document is None:
            raise KeyError(f"Unknown document: {doc_id}")
        return document

    def remove(self, doc_id: str) -> bool:
        document = self.get(doc_id)
        if document is None:
            return False
        self._documents.remove(document)
        return True

    def reorder(self, doc_ids: list[str]) -> None:
        """
        Replace the order with the given ids.

        Raises:
            ValueError: If ids are not a permutation of the current ones.
        """
        current = {d.id: d for d in self._documents}
        if sorted(doc_ids) != sorted(current):
            raise ValueError("Reorder ids must match the collection exactly")
        self._documents = [current[i] for i in doc_ids]

    def pending(self) -> list[Document]:
        """Pages that still need bundling (never bundled, or failed)."""
        return [
            d for d in self._documents
            if d.status in (DocumentStatus.UNRESOLVED, DocumentStatus.FAILED)
        ]

    def exportable(self) -> list[Document]:
        return [d for d in self._documents if d.is_exportable]

    def __iter__(self) -> Iterator[Document]:
        return iter(list(self._documents))

    def __len__(self) -> int:
        return len(self._documents)
