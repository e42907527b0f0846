"""Common contract shared by all ingestion sources."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Sequence

from docsync.knowledge.ingestion.chunkers import TextChunker
from docsync.models.ingestion import IngestedChunk, IngestedDocument

logger = logging.getLogger(__name__)


class IngestionSource(ABC):
    """Binds one remote system to the incremental ingestion contract.

    ``existing`` arguments are the store's current documents for this
    source; implementations must ignore records belonging to other sources
    or outside their own sub-scope.
    """

    def __init__(self, chunker: TextChunker) -> None:
        self.chunker = chunker

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Stable identifier for this adapter configuration."""

    @abstractmethod
    async def get_new_or_modified_documents(
        self, existing: Sequence[IngestedDocument]
    ) -> List[IngestedDocument]:
        """Return descriptors for remote records whose version differs from ``existing``."""

    @abstractmethod
    async def get_deleted_documents(self, existing: Sequence[IngestedDocument]) -> List[IngestedDocument]:
        """Return the subset of ``existing`` that no longer exists remotely."""

    @abstractmethod
    async def create_chunks_for_document(self, document: IngestedDocument) -> List[IngestedChunk]:
        """Fetch one record and turn it into fresh, unsaved chunks."""

    def in_scope(self, document: IngestedDocument) -> bool:
        return document.source_id == self.source_id

    def _index_existing(self, existing: Iterable[IngestedDocument]) -> Dict[str, str]:
        return {doc.document_id: doc.document_version for doc in existing if self.in_scope(doc)}

    def _is_changed(self, known: Dict[str, str], document_id: str, version: str) -> bool:
        if known.get(document_id) == version:
            logger.debug("Skipping already ingested doc %s from %s", document_id, self.source_id)
            return False
        return True

    def _new_document(self, document_id: str, version: str) -> IngestedDocument:
        return IngestedDocument(source_id=self.source_id, document_id=document_id, document_version=version)

    def _chunk_text(self, document: IngestedDocument, text: str, page_number: int = 1) -> List[IngestedChunk]:
        return [
            IngestedChunk(
                document_id=document.document_id,
                source_id=self.source_id,
                page_number=chunk.page_number,
                index_on_page=chunk.index_on_page,
                text=chunk.text,
            )
            for chunk in self.chunker.iter_chunks(text, page_number)
        ]
