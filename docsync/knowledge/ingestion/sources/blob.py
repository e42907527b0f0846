"""Object storage source scoped to a directory prefix."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import List, Optional, Sequence, Set

from docsync.core.exceptions import ScopeViolationError
from docsync.knowledge.ingestion.chunkers import TextChunker
from docsync.knowledge.ingestion.fingerprint import timestamp_version
from docsync.knowledge.ingestion.parsers import DocumentParser
from docsync.knowledge.ingestion.sources.base import IngestionSource
from docsync.knowledge.ingestion.storage import ObjectStorageClient
from docsync.models.ingestion import IngestedChunk, IngestedDocument

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset(
    {".pdf", ".docx", ".doc", ".xlsx", ".xls", ".pptx", ".ppt", ".png", ".jpg", ".jpeg", ".gif"}
)


class BlobStorageSource(IngestionSource):
    """Ingest office documents stored under one prefix of a storage container.

    Versions are the provider's last-modified timestamps, so a blob is
    re-ingested whenever it is rewritten, even with identical bytes.
    """

    def __init__(
        self,
        storage: ObjectStorageClient,
        directory_prefix: str = "",
        *,
        chunker: Optional[TextChunker] = None,
        parser: Optional[DocumentParser] = None,
    ) -> None:
        super().__init__(chunker or TextChunker())
        self.storage = storage
        self.parser = parser or DocumentParser()
        prefix = directory_prefix.lstrip("/")
        self.directory_prefix = prefix if not prefix or prefix.endswith("/") else prefix + "/"

    @property
    def source_id(self) -> str:
        return f"{type(self).__name__}:{self.storage.container}"

    def in_scope(self, document: IngestedDocument) -> bool:
        return super().in_scope(document) and self._within_prefix(document.document_id)

    def _within_prefix(self, name: str) -> bool:
        return name.lower().startswith(self.directory_prefix.lower())

    def _may_fetch(self, name: str) -> bool:
        # exact-case prefix match on a name without empty, "." or ".." segments
        segments = name.split("/")
        if any(segment in ("", ".", "..") for segment in segments):
            return False
        return name.startswith(self.directory_prefix)

    @staticmethod
    def _is_supported(name: str) -> bool:
        return PurePosixPath(name).suffix.lower() in SUPPORTED_EXTENSIONS

    async def get_new_or_modified_documents(
        self, existing: Sequence[IngestedDocument]
    ) -> List[IngestedDocument]:
        known = self._index_existing(existing)
        results: List[IngestedDocument] = []

        async for blob in self.storage.list_blobs(self.directory_prefix):
            if not self._is_supported(blob.name):
                continue
            version = timestamp_version(blob.last_modified)
            if self._is_changed(known, blob.name, version):
                results.append(self._new_document(blob.name, version))

        logger.info("%s: %s new or modified blobs under '%s'", self.source_id, len(results), self.directory_prefix)
        return results

    async def get_deleted_documents(self, existing: Sequence[IngestedDocument]) -> List[IngestedDocument]:
        current: Set[str] = set()
        async for blob in self.storage.list_blobs(self.directory_prefix):
            if self._is_supported(blob.name):
                current.add(blob.name)

        return [doc for doc in existing if self.in_scope(doc) and doc.document_id not in current]

    async def create_chunks_for_document(self, document: IngestedDocument) -> List[IngestedChunk]:
        if not self._may_fetch(document.document_id):
            raise ScopeViolationError(
                "outside_prefix",
                f"Access to document '{document.document_id}' is denied. Outside directory '{self.directory_prefix}'.",
                {"source_id": self.source_id},
            )

        content = await self.storage.download(document.document_id, self.directory_prefix)
        pages = await self.parser.parse(content, document.document_id)

        chunks: List[IngestedChunk] = []
        for page in pages:
            chunks.extend(self._chunk_text(document, page.text, page.page_number))
        return chunks
