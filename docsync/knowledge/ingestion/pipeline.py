"""Reconciles the document store with one ingestion source at a time."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Sequence

from docsync.knowledge.ingestion.sources.base import IngestionSource
from docsync.knowledge.store import DocumentStore
from docsync.models.ingestion import IngestedDocument, IngestionSummary
from docsync.utils.monitoring import observe_document, observe_document_failure, observe_source_run

logger = logging.getLogger(__name__)


class DataIngestor:
    """Apply a source's adds, replacements and deletions to the store.

    Chunks are extracted before the prior version is touched, so a document
    that fails to extract keeps its previous state until a later run
    succeeds. Documents are processed by a bounded pool of ``concurrency``
    workers; the store serializes writers per document.
    """

    def __init__(self, store: DocumentStore, *, concurrency: int = 4) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.store = store
        self.concurrency = concurrency

    @classmethod
    async def ingest_data(cls, store: DocumentStore, source: IngestionSource) -> IngestionSummary:
        return await cls(store).ingest(source)

    async def ingest(self, source: IngestionSource) -> IngestionSummary:
        source_id = source.source_id
        summary = IngestionSummary(source_id=source_id)
        started = time.perf_counter()

        existing = await self.store.list_by_source(source_id)
        deleted = await source.get_deleted_documents(existing)
        changed = await source.get_new_or_modified_documents(existing)

        changed_ids = {doc.document_id for doc in changed}
        deleted = [doc for doc in deleted if doc.document_id not in changed_ids]

        for document in deleted:
            await self._delete(source_id, document, summary)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def worker(document: IngestedDocument) -> None:
            async with semaphore:
                await self._ingest_document(source, document, summary)

        await asyncio.gather(*(worker(document) for document in changed))

        deleted_ids = {doc.document_id for doc in deleted}
        summary.unchanged = sum(
            1
            for doc in existing
            if source.in_scope(doc) and doc.document_id not in changed_ids and doc.document_id not in deleted_ids
        )
        observe_source_run(source_id, time.perf_counter() - started)
        logger.info(
            "%s: added=%s replaced=%s deleted=%s unchanged=%s failed=%s",
            source_id,
            summary.added,
            summary.replaced,
            summary.deleted,
            summary.unchanged,
            len(summary.failed),
        )
        return summary

    async def _delete(self, source_id: str, document: IngestedDocument, summary: IngestionSummary) -> None:
        try:
            await self.store.remove_document(source_id, document.document_id)
        except Exception:
            logger.exception("%s: failed to delete %s", source_id, document.document_id)
            summary.failed.append(document.document_id)
            observe_document_failure(source_id)
            return

        logger.info("%s: removed deleted document %s", source_id, document.document_id)
        summary.deleted += 1
        observe_document(source_id, "deleted")

    async def _ingest_document(
        self, source: IngestionSource, document: IngestedDocument, summary: IngestionSummary
    ) -> None:
        source_id = source.source_id
        try:
            chunks = await source.create_chunks_for_document(document)
            replaced = await self.store.replace_document(document, chunks)
        except Exception as exc:
            logger.error("%s: failed to ingest %s: %s", source_id, document.document_id, exc, exc_info=True)
            summary.failed.append(document.document_id)
            observe_document_failure(source_id)
            return

        operation = "replaced" if replaced else "added"
        if replaced:
            summary.replaced += 1
        else:
            summary.added += 1
        observe_document(source_id, operation)
        logger.debug("%s: %s %s with %s chunks", source_id, operation, document.document_id, len(chunks))


async def run_ingestion_cycle(
    sources: Sequence[IngestionSource],
    store: DocumentStore,
    *,
    concurrency: int = 4,
) -> List[IngestionSummary]:
    """Run every source once, in order. A failing source never stops the others."""

    ingestor = DataIngestor(store, concurrency=concurrency)
    summaries: List[IngestionSummary] = []

    for source in sources:
        started = time.perf_counter()
        try:
            summaries.append(await ingestor.ingest(source))
        except Exception:
            logger.exception("Ingestion failed for source %s", source.source_id)
            observe_source_run(source.source_id, time.perf_counter() - started, failed=True)

    return summaries
