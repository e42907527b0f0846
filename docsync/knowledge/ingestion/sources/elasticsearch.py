"""Search-index source enumerated through the scroll API."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Set

from elasticsearch import ApiError, AsyncElasticsearch, NotFoundError, TransportError

from docsync.core.exceptions import TransientSourceError
from docsync.knowledge.ingestion.chunkers import TextChunker
from docsync.knowledge.ingestion.fingerprint import fingerprint_fields
from docsync.knowledge.ingestion.parsers import flatten_fields
from docsync.knowledge.ingestion.sources.base import IngestionSource
from docsync.models.ingestion import IngestedChunk, IngestedDocument

logger = logging.getLogger(__name__)

_REMOTE_ERRORS = (ApiError, TransportError, asyncio.TimeoutError)


def _body(response: Any) -> Mapping[str, Any]:
    return getattr(response, "body", response)


class ElasticsearchSource(IngestionSource):
    """Ingest the hits of one index.

    Versions hash only the projected ``fields`` of each hit, so changes to
    other fields do not trigger re-ingestion.
    """

    def __init__(
        self,
        client: AsyncElasticsearch,
        index: str,
        fields: Sequence[str],
        *,
        chunker: Optional[TextChunker] = None,
        scroll: str = "2m",
        batch_size: int = 1000,
        timeout: float = 30.0,
        field_limit: int = 3000,
        document_limit: int = 20000,
    ) -> None:
        super().__init__(chunker or TextChunker())
        self.client = client
        self.index = index
        self.fields = list(fields)
        self.scroll = scroll
        self.batch_size = batch_size
        self.timeout = timeout
        self.field_limit = field_limit
        self.document_limit = document_limit

    @property
    def source_id(self) -> str:
        return f"Elasticsearch:{self.index}"

    async def _request(self, method: str, **kwargs: Any) -> Mapping[str, Any]:
        response = await asyncio.wait_for(getattr(self.client, method)(**kwargs), timeout=self.timeout)
        return _body(response)

    async def _scroll_batches(self, **search_kwargs: Any) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield hit batches until an empty batch; always release the scroll.

        Raises TransientSourceError when any batch fails, after the batches
        fetched so far have been yielded.
        """

        scroll_id: Optional[str] = None
        try:
            try:
                response = await self._request(
                    "search",
                    index=self.index,
                    scroll=self.scroll,
                    size=self.batch_size,
                    query={"match_all": {}},
                    **search_kwargs,
                )
            except _REMOTE_ERRORS as exc:
                raise TransientSourceError(
                    "scroll_open_failed",
                    f"Initial scroll search failed: {exc}",
                    {"index": self.index},
                ) from exc

            while True:
                scroll_id = response.get("_scroll_id") or scroll_id
                hits = response["hits"]["hits"]
                if not hits:
                    return
                yield hits

                try:
                    response = await self._request("scroll", scroll_id=scroll_id, scroll=self.scroll)
                except _REMOTE_ERRORS as exc:
                    raise TransientSourceError(
                        "scroll_failed",
                        f"Scroll batch failed: {exc}",
                        {"index": self.index},
                    ) from exc
        finally:
            if scroll_id:
                await self._clear_scroll(scroll_id)

    async def _clear_scroll(self, scroll_id: str) -> None:
        try:
            await self._request("clear_scroll", scroll_id=scroll_id)
        except _REMOTE_ERRORS as exc:
            logger.warning("Failed to clear scroll on %s: %s", self.index, exc)

    async def get_new_or_modified_documents(
        self, existing: Sequence[IngestedDocument]
    ) -> List[IngestedDocument]:
        known = self._index_existing(existing)
        results: List[IngestedDocument] = []

        try:
            async with aclosing(self._scroll_batches(source_includes=self.fields)) as batches:
                async for hits in batches:
                    for hit in hits:
                        version = fingerprint_fields(hit.get("_source") or {})
                        if self._is_changed(known, hit["_id"], version):
                            results.append(self._new_document(hit["_id"], version))
        except TransientSourceError as exc:
            logger.error("%s: enumeration stopped early: %s", self.source_id, exc)

        logger.info("%s: %s new or modified documents", self.source_id, len(results))
        return results

    async def get_deleted_documents(self, existing: Sequence[IngestedDocument]) -> List[IngestedDocument]:
        scoped = [doc for doc in existing if self.in_scope(doc)]
        if not scoped:
            return []

        current: Set[str] = set()
        try:
            async with aclosing(self._scroll_batches(source=False)) as batches:
                async for hits in batches:
                    current.update(hit["_id"] for hit in hits)
        except TransientSourceError as exc:
            # an incomplete listing cannot prove absence
            logger.warning("%s: skipping deletion detection: %s", self.source_id, exc)
            return []

        return [doc for doc in scoped if doc.document_id not in current]

    async def create_chunks_for_document(self, document: IngestedDocument) -> List[IngestedChunk]:
        try:
            response = await self._request("get", index=self.index, id=document.document_id)
        except NotFoundError:
            return []
        except _REMOTE_ERRORS as exc:
            raise TransientSourceError(
                "get_failed",
                f"Failed to fetch {document.document_id}: {exc}",
                {"index": self.index},
            ) from exc

        if not response.get("found", True):
            return []

        content = flatten_fields(
            response.get("_source") or {},
            field_limit=self.field_limit,
            document_limit=self.document_limit,
        )
        return self._chunk_text(document, content)
