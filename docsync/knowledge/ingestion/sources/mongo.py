"""Document-store source over one MongoDB collection."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence, Set

from bson import ObjectId, json_util
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from docsync.core.exceptions import DocumentDecodeError, TransientSourceError
from docsync.knowledge.ingestion.chunkers import TextChunker
from docsync.knowledge.ingestion.fingerprint import fingerprint
from docsync.knowledge.ingestion.parsers import flatten_fields
from docsync.knowledge.ingestion.sources.base import IngestionSource
from docsync.models.ingestion import IngestedChunk, IngestedDocument

logger = logging.getLogger(__name__)


def _parse_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class MongoSource(IngestionSource):
    """Ingest every record of a collection.

    There is no server-side change query: each run streams the whole
    collection and hashes the full extended-JSON form of every record.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        *,
        database_name: Optional[str] = None,
        collection_name: Optional[str] = None,
        chunker: Optional[TextChunker] = None,
        batch_size: int = 500,
        timeout: float = 30.0,
        document_limit: Optional[int] = 20000,
    ) -> None:
        super().__init__(chunker or TextChunker())
        self.collection = collection
        self.database_name = database_name or collection.database.name
        self.collection_name = collection_name or collection.name
        self.batch_size = batch_size
        self.timeout_ms = int(timeout * 1000)
        self.document_limit = document_limit

    @property
    def source_id(self) -> str:
        return f"MongoDB:{self.database_name}/{self.collection_name}"

    def _find(self, projection: Optional[Mapping[str, Any]] = None):
        return self.collection.find({}, projection, batch_size=self.batch_size).max_time_ms(self.timeout_ms)

    async def get_new_or_modified_documents(
        self, existing: Sequence[IngestedDocument]
    ) -> List[IngestedDocument]:
        logger.info("%s: fetching all documents", self.source_id)
        known = self._index_existing(existing)
        results: List[IngestedDocument] = []

        try:
            async for record in self._find():
                object_id = _parse_object_id(record.get("_id"))
                if object_id is None:
                    logger.warning("%s: skipping record with invalid ObjectId %r", self.source_id, record.get("_id"))
                    continue
                document_id = str(object_id)
                version = fingerprint(json_util.dumps(record))
                if self._is_changed(known, document_id, version):
                    results.append(self._new_document(document_id, version))
        except PyMongoError as exc:
            logger.error("%s: enumeration stopped early: %s", self.source_id, exc)

        logger.info("%s: %s new or modified documents", self.source_id, len(results))
        return results

    async def get_deleted_documents(self, existing: Sequence[IngestedDocument]) -> List[IngestedDocument]:
        scoped = [doc for doc in existing if self.in_scope(doc)]
        if not scoped:
            return []

        current: Set[str] = set()
        try:
            async for record in self._find({"_id": 1}):
                current.add(str(record["_id"]))
        except PyMongoError as exc:
            logger.warning("%s: skipping deletion detection: %s", self.source_id, exc)
            return []

        return [doc for doc in scoped if doc.document_id not in current]

    async def create_chunks_for_document(self, document: IngestedDocument) -> List[IngestedChunk]:
        object_id = _parse_object_id(document.document_id)
        if object_id is None:
            raise DocumentDecodeError(
                "invalid_object_id",
                f"Invalid ObjectId format: {document.document_id}",
                {"source_id": self.source_id},
            )

        try:
            record = await self.collection.find_one({"_id": object_id}, max_time_ms=self.timeout_ms)
        except PyMongoError as exc:
            raise TransientSourceError(
                "find_one_failed",
                f"Failed to fetch {document.document_id}: {exc}",
                {"source_id": self.source_id},
            ) from exc

        if record is None:
            return []

        content = flatten_fields(record, document_limit=self.document_limit)
        return self._chunk_text(document, content)
