"""Document and chunk store consumed by the ingestion orchestrator.

The store is a keyed mapping of document and chunk records. Writers for the
same ``(source_id, document_id)`` pair are serialized with a per-document
lock; writers for different documents never wait on each other.

A document record is only present once every chunk of its version has been
written, so a version the store reports as current always has its full
chunk set. An interrupted replacement leaves no document record behind and
the next run ingests the document again.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Sequence, Tuple, Union

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from docsync.core.exceptions import StoreError
from docsync.models.ingestion import IngestedChunk, IngestedDocument

logger = logging.getLogger(__name__)

StoreRecord = Union[IngestedDocument, IngestedChunk]
LockKey = Tuple[str, str]


def _split_records(records: Sequence[StoreRecord]) -> Tuple[List[IngestedDocument], List[IngestedChunk]]:
    documents = [record for record in records if isinstance(record, IngestedDocument)]
    chunks = [record for record in records if isinstance(record, IngestedChunk)]
    return documents, chunks


class DocumentStore(ABC):
    def __init__(self) -> None:
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._lock_users: Counter = Counter()

    @abstractmethod
    async def upsert(self, record: StoreRecord) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def query_by_document_id(self, source_id: str, document_id: str) -> List[StoreRecord]:
        """Return the document record(s) and chunk records for one document."""

    @abstractmethod
    async def list_by_source(self, source_id: str) -> List[IngestedDocument]:
        ...

    async def list_chunks(self, source_id: str, document_id: str) -> List[IngestedChunk]:
        records = await self.query_by_document_id(source_id, document_id)
        _, chunks = _split_records(records)
        return sorted(chunks, key=lambda chunk: (chunk.page_number, chunk.index_on_page))

    @asynccontextmanager
    async def document_lock(self, source_id: str, document_id: str) -> AsyncIterator[None]:
        key = (source_id, document_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._locks.pop(key, None)

    async def replace_document(self, document: IngestedDocument, chunks: Sequence[IngestedChunk]) -> bool:
        """Swap in a new version of a document. Returns True if a prior version existed.

        The prior document record is removed before anything else and the new
        one is written last, after all of its chunks.
        """

        async with self.document_lock(document.source_id, document.document_id):
            prior = await self.query_by_document_id(document.source_id, document.document_id)
            prior_documents, prior_chunks = _split_records(prior)
            for record in prior_documents:
                await self.delete(record.key)
            for record in prior_chunks:
                await self.delete(record.key)
            for chunk in chunks:
                await self.upsert(chunk)
            await self.upsert(document)
        return bool(prior_documents)

    async def remove_document(self, source_id: str, document_id: str) -> int:
        async with self.document_lock(source_id, document_id):
            prior = await self.query_by_document_id(source_id, document_id)
            prior_documents, prior_chunks = _split_records(prior)
            # chunks first: a partial failure keeps the document listed, so the deletion is retried
            for record in [*prior_chunks, *prior_documents]:
                await self.delete(record.key)
        return len(prior)


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed store; records do not survive the process."""

    def __init__(self) -> None:
        super().__init__()
        self.documents: Dict[str, IngestedDocument] = {}
        self.chunks: Dict[str, IngestedChunk] = {}

    async def upsert(self, record: StoreRecord) -> None:
        if isinstance(record, IngestedDocument):
            self.documents[record.key] = record.model_copy()
        else:
            self.chunks[record.key] = record.model_copy()

    async def delete(self, key: str) -> None:
        self.documents.pop(key, None)
        self.chunks.pop(key, None)

    async def query_by_document_id(self, source_id: str, document_id: str) -> List[StoreRecord]:
        documents = [
            doc for doc in self.documents.values() if doc.source_id == source_id and doc.document_id == document_id
        ]
        chunks = [
            chunk
            for chunk in self.chunks.values()
            if chunk.source_id == source_id and chunk.document_id == document_id
        ]
        return [*documents, *chunks]

    async def list_by_source(self, source_id: str) -> List[IngestedDocument]:
        return [doc for doc in self.documents.values() if doc.source_id == source_id]


class MongoDocumentStore(DocumentStore):
    """Persist records in ``documents`` and ``chunks`` collections keyed by record key.

    With ``transactions=True`` (replica set or sharded deployments) a
    replacement runs inside one multi-document transaction, so readers see
    either the prior version or the new one and never a mix.
    """

    def __init__(self, database: AsyncIOMotorDatabase, *, transactions: bool = False) -> None:
        super().__init__()
        self.database = database
        self.documents = database["documents"]
        self.chunks = database["chunks"]
        self.transactions = transactions

    async def ensure_indexes(self) -> None:
        try:
            await self.documents.create_index([("source_id", 1), ("document_id", 1)])
            await self.chunks.create_index([("source_id", 1), ("document_id", 1)])
        except PyMongoError as exc:
            raise StoreError("index_setup_failed", f"Failed to create store indexes: {exc}") from exc

    async def upsert(self, record: StoreRecord, session: Any = None) -> None:
        collection = self.documents if isinstance(record, IngestedDocument) else self.chunks
        payload = record.model_dump()
        payload["_id"] = payload.pop("key")
        try:
            await collection.replace_one({"_id": payload["_id"]}, payload, upsert=True, session=session)
        except PyMongoError as exc:
            raise StoreError("upsert_failed", f"Failed to upsert {payload['_id']}: {exc}") from exc

    async def delete(self, key: str, session: Any = None) -> None:
        try:
            await self.chunks.delete_one({"_id": key}, session=session)
            await self.documents.delete_one({"_id": key}, session=session)
        except PyMongoError as exc:
            raise StoreError("delete_failed", f"Failed to delete {key}: {exc}") from exc

    async def query_by_document_id(
        self, source_id: str, document_id: str, session: Any = None
    ) -> List[StoreRecord]:
        query = {"source_id": source_id, "document_id": document_id}
        try:
            documents = [_to_document(row) async for row in self.documents.find(query, session=session)]
            chunks = [_to_chunk(row) async for row in self.chunks.find(query, session=session)]
        except PyMongoError as exc:
            raise StoreError("query_failed", f"Failed to query {source_id}/{document_id}: {exc}") from exc
        return [*documents, *chunks]

    async def list_by_source(self, source_id: str) -> List[IngestedDocument]:
        try:
            return [_to_document(row) async for row in self.documents.find({"source_id": source_id})]
        except PyMongoError as exc:
            raise StoreError("list_failed", f"Failed to list documents for {source_id}: {exc}") from exc

    async def replace_document(self, document: IngestedDocument, chunks: Sequence[IngestedChunk]) -> bool:
        if not self.transactions:
            return await super().replace_document(document, chunks)

        async with self.document_lock(document.source_id, document.document_id):
            try:
                async with await self.database.client.start_session() as session:
                    async with session.start_transaction():
                        prior = await self.query_by_document_id(
                            document.source_id, document.document_id, session=session
                        )
                        for record in prior:
                            await self.delete(record.key, session=session)
                        for chunk in chunks:
                            await self.upsert(chunk, session=session)
                        await self.upsert(document, session=session)
            except PyMongoError as exc:
                raise StoreError(
                    "replace_failed",
                    f"Failed to replace {document.source_id}/{document.document_id}: {exc}",
                ) from exc

        logger.debug("Replaced %s/%s in one transaction", document.source_id, document.document_id)
        return any(isinstance(record, IngestedDocument) for record in prior)


def _to_document(row: dict) -> IngestedDocument:
    return IngestedDocument(key=row["_id"], **{k: v for k, v in row.items() if k != "_id"})


def _to_chunk(row: dict) -> IngestedChunk:
    return IngestedChunk(key=row["_id"], **{k: v for k, v in row.items() if k != "_id"})
