"""Shared pytest fixtures and stub remote clients."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from elasticsearch import ConnectionError as ESConnectionError
from elasticsearch import NotFoundError

from docsync.knowledge.ingestion.chunkers import TextChunker
from docsync.knowledge.ingestion.parsers import PageText
from docsync.knowledge.ingestion.storage import BlobItem
from docsync.knowledge.store import InMemoryDocumentStore


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


class StubObjectStorage:
    """In-memory stand-in for ObjectStorageClient."""

    def __init__(self, container: str = "corpus") -> None:
        self.container = container
        self.blobs: Dict[str, tuple[datetime, bytes]] = {}
        self.downloads: List[str] = []
        self.download_prefixes: List[str] = []
        self.list_error: Optional[Exception] = None

    def put(self, name: str, content: bytes = b"data", modified: Optional[datetime] = None) -> None:
        self.blobs[name] = (modified or datetime(2024, 1, 1, tzinfo=timezone.utc), content)

    async def list_blobs(self, prefix: str = ""):
        if self.list_error is not None:
            raise self.list_error
        for name in sorted(self.blobs):
            if name.startswith(prefix):
                yield BlobItem(name=name, last_modified=self.blobs[name][0])

    async def download(self, name: str, prefix: str = "") -> bytes:
        self.downloads.append(name)
        self.download_prefixes.append(prefix)
        return self.blobs[name][1]


class StubParser:
    """Treats blob bytes as UTF-8 text; pages separated by form feeds."""

    def __init__(self) -> None:
        self.fail_on: set[str] = set()

    async def parse(self, content: bytes, name: str) -> List[PageText]:
        if name in self.fail_on:
            from docsync.core.exceptions import DocumentDecodeError

            raise DocumentDecodeError("decode_failed", f"cannot decode {name}")
        pages = content.decode("utf-8").split("\f")
        return [PageText(number, text) for number, text in enumerate(pages, start=1) if text]


class StubElasticsearch:
    """Scroll-capable stand-in for AsyncElasticsearch."""

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None, batch_size: int = 2) -> None:
        self.documents = documents or {}
        self.batch_size = batch_size
        self.search_calls: List[Dict[str, Any]] = []
        self.scroll_calls = 0
        self.cleared: List[str] = []
        self.fail_search: Optional[Exception] = None
        self.fail_scroll_after: Optional[int] = None
        self.scroll_error: Exception = ESConnectionError("scroll failed")
        self._cursors: Dict[str, List[List[Dict[str, Any]]]] = {}

    def _hits(self, source: Any, includes: Optional[List[str]]) -> List[Dict[str, Any]]:
        hits = []
        for doc_id, fields in self.documents.items():
            hit: Dict[str, Any] = {"_id": doc_id}
            if source is not False:
                hit["_source"] = {k: v for k, v in fields.items() if includes is None or k in includes}
            hits.append(hit)
        return hits

    async def search(self, *, index, scroll, size, query, source=None, source_includes=None):
        self.search_calls.append({"index": index, "source": source, "source_includes": source_includes})
        if self.fail_search is not None:
            raise self.fail_search
        hits = self._hits(source, source_includes)
        batches = [hits[i : i + self.batch_size] for i in range(0, len(hits), self.batch_size)] or [[]]
        scroll_id = f"scroll-{len(self.search_calls)}"
        self._cursors[scroll_id] = batches[1:]
        return {"_scroll_id": scroll_id, "hits": {"hits": batches[0]}}

    async def scroll(self, *, scroll_id, scroll):
        self.scroll_calls += 1
        if self.fail_scroll_after is not None and self.scroll_calls > self.fail_scroll_after:
            raise self.scroll_error
        remaining = self._cursors[scroll_id]
        batch = remaining.pop(0) if remaining else []
        return {"_scroll_id": scroll_id, "hits": {"hits": batch}}

    async def clear_scroll(self, *, scroll_id):
        self.cleared.append(scroll_id)
        return {"succeeded": True}

    async def get(self, *, index, id):
        if id not in self.documents:
            raise NotFoundError("not found", meta=None, body={"found": False})
        return {"_id": id, "found": True, "_source": dict(self.documents[id])}


class StubCursor:
    def __init__(self, records: List[Dict[str, Any]], error: Optional[Exception] = None, fail_after: int = 0) -> None:
        self._records = records
        self._error = error
        self._fail_after = fail_after
        self.max_time = None

    def max_time_ms(self, value: int) -> "StubCursor":
        self.max_time = value
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for position, record in enumerate(self._records):
            if self._error is not None and position >= self._fail_after:
                raise self._error
            yield record
        if self._error is not None and len(self._records) <= self._fail_after:
            raise self._error


class StubMongoCollection:
    """Minimal motor collection stand-in."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None) -> None:
        self.records = records or []
        self.name = "records"
        self.database = type("Database", (), {"name": "shop"})()
        self.error: Optional[Exception] = None
        self.fail_after = 0
        self.find_one_calls: List[Dict[str, Any]] = []

    def find(self, filter, projection=None, batch_size=0):
        records = self.records
        if projection:
            records = [{key: record[key] for key in projection if key in record} for record in records]
        return StubCursor(records, self.error, self.fail_after)

    async def find_one(self, filter, max_time_ms=None):
        self.find_one_calls.append(filter)
        for record in self.records:
            if record["_id"] == filter["_id"]:
                return record
        return None


@pytest.fixture
def chunker():
    return TextChunker(max_chars=40)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def object_storage():
    return StubObjectStorage()


@pytest.fixture
def stub_parser():
    return StubParser()
