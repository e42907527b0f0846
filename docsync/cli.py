"""Command line entry for docsync: one full ingestion pass over every configured source."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional, Sequence

from botocore.exceptions import BotoCoreError
from google.auth.exceptions import GoogleAuthError
from pymongo.errors import PyMongoError

from docsync.core.config import Settings, get_settings
from docsync.core.database import ConnectionManager
from docsync.core.exceptions import ConfigurationError, StoreError
from docsync.knowledge.ingestion.chunkers import TextChunker
from docsync.knowledge.ingestion.pipeline import run_ingestion_cycle
from docsync.knowledge.ingestion.sources import (
    BlobStorageSource,
    ElasticsearchSource,
    IngestionSource,
    MongoSource,
)
from docsync.knowledge.store import DocumentStore, InMemoryDocumentStore, MongoDocumentStore
from docsync.models.ingestion import IngestionSummary

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# raised while clients are built or the store is prepared, before any source runs
_STARTUP_ERRORS = (BotoCoreError, GoogleAuthError, PyMongoError, StoreError, ValueError)


def build_sources(settings: Settings, connections: ConnectionManager) -> List[IngestionSource]:
    chunker = TextChunker(settings.CHUNK_MAX_CHARS)
    sources: List[IngestionSource] = []

    if settings.elasticsearch_enabled:
        for index in settings.elasticsearch_indices:
            sources.append(
                ElasticsearchSource(
                    connections.elasticsearch,
                    index,
                    settings.elasticsearch_fields,
                    chunker=chunker,
                    scroll=settings.ELASTICSEARCH_SCROLL,
                    batch_size=settings.ELASTICSEARCH_BATCH_SIZE,
                    timeout=settings.REMOTE_TIMEOUT_SECONDS,
                    field_limit=settings.FIELD_VALUE_MAX_CHARS,
                    document_limit=settings.DOCUMENT_MAX_CHARS,
                )
            )

    if settings.blob_source_enabled:
        sources.append(
            BlobStorageSource(connections.object_storage, settings.STORAGE_PREFIX, chunker=chunker)
        )

    if settings.mongodb_enabled:
        collection = connections.mongodb[settings.MONGODB_DATABASE][settings.MONGODB_COLLECTION]
        sources.append(
            MongoSource(
                collection,
                database_name=settings.MONGODB_DATABASE,
                collection_name=settings.MONGODB_COLLECTION,
                chunker=chunker,
                timeout=settings.REMOTE_TIMEOUT_SECONDS,
                document_limit=settings.DOCUMENT_MAX_CHARS,
            )
        )

    return sources


def build_store(settings: Settings, connections: ConnectionManager) -> DocumentStore:
    if settings.STORE_BACKEND == "mongo":
        return MongoDocumentStore(
            connections.store_mongodb[settings.STORE_DATABASE],
            transactions=settings.STORE_MONGODB_TRANSACTIONS,
        )
    return InMemoryDocumentStore()


async def run(settings: Settings) -> List[IngestionSummary]:
    connections = ConnectionManager(settings)
    try:
        try:
            sources = build_sources(settings, connections)
            if not sources:
                logger.warning("No ingestion sources configured; nothing to do.")
                return []

            store = build_store(settings, connections)
            if isinstance(store, MongoDocumentStore):
                await store.ensure_indexes()
        except _STARTUP_ERRORS as exc:
            raise ConfigurationError("startup_failed", f"Could not set up configured services: {exc}") from exc

        logger.info("Starting data ingestion for %s sources", len(sources))
        summaries = await run_ingestion_cycle(sources, store, concurrency=settings.INGESTION_CONCURRENCY)
        logger.info("Finished data ingestion.")
        return summaries
    finally:
        await connections.close()


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronize configured document sources into the chunk store.")
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS, help="Override LOG_LEVEL for this run")
    parser.add_argument("--concurrency", type=_positive_int, help="Override INGESTION_CONCURRENCY for this run")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    overrides = {}
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level
    if args.concurrency:
        overrides["INGESTION_CONCURRENCY"] = args.concurrency
    if overrides:
        settings = settings.model_copy(update=overrides)

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        settings.validate_sources()
        summaries = asyncio.run(run(settings))
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    for summary in summaries:
        print(
            f"{summary.source_id}: added={summary.added} replaced={summary.replaced} "
            f"deleted={summary.deleted} unchanged={summary.unchanged} failed={len(summary.failed)}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
