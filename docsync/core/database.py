"""Connectivity layer for the remote sources and the downstream store."""

from __future__ import annotations

import logging
from typing import Optional

from elasticsearch import AsyncElasticsearch
from motor.motor_asyncio import AsyncIOMotorClient

from docsync.core.config import Settings
from docsync.knowledge.ingestion.storage import ObjectStorageClient

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Lazily establishes connections to the configured services."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._elasticsearch: Optional[AsyncElasticsearch] = None
        self._mongodb: Optional[AsyncIOMotorClient] = None
        self._store_mongodb: Optional[AsyncIOMotorClient] = None
        self._object_storage: Optional[ObjectStorageClient] = None

    def _mongo_client(self, url: str) -> AsyncIOMotorClient:
        timeout_ms = int(self.settings.REMOTE_TIMEOUT_SECONDS * 1000)
        return AsyncIOMotorClient(url, serverSelectionTimeoutMS=timeout_ms, socketTimeoutMS=timeout_ms)

    @property
    def elasticsearch(self) -> AsyncElasticsearch:
        if self._elasticsearch is None:
            self._elasticsearch = AsyncElasticsearch(
                str(self.settings.ELASTICSEARCH_URL),
                basic_auth=(self.settings.ELASTICSEARCH_USERNAME, self.settings.ELASTICSEARCH_PASSWORD),
                request_timeout=self.settings.REMOTE_TIMEOUT_SECONDS,
            )
        return self._elasticsearch

    @property
    def mongodb(self) -> AsyncIOMotorClient:
        if self._mongodb is None:
            self._mongodb = self._mongo_client(str(self.settings.MONGODB_URL))
        return self._mongodb

    @property
    def store_mongodb(self) -> AsyncIOMotorClient:
        if self.settings.STORE_MONGODB_URL is None:
            return self.mongodb
        if self._store_mongodb is None:
            self._store_mongodb = self._mongo_client(str(self.settings.STORE_MONGODB_URL))
        return self._store_mongodb

    @property
    def object_storage(self) -> ObjectStorageClient:
        if self._object_storage is None:
            self._object_storage = ObjectStorageClient.from_settings(self.settings)
        return self._object_storage

    async def close(self) -> None:
        """Tear down connections gracefully."""

        logger.info("Closing connections")

        if self._elasticsearch is not None:
            await self._elasticsearch.close()
            self._elasticsearch = None

        for client in (self._mongodb, self._store_mongodb):
            if client is not None:
                client.close()
        self._mongodb = None
        self._store_mongodb = None
        self._object_storage = None
