"""Source adapters binding remote systems to the ingestion contract."""

from .base import IngestionSource
from .blob import SUPPORTED_EXTENSIONS, BlobStorageSource
from .elasticsearch import ElasticsearchSource
from .mongo import MongoSource

__all__ = [
    "SUPPORTED_EXTENSIONS",
    "BlobStorageSource",
    "ElasticsearchSource",
    "IngestionSource",
    "MongoSource",
]
