"""Pydantic models shared across the ingestion pipeline."""

from .ingestion import (
    FieldValue,
    IngestedChunk,
    IngestedDocument,
    IngestionSummary,
    new_key,
    stringify_field,
)

__all__ = [
    "FieldValue",
    "IngestedChunk",
    "IngestedDocument",
    "IngestionSummary",
    "new_key",
    "stringify_field",
]
