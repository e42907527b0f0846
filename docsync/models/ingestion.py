"""Document and chunk records tracked by the ingestion pipeline."""

from __future__ import annotations

import json
import os
import time
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

# nested lists and maps are rendered as compact JSON
FieldValue = Union[str, int, float, bool, datetime, date, List[Any], Dict[str, Any], None]


def new_key() -> str:
    """Return a time-ordered unique key (UUID version 7)."""

    timestamp_ms = time.time_ns() // 1_000_000
    value = (timestamp_ms & ((1 << 48) - 1)) << 80
    value |= int.from_bytes(os.urandom(10), "big") & ((1 << 80) - 1)
    # version 7 in bits 76-79, RFC 4122 variant in bits 62-63
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return str(uuid.UUID(int=value))


def stringify_field(value: Any) -> str:
    """Render a schema-less field value for display and hashing."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=stringify_field)
    return str(value)


class IngestedDocument(BaseModel):
    key: str = Field(default_factory=new_key)
    source_id: str = Field(..., description="Source adapter instance that produced this record")
    document_id: str = Field(..., description="Source-native identifier, unique within source_id")
    document_version: str = Field(..., description="Fingerprint of the ingested content")


class IngestedChunk(BaseModel):
    key: str = Field(default_factory=new_key)
    document_id: str
    source_id: Optional[str] = None
    page_number: int = Field(1, ge=1)
    index_on_page: int = Field(0, ge=0)
    text: str


class IngestionSummary(BaseModel):
    """Outcome of one reconciliation run for a single source."""

    source_id: str
    added: int = 0
    replaced: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: List[str] = Field(default_factory=list)

    @property
    def mutations(self) -> int:
        return self.added + self.replaced + self.deleted
