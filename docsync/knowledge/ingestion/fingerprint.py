"""Content fingerprints used as document versions.

Two strategies exist and are only comparable within one source: a SHA-256
digest over a canonical serialization, or a provider-reported modification
timestamp in sortable ISO form.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Mapping, Union

from docsync.models.ingestion import FieldValue, stringify_field


def fingerprint(payload: Union[str, bytes]) -> str:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest().upper()


def canonical_json(fields: Mapping[str, FieldValue]) -> str:
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=stringify_field)


def fingerprint_fields(fields: Mapping[str, FieldValue]) -> str:
    """Hash a field map independently of key order."""

    return fingerprint(canonical_json(fields))


def timestamp_version(value: datetime) -> str:
    """Render a last-modified timestamp as a UTC ISO-8601 round-trip string."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
