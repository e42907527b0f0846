"""Exception hierarchy for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(eq=False)
class DocSyncError(Exception):
    """Base class for docsync errors with structured payloads."""

    error_code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        base = f"[{self.error_code}] {self.message}"
        if self.details:
            return f"{base} :: {self.details}"
        return base


class ConfigurationError(DocSyncError):
    """Raised at startup when a required endpoint or credential is missing."""


class TransientSourceError(DocSyncError):
    """Raised when a remote source cannot be reached or paginated."""


class DocumentDecodeError(DocSyncError):
    """Raised when a single document cannot be decoded into text."""


class ScopeViolationError(DocSyncError):
    """Raised when a document outside a source's configured scope is requested."""


class StoreError(DocSyncError):
    """Raised when the downstream document/chunk store rejects an operation."""
