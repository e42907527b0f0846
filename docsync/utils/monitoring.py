"""Ingestion metrics leveraging Prometheus client."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

documents_ingested_total = Counter(
    "docsync_documents_ingested_total",
    "Documents written to or removed from the store",
    ["source", "operation"],
)

document_failures_total = Counter(
    "docsync_document_failures_total",
    "Documents skipped after an extraction or write failure",
    ["source"],
)

source_failures_total = Counter(
    "docsync_source_failures_total",
    "Source runs aborted by an unexpected error",
    ["source"],
)

source_run_seconds = Histogram(
    "docsync_source_run_seconds",
    "Duration of one source reconciliation run",
    ["source"],
)


def observe_document(source: str, operation: str) -> None:
    documents_ingested_total.labels(source=source, operation=operation).inc()


def observe_document_failure(source: str) -> None:
    document_failures_total.labels(source=source).inc()


def observe_source_run(source: str, duration_seconds: float, *, failed: bool = False) -> None:
    source_run_seconds.labels(source=source).observe(duration_seconds)
    if failed:
        source_failures_total.labels(source=source).inc()
