"""docsync: incremental multi-source document ingestion into a chunked text corpus."""

__version__ = "0.1.0"
