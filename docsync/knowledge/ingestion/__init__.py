"""Ingestion pipeline: fingerprints, chunking, parsers, sources and orchestration."""
