"""Statement ingestion, deduplication, classification and export."""

__version__ = "0.1.0"
