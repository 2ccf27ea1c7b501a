"""Export engine and document renderers."""

from statement_ingest.output.exporter import ExportEngine, resolve_range
from statement_ingest.output.renderers import (
    CONTENT_TYPES,
    DEFAULT_FIELDS,
    ExportError,
    RenderContext,
    render,
)

__all__ = [
    "ExportEngine",
    "ExportError",
    "RenderContext",
    "render",
    "resolve_range",
    "CONTENT_TYPES",
    "DEFAULT_FIELDS",
]
