"""Resolved document model consumed by check implementations."""

from review_pipeline.documents.model import (
    KNOWN_PARTS,
    DocumentNode,
    Position,
    ResolvedDocument,
    load_document,
    thaw,
)

__all__ = [
    "KNOWN_PARTS",
    "DocumentNode",
    "Position",
    "ResolvedDocument",
    "load_document",
    "thaw",
]
