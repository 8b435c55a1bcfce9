"""Utility modules."""

from app.utils.canonical import canonical_hash, canonicalize, to_json_document
from app.utils.pagination import (
    PaginationParams,
    get_pagination,
    paginate_select,
)

__all__ = [
    # Canonical JSON
    "canonical_hash",
    "canonicalize",
    "to_json_document",
    # Pagination
    "PaginationParams",
    "get_pagination",
    "paginate_select",
]
