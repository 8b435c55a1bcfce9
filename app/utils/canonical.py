"""Canonical JSON serialization and hashing for immutable records.

generate and verify both go through ``canonical_hash`` so the two can never
drift apart.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

HASH_ALGO = "sha256"
HASH_ENCODING = "hex"


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        # Keeps the stored scale, "8.50" stays "8.50"
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonicalize(document: Any) -> bytes:
    """
    Serialize a document to canonical bytes.

    Object keys are sorted at every level, array order is preserved,
    separators are compact and output is UTF-8.
    """
    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")


def to_json_document(document: Any) -> Any:
    """Return a JSON-native copy (UUIDs, dates and Decimals rendered)."""
    return json.loads(canonicalize(document))


def canonical_hash(document: Any, algo: str = HASH_ALGO) -> str:
    """Hash the canonical form of a document, hex encoded."""
    return hashlib.new(algo, canonicalize(document)).hexdigest()
