"""Portable column types shared by the models."""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

# Monotonic surrogate key; SQLite only autoincrements INTEGER PRIMARY KEY.
LedgerKey = BigInteger().with_variant(Integer(), "sqlite")
