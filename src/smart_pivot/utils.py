"""Shared helpers — option parsing, input hashing, timestamps."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path

from smart_pivot import AGGREGATORS

_DEFAULT_AGGREGATOR = "count"


def parse_value_option(raw: str) -> tuple[str, str]:
    """Split a ``field[:aggregator]`` option into ``(field, aggregator)``.

    The last ``:`` separates the aggregator so field names may contain colons;
    a suffix that is not a known aggregator is kept as part of the field name.
    """
    field_name, sep, agg = raw.rpartition(":")
    if not sep or agg.strip().lower() not in AGGREGATORS:
        field_name, agg = raw, _DEFAULT_AGGREGATOR
    field_name = field_name.strip()
    if not field_name:
        raise ValueError(f"Invalid --value: {raw!r}  (expected field[:aggregator])")
    return field_name, agg.strip().lower()


def sha256_file(path: Path, chunk_size: int = 1 << 16) -> str:
    """Return the hex SHA-256 digest of *path*."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        while chunk := fh.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def utcnow_iso() -> str:
    """Return the current UTC time as an ISO-8601 string (seconds precision)."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
