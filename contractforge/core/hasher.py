"""Canonical hashing helpers for content digests and metadata records."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: sorted keys, compact separators, ASCII."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def markup_digest(markup: str) -> str:
    """Digest of merged markup, used to compare two merges for equality."""
    return sha256_hex(markup.encode("utf-8"))


def compute_record_hash(record: dict[str, Any]) -> str:
    """SHA-256 of a log record, excluding its own ``record_hash`` field."""
    d = {k: v for k, v in record.items() if k != "record_hash"}
    return sha256_hex(canonical_json_bytes(d))
