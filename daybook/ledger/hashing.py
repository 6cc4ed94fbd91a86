"""
Hash and ID utilities.

All hashes are SHA-256 over a canonical JSON rendering: sorted keys,
no whitespace, Decimals and datetimes as strings. The same logical
content always yields the same hash, independent of the system clock.
"""

import hashlib
import json
from datetime import date, datetime
from typing import Any, Iterable
from uuid import uuid4

from pydantic import BaseModel


CONTENT_HASH_LENGTH = 16


def canonical_json(value: Any) -> str:
    """Deterministic JSON for hashing."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def short_hash(text: str) -> str:
    """First 16 hex chars of the SHA-256 of `text`."""
    return sha256_hex(text)[:CONTENT_HASH_LENGTH]


def content_hash(kind: str, timestamp: datetime, payload: Any) -> str:
    """
    Hash of an entry's canonical fields.

    Covers kind, timestamp and payload. The id and prev_id are excluded,
    so a retried submission hashes identically even if it was assigned a
    different id.
    """
    return short_hash(canonical_json({
        "kind": kind,
        "timestamp": timestamp.isoformat(),
        "payload": payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload,
    }))


def entry_content_hash(entry) -> str:
    """Content hash of a LedgerEntry."""
    return content_hash(entry.payload.kind, entry.timestamp, entry.payload)


def file_signature_hash(header: BaseModel, entries: Iterable[BaseModel]) -> str:
    """Full SHA-256 over a day-file's header and entries."""
    return sha256_hex(canonical_json({
        "header": header.model_dump(mode="json"),
        "entries": [e.model_dump(mode="json") for e in entries],
    }))


def day_stamp(day: date) -> str:
    """YYYYMMDD."""
    return day.strftime("%Y%m%d")


def random_entry_id() -> str:
    """Id for entries that never reach a day-file (guest sessions)."""
    return uuid4().hex
