"""
Shadow corrections.

Stored entries are never modified or deleted. Editing an entry appends
an Adjustment that names the original and carries the full replacement
payload. Readers merge adjustments into their originals.

Lifecycle of an entry: created -> superseded -> superseded again...
The latest adjustment by append order wins.
"""

from datetime import datetime
from typing import Any, Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from daybook.ledger.hashing import entry_content_hash
from daybook.ledger.validation import ValidationError, validate_movement
from daybook.models.ledger import Adjustment, LedgerEntry


logger = structlog.get_logger(__name__)


class MergedEntry(BaseModel):
    """An original entry with all of its adjustments folded in."""

    entry: LedgerEntry = Field(
        ...,
        description="Effective entry: original id/timestamp, latest payload"
    )
    original: LedgerEntry
    adjustment_ids: list[str] = Field(default_factory=list)

    @property
    def edited(self) -> bool:
        return bool(self.adjustment_ids)


def make_adjustment(
    original: LedgerEntry,
    replacement: Any,
    entry_id: str,
    timestamp: datetime,
) -> LedgerEntry:
    """
    Build the adjustment entry that replaces `original`'s payload.

    `original` must be the effective entry as currently displayed, so
    that its payload is what the adjustment supersedes.
    """
    if original.is_adjustment:
        raise ValidationError("An adjustment cannot itself be edited")

    payload = Adjustment(
        ref_original_id=original.id,
        replacement=validate_movement(replacement),
        supersedes=original.movement,
    )
    entry = LedgerEntry(id=entry_id, timestamp=timestamp, payload=payload)
    return entry.model_copy(update={"content_hash": entry_content_hash(entry)})


def find_orphans(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    """Adjustments whose original is not among `entries`."""
    entries = list(entries)
    known = {e.id for e in entries if not e.is_adjustment}
    return [
        e for e in entries
        if e.is_adjustment and e.payload.ref_original_id not in known
    ]


def merge_adjustments(entries: Iterable[LedgerEntry]) -> list[MergedEntry]:
    """
    Fold adjustments into their originals.

    `entries` must be in append order. The result holds one row per
    original, in the same order; adjustment rows are removed.
    """
    entries = list(entries)
    latest: dict[str, LedgerEntry] = {}
    applied: dict[str, list[str]] = {}
    known = {e.id for e in entries if not e.is_adjustment}

    for entry in entries:
        if not entry.is_adjustment:
            continue
        target = entry.payload.ref_original_id
        if target not in known:
            logger.warning(
                "orphan_adjustment",
                adjustment_id=entry.id,
                ref_original_id=target,
            )
            continue
        latest[target] = entry
        applied.setdefault(target, []).append(entry.id)

    merged = []
    for entry in entries:
        if entry.is_adjustment:
            continue
        winner = latest.get(entry.id)
        effective = entry
        if winner is not None:
            effective = entry.model_copy(update={"payload": winner.payload.replacement})
        merged.append(MergedEntry(
            entry=effective,
            original=entry,
            adjustment_ids=applied.get(entry.id, []),
        ))
    return merged


def effective_entry(entries: Iterable[LedgerEntry], entry_id: str) -> Optional[LedgerEntry]:
    """
    Entry `entry_id` as currently displayed, or None if it is absent.

    `entries` must be in append order. Editing must start from this
    entry, so that an adjustment supersedes the payload actually in
    effect rather than a stale copy held by the caller.

    Raises:
        ValidationError: If `entry_id` names an adjustment
    """
    entries = list(entries)
    for entry in entries:
        if entry.id == entry_id and entry.is_adjustment:
            raise ValidationError("An adjustment cannot itself be edited")
    for merged in merge_adjustments(entries):
        if merged.original.id == entry_id:
            return merged.entry
    return None
