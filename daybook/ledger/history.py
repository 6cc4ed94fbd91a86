"""
Ledger History Reconstruction

Rebuilds the displayed history (effective entries, each with the
balances right after it) from stored day-files.

DESIGN DECISION: Order is append order: (file day, position in file).
The user-editable timestamp never reorders entries, so a backdated
entry sits where it was recorded and snapshot replay never re-sorts.

The walk runs backward from the newest entry. Each file is anchored
at its own closing snapshot, so a file that cannot be decoded only
removes that day's rows instead of corrupting every earlier balance.
Adjustments found on the way contribute a correction to every row
between their original and themselves, which makes an edited entry
display the balances it would have had with the new payload.
"""

from typing import NamedTuple, Optional
from uuid import UUID

import structlog

from daybook.audit import AuditLogger
from daybook.ledger.compat import CorruptFileError
from daybook.ledger.corrections import effective_entry, find_orphans, merge_adjustments
from daybook.ledger.files import DailyFileManager, DayFileInfo
from daybook.ledger.naming import sanitize_user
from daybook.ledger.snapshot import combine, entry_delta, negate, reverse_entry
from daybook.models.ledger import (
    DailyLedgerFile,
    EntryWithSnapshot,
    HistoryPage,
    LedgerEntry,
    Snapshot,
)
from daybook.services.storage.interface import NotFoundError


logger = structlog.get_logger(__name__)


class LedgerSegment(NamedTuple):
    """Consecutive entries in append order and the snapshot after the last one."""
    entries: list[LedgerEntry]
    closing: Snapshot


def reconstruct(
    segments: list[LedgerSegment],
    limit: Optional[int] = None,
    unknown_targets_are_earlier: bool = False,
) -> list[EntryWithSnapshot]:
    """
    Effective entries with post-entry snapshots, newest first.

    `segments` must be in append order. With `unknown_targets_are_earlier`
    an adjustment whose original is not in `segments` is assumed to
    target something older than every segment (a chain that starts
    mid-ledger); otherwise it is an orphan and ignored.
    """
    all_entries = [entry for segment in segments for entry in segment.entries]
    merged = {m.original.id: m for m in merge_adjustments(all_entries)}
    position = {e.id: i for i, e in enumerate(all_entries) if not e.is_adjustment}

    rows: list[EntryWithSnapshot] = []
    correction = Snapshot()
    pending: dict[str, Snapshot] = {}
    pos = len(all_entries)

    for segment in reversed(segments):
        if limit is not None and len(rows) >= limit:
            break
        running = segment.closing
        for entry in reversed(segment.entries):
            pos -= 1
            if entry.is_adjustment:
                target = entry.payload.ref_original_id
                target_pos = position.get(target)
                if target_pos is not None and target_pos < pos:
                    delta = entry_delta(entry)
                    correction = combine(correction, delta)
                    pending[target] = combine(pending.get(target, Snapshot()), delta)
                elif target_pos is None and unknown_targets_are_earlier:
                    correction = combine(correction, entry_delta(entry))
            else:
                if limit is None or len(rows) < limit:
                    row = merged[entry.id]
                    rows.append(EntryWithSnapshot(
                        entry=row.entry,
                        snapshot=combine(running, correction),
                        edited=row.edited,
                        adjustment_ids=row.adjustment_ids,
                    ))
                if entry.id in pending:
                    correction = combine(correction, negate(pending.pop(entry.id)))
            running = reverse_entry(running, entry)

    return rows


class HistoryReconstructor:
    """Reads every day-file of a user and serves paginated history."""

    def __init__(
        self,
        files: DailyFileManager,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._files = files
        self._audit_logger = audit_logger

    async def _load_or_skip(
        self,
        info: DayFileInfo,
        user: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[DailyLedgerFile]:
        """
        Decode one listed day-file, or None if it has to be skipped.

        Undecodable files and files deleted after the listing are skipped.
        PersistenceError from the store propagates.
        """
        try:
            return await self._files.load(info.file, day=info.day, user=sanitize_user(user))
        except CorruptFileError as e:
            logger.warning("day_file_skipped", file_name=info.name, reason=e.reason)
            if self._audit_logger:
                await self._audit_logger.log_corrupt_file(
                    file_name=info.name,
                    reason=e.reason,
                    correlation_id=correlation_id,
                )
        except NotFoundError:
            logger.warning("day_file_vanished", file_name=info.name, file_id=info.file.id)
            if self._audit_logger:
                await self._audit_logger.log_file_vanished(
                    file_name=info.name,
                    file_id=info.file.id,
                    correlation_id=correlation_id,
                )
        return None

    async def load_all(
        self,
        user: str,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[list[tuple[DayFileInfo, DailyLedgerFile]], list[str]]:
        """
        Decode every day-file of `user`, oldest first.

        Returns the decoded files and the names of files that were skipped.
        PersistenceError from the store propagates.
        """
        loaded = []
        skipped = []
        for info in await self._files.list_day_files(user):
            content = await self._load_or_skip(info, user, correlation_id=correlation_id)
            if content is None:
                skipped.append(info.name)
                continue
            loaded.append((info, content))
        return loaded, skipped

    async def get_history(
        self,
        user: str,
        limit: int = 30,
        correlation_id: Optional[UUID] = None,
    ) -> HistoryPage:
        """Newest `limit` effective entries with their snapshots."""
        loaded, skipped = await self.load_all(user, correlation_id=correlation_id)
        segments = [
            LedgerSegment(entries=list(content.entries), closing=content.closing_snapshot)
            for _, content in loaded
        ]

        if self._audit_logger:
            for orphan in find_orphans(e for segment in segments for e in segment.entries):
                await self._audit_logger.log_orphan_adjustment(
                    adjustment_id=orphan.id,
                    original_id=orphan.payload.ref_original_id,
                    correlation_id=correlation_id,
                )

        return HistoryPage(
            entries=reconstruct(segments, limit=limit),
            reduced_fidelity=False,
            skipped_files=skipped,
        )

    async def effective_entry(
        self,
        user: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[LedgerEntry]:
        """
        Stored entry `entry_id` with every adjustment on file folded in.

        None when no readable day-file holds it.
        """
        loaded, _ = await self.load_all(user, correlation_id=correlation_id)
        return effective_entry(
            (e for _, content in loaded for e in content.entries),
            entry_id,
        )

    async def latest_snapshot(
        self,
        user: str,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Snapshot, Optional[LedgerEntry], Optional[str]]:
        """
        Closing snapshot of the newest readable day-file.

        Returns (snapshot, last entry of that file, file name); an empty
        snapshot and None when the user has no readable files.
        """
        for info in reversed(await self._files.list_day_files(user)):
            content = await self._load_or_skip(info, user, correlation_id=correlation_id)
            if content is None:
                continue
            last = content.entries[-1] if content.entries else None
            return content.closing_snapshot, last, info.name
        return Snapshot(), None, None
