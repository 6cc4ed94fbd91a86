"""
Session chain state.

Holds the latest entry and its snapshot for one session, plus every
entry appended during that session linked through `prev_id`.

Each LedgerService owns its own ChainState; nothing here is global,
so parallel sessions never share a pointer.

In guest sessions this is the whole ledger. In signed-in sessions it
mirrors what was written to the store and serves history when the
store cannot be read.
"""

from typing import Optional

from pydantic import BaseModel

from daybook.ledger.history import LedgerSegment, reconstruct
from daybook.ledger.snapshot import apply_entry
from daybook.models.ledger import EntryWithSnapshot, LedgerEntry, Snapshot


class ChainLink(BaseModel):
    """An entry and the snapshot right after it."""

    entry: LedgerEntry
    snapshot: Snapshot


class ChainState:
    """Latest-entry pointer and prev-linked entries of one session."""

    def __init__(self):
        self._links: dict[str, ChainLink] = {}
        self._latest: Optional[ChainLink] = None
        self._base = Snapshot()

    @property
    def latest(self) -> Optional[ChainLink]:
        return self._latest

    def __len__(self) -> int:
        return len(self._links)

    def _link(self, entry: LedgerEntry, snapshot: Snapshot) -> ChainLink:
        prev_id = self._latest.entry.id if self._latest else None
        link = ChainLink(entry=entry.model_copy(update={"prev_id": prev_id}), snapshot=snapshot)
        self._links[link.entry.id] = link
        self._latest = link
        return link

    def append(self, entry: LedgerEntry) -> ChainLink:
        """Link `entry` after the latest one and compute its snapshot."""
        return self._link(entry, apply_entry(self.current_snapshot(), entry))

    def anchor(self, snapshot: Snapshot, entry: Optional[LedgerEntry] = None) -> None:
        """
        Reconcile the pointer with durable state.

        With an entry: record it as the newest link, with the snapshot
        read back from its day-file. Without one: drop the session's
        links and restart from `snapshot`.
        """
        if entry is None:
            self._links = {}
            self._latest = None
            self._base = snapshot
            return
        if entry.id in self._links:
            self._links[entry.id] = ChainLink(entry=self._links[entry.id].entry, snapshot=snapshot)
            if self._latest and self._latest.entry.id == entry.id:
                self._latest = self._links[entry.id]
            return
        self._link(entry, snapshot)

    def current_snapshot(self) -> Snapshot:
        return self._latest.snapshot if self._latest else self._base

    def entries(self) -> list[LedgerEntry]:
        """Entries from genesis to latest, following prev_id links."""
        result = []
        link = self._latest
        while link is not None:
            result.append(link.entry)
            prev_id = link.entry.prev_id
            link = self._links.get(prev_id) if prev_id else None
        result.reverse()
        return result

    def history(self, limit: Optional[int] = None) -> list[EntryWithSnapshot]:
        """Effective entries with running snapshots, newest first."""
        segment = LedgerSegment(entries=self.entries(), closing=self.current_snapshot())
        return reconstruct([segment], limit=limit, unknown_targets_are_earlier=True)

    def clear(self) -> None:
        """End the session."""
        self._links = {}
        self._latest = None
        self._base = Snapshot()
