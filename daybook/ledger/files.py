"""
Daily Ledger File Manager

One JSON file per (calendar day x user) holds every entry recorded that
day. This module finds or creates that file, appends to it and migrates
files written under older naming schemes.

DESIGN DECISION: Appends are read-modify-write of the whole file.
The file is reloaded right before every append, deduplicated by content
hash, replayed from its opening balances and written back in one call.
Nothing in memory changes until the write has succeeded, so a failed
write leaves the previous state intact.

There is no locking. Two writers appending to the same day-file at the
same moment can lose an update; a single writer per user is assumed.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from daybook.audit import AuditLogger
from daybook.config import LedgerSettings
from daybook.ledger.compat import CorruptFileError, decode_file, encode_file
from daybook.ledger.hashing import day_stamp, entry_content_hash, file_signature_hash
from daybook.ledger.naming import (
    DEFAULT_STRATEGIES,
    NamingStrategy,
    recognize,
    resolve_file_name,
    sanitize_user,
)
from daybook.ledger.snapshot import replay
from daybook.models.ledger import (
    AppendResult,
    DailyLedgerFile,
    ExchangeRates,
    FileHandle,
    FileHeader,
    FileSignature,
    LedgerEntry,
    Snapshot,
)
from daybook.services.storage.interface import (
    BlobStoreInterface,
    FileInfo,
    FileQuery,
    NotFoundError,
)


logger = structlog.get_logger(__name__)


class DayFileInfo(BaseModel):
    """A stored file recognized as a day-file of some user."""

    file: FileInfo
    day: date
    strategy: str

    @property
    def name(self) -> str:
        return self.file.name


def _sort_key(info: FileInfo) -> tuple:
    return (info.created_at is None, info.created_at, info.id)


class DailyFileManager:
    """
    Finds, creates, appends to and lists day-files in the blob store.
    """

    def __init__(
        self,
        store: BlobStoreInterface,
        folder_name: str,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        strategies: tuple[NamingStrategy, ...] = DEFAULT_STRATEGIES,
    ):
        self._store = store
        self._folder_name = folder_name
        self._settings = settings or LedgerSettings()
        self._audit_logger = audit_logger
        self._strategies = strategies
        self._folder_id: Optional[str] = None
        self._contents: dict[str, DailyLedgerFile] = {}

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def folder_id(self) -> str:
        if self._folder_id is None:
            self._folder_id = await self._store.ensure_folder(self._folder_name)
        return self._folder_id

    def resolve_file_name(self, day: date, user: str) -> str:
        return resolve_file_name(day, user)

    def cached(self, handle: FileHandle) -> Optional[DailyLedgerFile]:
        """Content of a day-file as last read or successfully written."""
        return self._contents.get(handle.file_id)

    def exchange_rates(self) -> ExchangeRates:
        return ExchangeRates(
            base_currency=self._settings.rate_base_currency,
            rates=dict(self._settings.exchange_rates),
            source=self._settings.rate_source,
        )

    def sign(self, header: FileHeader, entries: list[LedgerEntry]) -> FileSignature:
        return FileSignature(
            hash=file_signature_hash(header, entries),
            signed_by=self._settings.signer_id,
        )

    def next_entry_id(self, day: date, content: DailyLedgerFile) -> str:
        """tx_YYYYMMDD_NNN, one past the entries already on file."""
        taken = {e.id for e in content.entries}
        sequence = len(content.entries) + 1
        while True:
            candidate = f"tx_{day_stamp(day)}_{sequence:03d}"
            if candidate not in taken:
                return candidate
            sequence += 1

    # =========================================================================
    # READ
    # =========================================================================

    async def load(
        self,
        file_info: FileInfo,
        day: Optional[date] = None,
        user: str = "",
    ) -> DailyLedgerFile:
        """
        Read and decode a day-file.

        Raises:
            CorruptFileError: If the content cannot be decoded
            NotFoundError: If the file was deleted after it was listed
            PersistenceError: If the store fails
        """
        raw = await self._store.read_file(file_info.id)
        content = decode_file(raw, file_name=file_info.name, day=day, user=user)
        self._contents[file_info.id] = content
        return content

    async def list_day_files(self, user: str) -> list[DayFileInfo]:
        """Every file in the folder that some naming strategy assigns to `user`."""
        folder_id = await self.folder_id()
        files = await self._store.list_files(FileQuery(parent_id=folder_id))

        found = []
        for info in files:
            recognized = recognize(info.name, user, self._strategies)
            if recognized is None:
                continue
            day, strategy = recognized
            found.append(DayFileInfo(file=info, day=day, strategy=strategy.name))

        priority = {s.name: i for i, s in enumerate(self._strategies)}
        found.sort(key=lambda f: (f.day, priority.get(f.strategy, 99), _sort_key(f.file)))
        return found

    async def latest_before(
        self,
        day: date,
        user: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[DailyLedgerFile]:
        """The newest decodable day-file of `user` strictly before `day`."""
        candidates = [f for f in await self.list_day_files(user) if f.day < day]
        for candidate in reversed(candidates):
            try:
                return await self.load(candidate.file, day=candidate.day, user=sanitize_user(user))
            except CorruptFileError as e:
                logger.warning("prior_file_unreadable", file_name=candidate.name, reason=e.reason)
                if self._audit_logger:
                    await self._audit_logger.log_corrupt_file(
                        file_name=candidate.name,
                        reason=e.reason,
                        correlation_id=correlation_id,
                    )
            except NotFoundError:
                logger.warning("prior_file_vanished", file_name=candidate.name)
                if self._audit_logger:
                    await self._audit_logger.log_file_vanished(
                        file_name=candidate.name,
                        file_id=candidate.file.id,
                        correlation_id=correlation_id,
                    )
        return None

    # =========================================================================
    # FIND OR CREATE
    # =========================================================================

    async def _find_existing(
        self,
        day: date,
        user: str,
    ) -> Optional[tuple[FileInfo, NamingStrategy]]:
        folder_id = await self.folder_id()
        for strategy in self._strategies:
            files = await self._store.list_files(strategy.query(day, user, folder_id))
            matches = [f for f in files if strategy.matches(f.name, day, user)]
            if matches:
                return sorted(matches, key=_sort_key)[0], strategy
        return None

    async def find_or_create(
        self,
        day: date,
        user: str,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[FileHandle, DailyLedgerFile]:
        """
        Resolve the day-file for (day, user), creating it if needed.

        Legacy files are decoded, rewritten in the current schema and
        renamed to the current name before being returned.
        """
        user_name = sanitize_user(user)
        name = resolve_file_name(day, user)
        existing = await self._find_existing(day, user)

        if existing is not None:
            info, strategy = existing
            content = await self.load(info, day=day, user=user_name)
            handle = FileHandle(file_id=info.id, name=name, day=day, user=user_name)
            if strategy.is_current:
                return handle, content
            return handle, await self._migrate(info, strategy, handle, content, correlation_id)

        prior = await self.latest_before(day, user, correlation_id=correlation_id)
        opening = prior.closing_snapshot if prior is not None else Snapshot()
        prev_hash = (prior.signature.hash or "genesis") if prior is not None else "genesis"

        header = FileHeader(
            version=self._settings.file_version,
            day=day,
            user=user_name,
            sequence_count=0,
            prev_file_hash=prev_hash,
            exchange_rates=self.exchange_rates(),
            opening_balances=opening,
            balances_snapshot=opening,
        )
        content = DailyLedgerFile(header=header, entries=[], signature=self.sign(header, []))

        folder_id = await self.folder_id()
        file_id = await self._store.create_file(name, folder_id, encode_file(content))
        self._contents[file_id] = content

        logger.info("day_file_created", file_name=name, prev_file_hash=prev_hash)
        if self._audit_logger:
            await self._audit_logger.log_file_created(
                file_name=name,
                file_id=file_id,
                prev_file_hash=prev_hash,
                correlation_id=correlation_id,
            )

        return FileHandle(file_id=file_id, name=name, day=day, user=user_name), content

    async def _migrate(
        self,
        info: FileInfo,
        strategy: NamingStrategy,
        handle: FileHandle,
        content: DailyLedgerFile,
        correlation_id: Optional[UUID],
    ) -> DailyLedgerFile:
        header = content.header.model_copy(update={
            "version": self._settings.file_version,
            "user": handle.user,
            "sequence_count": len(content.entries),
        })
        migrated = DailyLedgerFile(
            header=header,
            entries=content.entries,
            signature=self.sign(header, content.entries),
        )
        await self._store.update_file(info.id, encode_file(migrated), name=handle.name)
        self._contents[info.id] = migrated

        logger.info(
            "day_file_migrated",
            old_name=info.name,
            new_name=handle.name,
            strategy=strategy.name,
        )
        if self._audit_logger:
            await self._audit_logger.log_file_migrated(
                old_name=info.name,
                new_name=handle.name,
                strategy=strategy.name,
                correlation_id=correlation_id,
            )
        return migrated

    # =========================================================================
    # APPEND
    # =========================================================================

    async def append_entry(
        self,
        handle: FileHandle,
        entry: LedgerEntry,
        correlation_id: Optional[UUID] = None,
    ) -> AppendResult:
        """
        Append one entry to a day-file.

        Returns AppendResult(duplicate=True) with the stored entry if an
        entry with the same content hash is already on file.
        """
        raw = await self._store.read_file(handle.file_id)
        content = decode_file(raw, file_name=handle.name, day=handle.day, user=handle.user)

        if not entry.content_hash:
            entry = entry.model_copy(update={"content_hash": entry_content_hash(entry)})

        stored = content.find_by_hash(entry.content_hash)
        if stored is not None:
            self._contents[handle.file_id] = content
            if self._audit_logger:
                await self._audit_logger.log_duplicate_skipped(
                    entry_id=stored.id,
                    content_hash=stored.content_hash,
                    file_name=handle.name,
                    correlation_id=correlation_id,
                )
            return AppendResult(entry=stored, handle=handle, duplicate=True)

        if any(e.id == entry.id for e in content.entries):
            entry = entry.model_copy(update={"id": self.next_entry_id(handle.day, content)})

        entries = [*content.entries, entry]
        header = content.header.model_copy(update={
            "sequence_count": len(entries),
            "balances_snapshot": replay(content.header.opening_balances, entries),
            "exchange_rates": self.exchange_rates(),
        })
        updated = DailyLedgerFile(
            header=header,
            entries=entries,
            signature=self.sign(header, entries),
        )

        await self._store.update_file(handle.file_id, encode_file(updated))
        self._contents[handle.file_id] = updated

        return AppendResult(entry=entry, handle=handle)
