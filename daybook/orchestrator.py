"""
Main Orchestrator for Daybook

This module ties the ledger components together and exposes the
operations the UI calls:
1. Append (validate -> find day-file -> append -> update session chain)
2. Edit (shadow adjustment appended like any other entry)
3. Read (history, current snapshot, account balances)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Malformed entries never reach a day-file
- The stored day-files are the source of truth in signed-in sessions
- The session chain is only read instead of the store when the store
  fails, and the result is then flagged as reduced fidelity
- Every step is audited

Guest sessions never touch the store; the session chain is their ledger.
"""

from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from daybook.audit import AuditLogger, create_correlation_id
from daybook.config import LedgerSettings, get_settings
from daybook.ledger.chain import ChainState
from daybook.ledger.compat import CorruptFileError
from daybook.ledger.corrections import effective_entry, make_adjustment
from daybook.ledger.files import DailyFileManager
from daybook.ledger.hashing import entry_content_hash, random_entry_id
from daybook.ledger.history import HistoryReconstructor
from daybook.ledger.snapshot import zero_fill
from daybook.ledger.validation import (
    ValidationError,
    build_movement,
    parse_kind,
    validate_movement,
)
from daybook.models.ledger import (
    AppendOptions,
    EntryKind,
    EntryWithSnapshot,
    HistoryPage,
    LedgerEntry,
    Snapshot,
)
from daybook.services.accounts import (
    AccountDirectory,
    BlobSettingsAccountDirectory,
    StaticAccountDirectory,
)
from daybook.services.storage import (
    BlobStoreInterface,
    GoogleDriveBlobStore,
    GoogleDriveClient,
    PersistenceError,
)


logger = structlog.get_logger(__name__)


class LedgerService:
    """
    The ledger's public operations for one session.

    Signed-in sessions persist to day-files in the blob store.
    Guest sessions (no store, or `guest=True`) keep everything in the
    session chain.
    """

    def __init__(
        self,
        store: Optional[BlobStoreInterface] = None,
        accounts: Optional[AccountDirectory] = None,
        settings: Optional[LedgerSettings] = None,
        folder_name: str = "QuickBook Data",
        user_name: Optional[str] = None,
        guest: bool = False,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._settings = settings or LedgerSettings()
        self._store = store
        self._guest = guest or self._settings.guest_mode or store is None
        self._user = user_name or self._settings.user_name
        self._accounts = accounts or StaticAccountDirectory()
        self._audit_logger = audit_logger
        self._clock = clock
        self._chain = ChainState()

        self._files: Optional[DailyFileManager] = None
        self._history: Optional[HistoryReconstructor] = None
        if not self._guest:
            self._files = DailyFileManager(
                store,
                folder_name,
                settings=self._settings,
                audit_logger=audit_logger,
            )
            self._history = HistoryReconstructor(self._files, audit_logger=audit_logger)

    @property
    def is_guest(self) -> bool:
        return self._guest

    @property
    def chain(self) -> ChainState:
        return self._chain

    async def _persistence_failed(
        self,
        operation: str,
        error: PersistenceError,
        correlation_id: UUID,
    ) -> None:
        logger.error("persistence_failed", operation=operation, kind=error.kind.value, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_persistence_failed(
                operation=operation,
                kind=error.kind.value,
                error_message=str(error),
                correlation_id=correlation_id,
            )

    async def _write(self, entry_factory: Callable[[str, datetime], LedgerEntry], correlation_id: UUID):
        """Append a new entry to today's day-file and mirror it in the chain."""
        now = self._clock()
        try:
            handle, content = await self._files.find_or_create(
                now.date(), self._user, correlation_id=correlation_id
            )
            entry = entry_factory(self._files.next_entry_id(handle.day, content), now)
            result = await self._files.append_entry(handle, entry, correlation_id=correlation_id)
        except PersistenceError as e:
            await self._persistence_failed("append", e, correlation_id)
            raise
        except CorruptFileError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="corrupt_day_file",
                    error_message=str(e),
                    details={"file_name": e.file_name},
                    correlation_id=correlation_id,
                )
            raise

        if not result.duplicate:
            written = self._files.cached(result.handle)
            self._chain.anchor(written.closing_snapshot, result.entry)
        return result

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def append_ledger_entry(
        self,
        kind: Union[str, EntryKind],
        amount: Union[Decimal, int, float, str],
        category: str,
        note: str,
        account_id: str,
        options: Optional[AppendOptions] = None,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Record a new expense, income, transfer or exchange.

        Returns the entry id. Submitting the same entry again (same kind,
        payload and timestamp) returns the id already on file.

        Raises:
            ValidationError: If the entry is malformed
            PersistenceError: If the store fails (nothing is recorded)
        """
        correlation_id = correlation_id or create_correlation_id()
        options = options or AppendOptions()

        try:
            movement = build_movement(
                kind,
                amount,
                category,
                note,
                account_id,
                options=options,
                default_currency=self._settings.default_currency,
            )
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="validation_failed",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        def new_entry(entry_id: str, now: datetime) -> LedgerEntry:
            entry = LedgerEntry(
                id=entry_id,
                timestamp=options.timestamp or now,
                payload=movement,
            )
            return entry.model_copy(update={"content_hash": entry_content_hash(entry)})

        if self._guest:
            entry = new_entry(random_entry_id(), self._clock())
            for existing in self._chain.entries():
                if existing.content_hash == entry.content_hash:
                    return existing.id
            self._chain.append(entry)
            file_name = None
        else:
            result = await self._write(new_entry, correlation_id)
            entry = result.entry
            if result.duplicate:
                return entry.id
            file_name = result.handle.name

        if self._audit_logger:
            await self._audit_logger.log_entry_appended(
                entry_id=entry.id,
                kind=entry.kind.value,
                file_name=file_name,
                correlation_id=correlation_id,
            )
        return entry.id

    async def _effective_entry(self, entry_id: str, correlation_id: UUID) -> LedgerEntry:
        """The entry to correct, as currently in effect."""
        if self._guest:
            found = effective_entry(self._chain.entries(), entry_id)
        else:
            try:
                found = await self._history.effective_entry(
                    self._user, entry_id, correlation_id=correlation_id
                )
            except PersistenceError as e:
                await self._persistence_failed("edit_entry", e, correlation_id)
                raise
        if found is None:
            raise ValidationError(f"No stored entry {entry_id!r} to edit")
        return found

    async def edit_entry(
        self,
        original_entry: Union[str, LedgerEntry, EntryWithSnapshot],
        new_payload: Any,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        """
        Correct an entry by appending an adjustment.

        `original_entry` is an entry id, a stored entry or a history row.
        Only its id is trusted: the payload in effect is read back from
        the ledger before writing, so the adjustment always supersedes
        the latest edit. `new_payload` is the complete replacement, as a
        movement model or a dict with a `kind`.

        Raises:
            ValidationError: If the id is unknown, names an adjustment,
                or the replacement is malformed
            PersistenceError: If the store fails (nothing is recorded)
        """
        correlation_id = correlation_id or create_correlation_id()
        if isinstance(original_entry, EntryWithSnapshot):
            original_entry = original_entry.entry
        entry_id = original_entry if isinstance(original_entry, str) else original_entry.id

        try:
            if not isinstance(original_entry, str) and original_entry.is_adjustment:
                raise ValidationError("An adjustment cannot itself be edited")
            replacement = validate_movement(new_payload)
            original = await self._effective_entry(entry_id, correlation_id)
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="validation_failed",
                    error_message=str(e),
                    details={"entry_id": entry_id},
                    correlation_id=correlation_id,
                )
            raise

        def new_adjustment(adjustment_id: str, now: datetime) -> LedgerEntry:
            return make_adjustment(original, replacement, adjustment_id, now)

        if self._guest:
            adjustment = new_adjustment(random_entry_id(), self._clock())
            self._chain.append(adjustment)
        else:
            adjustment = (await self._write(new_adjustment, correlation_id)).entry

        if self._audit_logger:
            await self._audit_logger.log_entry_adjusted(
                adjustment_id=adjustment.id,
                original_id=original.id,
                correlation_id=correlation_id,
            )
        return adjustment

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_history(
        self,
        limit: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> HistoryPage:
        """
        Newest entries first, each with the balances right after it.

        If the store fails and this session has appended entries, the
        session chain is returned instead with `reduced_fidelity=True`.
        """
        correlation_id = correlation_id or create_correlation_id()
        if limit is None:
            limit = self._settings.history_page_size

        if self._guest:
            return HistoryPage(entries=self._chain.history(limit))

        try:
            return await self._history.get_history(self._user, limit, correlation_id=correlation_id)
        except PersistenceError as e:
            await self._persistence_failed("get_history", e, correlation_id)
            if len(self._chain) == 0:
                raise
            rows = self._chain.history(limit)
            if self._audit_logger:
                await self._audit_logger.log_history_fallback(
                    reason=str(e),
                    entry_count=len(rows),
                    correlation_id=correlation_id,
                )
            return HistoryPage(entries=rows, reduced_fidelity=True)

    async def _zero_filled(self, snapshot: Snapshot) -> Snapshot:
        try:
            accounts = await self._accounts.list_accounts()
        except PersistenceError as e:
            logger.warning("accounts_unavailable", error=str(e))
            accounts = []
        return zero_fill(snapshot, accounts)

    async def get_current_snapshot(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> Snapshot:
        """Latest balances, with every active account present."""
        correlation_id = correlation_id or create_correlation_id()

        if self._guest:
            return await self._zero_filled(self._chain.current_snapshot())

        try:
            snapshot, _, _ = await self._history.latest_snapshot(
                self._user, correlation_id=correlation_id
            )
        except PersistenceError as e:
            await self._persistence_failed("get_current_snapshot", e, correlation_id)
            if len(self._chain) == 0:
                raise
            snapshot = self._chain.current_snapshot()
        return await self._zero_filled(snapshot)

    async def get_account_balances(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, dict[str, Decimal]]:
        """account -> currency -> balance."""
        snapshot = await self.get_current_snapshot(correlation_id=correlation_id)
        return snapshot.balances

    async def get_category_usage(
        self,
        kind: Union[str, EntryKind],
        limit: int = 100,
        correlation_id: Optional[UUID] = None,
    ) -> list[tuple[str, int]]:
        """Categories of recent entries of `kind`, most used first."""
        entry_kind = parse_kind(kind)
        page = await self.get_history(limit=limit, correlation_id=correlation_id)
        usage = Counter(
            row.entry.category
            for row in page.entries
            if row.entry.kind == entry_kind and row.entry.category
        )
        return usage.most_common()

    # =========================================================================
    # SESSION
    # =========================================================================

    async def sync(self, correlation_id: Optional[UUID] = None) -> Snapshot:
        """
        Anchor the session chain at the newest stored day-file.

        Call after sign-in. Returns the anchored snapshot.
        """
        correlation_id = correlation_id or create_correlation_id()
        if self._guest:
            return self._chain.current_snapshot()

        try:
            snapshot, last, file_name = await self._history.latest_snapshot(
                self._user, correlation_id=correlation_id
            )
        except PersistenceError as e:
            await self._persistence_failed("sync", e, correlation_id)
            raise

        self._chain.anchor(snapshot)
        if last is not None:
            self._chain.anchor(snapshot, last)

        if self._audit_logger:
            await self._audit_logger.log_chain_synced(
                file_name=file_name,
                correlation_id=correlation_id,
            )
        return snapshot

    def end_session(self) -> None:
        """Forget everything held for this session."""
        self._chain.clear()


def create_ledger_service(
    use_storage: bool = True,
    guest: bool = False,
) -> LedgerService:
    """
    Factory function to create a ledger service.

    Args:
        use_storage: Whether to initialize Google Drive storage.
                    Set to False for testing without storage.
        guest: Force a guest session.

    Falls back to a guest session when Drive is not configured.
    """
    settings = get_settings()
    ledger_settings = settings.ledger
    audit_logger = AuditLogger()

    if guest or ledger_settings.guest_mode or not use_storage:
        return LedgerService(
            settings=ledger_settings,
            guest=True,
            audit_logger=audit_logger,
            accounts=StaticAccountDirectory(),
        )

    try:
        drive_settings = settings.google_drive
        store = GoogleDriveBlobStore(GoogleDriveClient())
        accounts = BlobSettingsAccountDirectory(
            store,
            folder_name=drive_settings.folder_name,
            settings_file_name=drive_settings.settings_file_name,
            default_currency=ledger_settings.default_currency,
        )
    except Exception as e:
        # Storage not configured - continue as a guest session
        logger.warning("storage_not_configured", error=str(e))
        return LedgerService(
            settings=ledger_settings,
            guest=True,
            audit_logger=audit_logger,
            accounts=StaticAccountDirectory(),
        )

    return LedgerService(
        store=store,
        accounts=accounts,
        settings=ledger_settings,
        folder_name=drive_settings.folder_name,
        audit_logger=audit_logger,
    )
