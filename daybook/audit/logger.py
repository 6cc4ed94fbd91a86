"""
Audit Logger

DESIGN DECISION: Every significant ledger action is logged.
This provides:
1. Complete traceability of appends and edits
2. Debugging capability when the blob store misbehaves
3. A visible trail of skipped or orphaned data

The audit logger:
- Is async so it fits the ledger's call sites
- Never raises (a logging failure must not fail an append)
- Tags every event of one append or edit with a shared correlation id
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from daybook.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# JSON lines through the stdlib logging tree
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Structured audit trail for one ledger service.

    Events go to the structured local log only. The ledger files are the
    durable record; the audit trail is for debugging.

    With `keep_events=True` every logged event is also kept in `events`
    for the lifetime of the logger. Off by default.
    """

    def __init__(self, keep_events: bool = False):
        self._logger = structlog.get_logger("daybook.audit")
        self._keep_events = keep_events
        self.events: list[AuditEvent] = []

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was written, False if logging failed.
        """
        if self._keep_events:
            self.events.append(event)

        log_dict = event.to_log_dict()
        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Logging must never break the ledger
            self._logger.error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

        return True

    async def log_entry_appended(
        self,
        entry_id: str,
        kind: str,
        file_name: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a successful append."""
        await self.log(AuditEventBuilder.entry_appended(
            entry_id=entry_id,
            kind=kind,
            file_name=file_name,
            correlation_id=correlation_id,
        ))

    async def log_duplicate_skipped(
        self,
        entry_id: str,
        content_hash: str,
        file_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an append that matched an entry already on file."""
        await self.log(AuditEventBuilder.duplicate_skipped(
            entry_id=entry_id,
            content_hash=content_hash,
            file_name=file_name,
            correlation_id=correlation_id,
        ))

    async def log_entry_adjusted(
        self,
        adjustment_id: str,
        original_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a shadow correction."""
        await self.log(AuditEventBuilder.entry_adjusted(
            adjustment_id=adjustment_id,
            original_id=original_id,
            correlation_id=correlation_id,
        ))

    async def log_file_created(
        self,
        file_name: str,
        file_id: str,
        prev_file_hash: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation of a new day-file."""
        await self.log(AuditEventBuilder.file_created(
            file_name=file_name,
            file_id=file_id,
            prev_file_hash=prev_file_hash,
            correlation_id=correlation_id,
        ))

    async def log_file_migrated(
        self,
        old_name: str,
        new_name: str,
        strategy: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a legacy file being renamed and rewritten."""
        await self.log(AuditEventBuilder.file_migrated(
            old_name=old_name,
            new_name=new_name,
            strategy=strategy,
            correlation_id=correlation_id,
        ))

    async def log_corrupt_file(
        self,
        file_name: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a day-file skipped during reconstruction."""
        await self.log(AuditEventBuilder.corrupt_file_skipped(
            file_name=file_name,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_file_vanished(
        self,
        file_name: str,
        file_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a listed day-file that could no longer be read."""
        await self.log(AuditEventBuilder.file_vanished(
            file_name=file_name,
            file_id=file_id,
            correlation_id=correlation_id,
        ))

    async def log_orphan_adjustment(
        self,
        adjustment_id: str,
        original_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an adjustment whose original could not be found."""
        await self.log(AuditEventBuilder.orphan_adjustment(
            adjustment_id=adjustment_id,
            original_id=original_id,
            correlation_id=correlation_id,
        ))

    async def log_history_fallback(
        self,
        reason: str,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log history being served from the session chain."""
        await self.log(AuditEventBuilder.history_fallback(
            reason=reason,
            entry_count=entry_count,
            correlation_id=correlation_id,
        ))

    async def log_chain_synced(
        self,
        file_name: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the session chain being anchored to stored state."""
        await self.log(AuditEventBuilder.chain_synced(
            file_name=file_name,
            correlation_id=correlation_id,
        ))

    async def log_persistence_failed(
        self,
        operation: str,
        kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a blob store failure."""
        await self.log(AuditEventBuilder.persistence_failed(
            operation=operation,
            kind=kind,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Record an unexpected failure inside the ledger."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Fresh id shared by the events of one ledger operation.

    Use this at the start of a public ledger operation and pass it
    through every step of that operation.
    """
    return uuid4()
