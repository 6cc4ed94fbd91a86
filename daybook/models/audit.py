"""
Audit trail models.

An AuditEvent records one ledger action (append, correction, day-file
creation or migration) or one anomaly met while reading the store
(undecodable file, orphaned adjustment, store outage).

DESIGN DECISION: Events are never edited once logged. The day-files are the
durable record; these events explain how the files came to look as they do.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """What happened."""
    # Ledger writes
    ENTRY_APPENDED = "entry_appended"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    ENTRY_ADJUSTED = "entry_adjusted"

    # Day-files
    FILE_CREATED = "file_created"
    FILE_MIGRATED = "file_migrated"
    CORRUPT_FILE_SKIPPED = "corrupt_file_skipped"
    FILE_VANISHED = "file_vanished"

    # Reconstruction
    ORPHAN_ADJUSTMENT = "orphan_adjustment"
    HISTORY_FALLBACK = "history_fallback"
    CHAIN_SYNCED = "chain_synced"

    # Failures
    PERSISTENCE_FAILED = "persistence_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """How loudly an event is logged."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    One entry in the audit trail.

    Serialized through to_log_dict() for the structured log.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Random id of this event"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="Wall-clock time the event was built (UTC)"
    )

    # Classification
    event_type: AuditEventType = Field(
        ...,
        description="Kind of ledger action or anomaly"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Log level used when emitting"
    )

    # Context - what is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'file')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Entry id, file name or file id"
    )

    # Shared by every event raised from one ledger operation
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one append)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="One-line summary for humans"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured fields specific to the event type"
    )

    # Set for failures and skipped data
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Flatten to JSON-safe values for structlog.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Factory methods for each event type the ledger emits.

    Usage:
        event = AuditEventBuilder.entry_appended(entry_id, kind, file_name, correlation_id)
        event = AuditEventBuilder.corrupt_file_skipped(file_name, reason)
    """

    @staticmethod
    def entry_appended(
        entry_id: str,
        kind: str,
        file_name: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_APPENDED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Appended {kind} entry {entry_id}",
            details={
                "kind": kind,
                "file_name": file_name,
            },
        )

    @staticmethod
    def duplicate_skipped(
        entry_id: str,
        content_hash: str,
        file_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_SKIPPED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Duplicate entry skipped, already stored as {entry_id}",
            details={
                "content_hash": content_hash,
                "file_name": file_name,
            },
        )

    @staticmethod
    def entry_adjusted(
        adjustment_id: str,
        original_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_ADJUSTED,
            entity_type="entry",
            entity_id=adjustment_id,
            correlation_id=correlation_id,
            description=f"Entry {original_id} corrected by {adjustment_id}",
            details={
                "ref_original_id": original_id,
            },
        )

    @staticmethod
    def file_created(
        file_name: str,
        file_id: str,
        prev_file_hash: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILE_CREATED,
            entity_type="file",
            entity_id=file_name,
            correlation_id=correlation_id,
            description=f"Created day-file {file_name}",
            details={
                "file_id": file_id,
                "prev_file_hash": prev_file_hash,
            },
        )

    @staticmethod
    def file_migrated(
        old_name: str,
        new_name: str,
        strategy: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILE_MIGRATED,
            entity_type="file",
            entity_id=new_name,
            correlation_id=correlation_id,
            description=f"Migrated {old_name} to {new_name}",
            details={
                "old_name": old_name,
                "strategy": strategy,
            },
        )

    @staticmethod
    def corrupt_file_skipped(
        file_name: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CORRUPT_FILE_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="file",
            entity_id=file_name,
            correlation_id=correlation_id,
            description=f"Skipped undecodable day-file {file_name}",
            error_message=reason,
        )

    @staticmethod
    def file_vanished(
        file_name: str,
        file_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILE_VANISHED,
            severity=AuditSeverity.WARNING,
            entity_type="file",
            entity_id=file_name,
            correlation_id=correlation_id,
            description=f"Listed day-file {file_name} was gone when read",
            details={
                "file_id": file_id,
            },
        )

    @staticmethod
    def orphan_adjustment(
        adjustment_id: str,
        original_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ORPHAN_ADJUSTMENT,
            severity=AuditSeverity.WARNING,
            entity_type="entry",
            entity_id=adjustment_id,
            correlation_id=correlation_id,
            description=f"Adjustment {adjustment_id} references missing entry {original_id}",
            details={
                "ref_original_id": original_id,
            },
        )

    @staticmethod
    def history_fallback(
        reason: str,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HISTORY_FALLBACK,
            severity=AuditSeverity.WARNING,
            entity_type="history",
            correlation_id=correlation_id,
            description="History served from in-memory chain (reduced fidelity)",
            error_message=reason,
            details={
                "entry_count": entry_count,
            },
        )

    @staticmethod
    def chain_synced(
        file_name: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHAIN_SYNCED,
            entity_type="chain",
            entity_id=file_name,
            correlation_id=correlation_id,
            description=(
                f"Chain anchored at {file_name}" if file_name
                else "Chain anchored at empty ledger"
            ),
        )

    @staticmethod
    def persistence_failed(
        operation: str,
        kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"Blob store failure during {operation}",
            error_code=kind,
            error_message=error_message,
            details={
                "operation": operation,
            },
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Unexpected {error_type} inside the ledger",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
