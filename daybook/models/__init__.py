"""
Data Models Package

This package contains all Pydantic models used in Daybook.
All data flowing through the ledger must conform to these schemas.
"""

from daybook.models.ledger import (
    Account,
    Adjustment,
    AppendOptions,
    AppendResult,
    DailyLedgerFile,
    EntryKind,
    EntryWithSnapshot,
    Exchange,
    ExchangeRates,
    Expense,
    FileHandle,
    FileHeader,
    FileSignature,
    HistoryPage,
    Income,
    LedgerEntry,
    Leg,
    Movement,
    Payload,
    Snapshot,
    Transfer,
)
from daybook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "Adjustment",
    "AppendOptions",
    "AppendResult",
    "DailyLedgerFile",
    "EntryKind",
    "EntryWithSnapshot",
    "Exchange",
    "ExchangeRates",
    "Expense",
    "FileHandle",
    "FileHeader",
    "FileSignature",
    "HistoryPage",
    "Income",
    "LedgerEntry",
    "Leg",
    "Movement",
    "Payload",
    "Snapshot",
    "Transfer",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
