"""
Ledger Package

The append-only ledger: snapshot engine, day-file management,
shadow corrections, history reconstruction and session chain state.
"""

from daybook.ledger.chain import ChainLink, ChainState
from daybook.ledger.compat import CorruptFileError, decode_file, encode_file
from daybook.ledger.corrections import MergedEntry, make_adjustment, merge_adjustments
from daybook.ledger.files import DailyFileManager, DayFileInfo
from daybook.ledger.history import HistoryReconstructor, LedgerSegment, reconstruct
from daybook.ledger.naming import resolve_file_name, sanitize_user
from daybook.ledger.snapshot import (
    apply_entry,
    combine,
    entry_delta,
    is_conserved,
    replay,
    reverse_entry,
    zero_fill,
)
from daybook.ledger.validation import ValidationError, build_movement

__all__ = [
    # Chain
    "ChainLink",
    "ChainState",
    # Files
    "CorruptFileError",
    "DailyFileManager",
    "DayFileInfo",
    "decode_file",
    "encode_file",
    "resolve_file_name",
    "sanitize_user",
    # Corrections
    "MergedEntry",
    "make_adjustment",
    "merge_adjustments",
    # History
    "HistoryReconstructor",
    "LedgerSegment",
    "reconstruct",
    # Snapshot engine
    "apply_entry",
    "combine",
    "entry_delta",
    "is_conserved",
    "replay",
    "reverse_entry",
    "zero_fill",
    # Validation
    "ValidationError",
    "build_movement",
]
