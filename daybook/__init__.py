"""
Daybook

An append-only personal ledger stored as one JSON file per day in a
remote file store, with per-account, per-currency balance snapshots.
"""

__version__ = "0.1.0"
