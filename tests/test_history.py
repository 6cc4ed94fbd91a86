"""
Tests for history reconstruction.

Covers the pure backward walk and the reconstructor reading day-files
from the in-memory blob store.
"""

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal

from daybook.ledger.corrections import make_adjustment, merge_adjustments
from daybook.ledger.history import LedgerSegment, reconstruct
from daybook.ledger.naming import resolve_file_name
from daybook.ledger.snapshot import replay
from daybook.models.audit import AuditEventType
from daybook.models.ledger import Snapshot

from tests.factories import FOLDER, USER, expense, income, make_entry, transfer


def _segment(entries, opening=None):
    return LedgerSegment(entries=entries, closing=replay(opening or Snapshot(), entries))


async def _record(files, day, entries):
    handle, _ = await files.find_or_create(day, USER)
    for entry in entries:
        await files.append_entry(handle, entry)
    return handle


# =============================================================================
# PURE RECONSTRUCTION
# =============================================================================

class TestReconstruct:
    """Tests for the backward walk over segments."""

    def test_rows_newest_first_with_running_snapshots(self):
        """Test row order and the snapshot after each entry."""
        entries = [
            make_entry("tx_20240301_001", income("bank", 30000)),
            make_entry("tx_20240301_002", expense("cash", 100)),
            make_entry("tx_20240301_003", transfer("bank", "cash", 5000)),
        ]
        rows = reconstruct([_segment(entries)])

        assert [r.entry.id for r in rows] == ["tx_20240301_003", "tx_20240301_002", "tx_20240301_001"]
        assert rows[0].snapshot.balance("cash", "TWD") == Decimal("4900")
        assert rows[1].snapshot.balance("cash", "TWD") == Decimal("-100")
        assert rows[2].snapshot == replay(Snapshot(), entries[:1])

    def test_adjustment_overrides_original(self):
        """Test that an edit from 100 to 150 shows one entry deducting 150."""
        original = make_entry("tx_20240301_001", expense("cash", 100))
        adjustment = make_adjustment(
            original, expense("cash", 150), "tx_20240301_002", datetime(2024, 3, 1, 10, 0)
        )
        rows = reconstruct([_segment([original, adjustment])])

        assert len(rows) == 1
        assert rows[0].entry.id == "tx_20240301_001"
        assert rows[0].entry.debit.amount == Decimal("150")
        assert rows[0].snapshot.balance("cash", "TWD") == Decimal("-150")
        assert rows[0].edited
        assert rows[0].adjustment_ids == ["tx_20240301_002"]

    def test_adjustment_corrects_rows_in_between(self):
        """Test that entries between an original and its edit see the new amount."""
        original = make_entry("tx_20240301_001", expense("cash", 100))
        later = make_entry("tx_20240301_002", income("cash", 1000))
        adjustment = make_adjustment(
            original, expense("cash", 150), "tx_20240301_003", datetime(2024, 3, 1, 10, 0)
        )
        rows = reconstruct([_segment([original, later, adjustment])])

        assert [r.entry.id for r in rows] == ["tx_20240301_002", "tx_20240301_001"]
        assert rows[0].snapshot.balance("cash", "TWD") == Decimal("850")
        assert rows[1].snapshot.balance("cash", "TWD") == Decimal("-150")

    def test_latest_adjustment_wins(self):
        """Test that a second edit replaces the first."""
        original = make_entry("tx_20240301_001", expense("cash", 100))
        first = make_adjustment(original, expense("cash", 150), "tx_20240301_002", datetime(2024, 3, 1, 10))
        merged = merge_adjustments([original, first])[0].entry
        second = make_adjustment(merged, expense("cash", 80), "tx_20240301_003", datetime(2024, 3, 1, 11))
        rows = reconstruct([_segment([original, first, second])])

        assert rows[0].entry.debit.amount == Decimal("80")
        assert rows[0].snapshot.balance("cash", "TWD") == Decimal("-80")
        assert rows[0].adjustment_ids == ["tx_20240301_002", "tx_20240301_003"]

    def test_orphan_adjustment_ignored(self):
        """Test that an edit of an unknown entry changes no row."""
        missing = make_entry("tx_20240220_001", expense("cash", 100))
        orphan = make_adjustment(missing, expense("cash", 150), "tx_20240301_002", datetime(2024, 3, 1, 10))
        kept = make_entry("tx_20240301_001", income("bank", 10))
        rows = reconstruct([_segment([kept, orphan])])

        assert [r.entry.id for r in rows] == ["tx_20240301_001"]
        assert rows[0].snapshot == replay(Snapshot(), [kept])

    def test_order_ignores_timestamps(self):
        """Test that a backdated entry stays where it was appended."""
        first = make_entry("tx_20240301_001", income("bank", 10), datetime(2024, 3, 1, 12))
        backdated = make_entry("tx_20240301_002", expense("cash", 4), datetime(2024, 2, 20, 8))
        rows = reconstruct([_segment([first, backdated])])

        assert [r.entry.id for r in rows] == ["tx_20240301_002", "tx_20240301_001"]
        assert rows[0].snapshot.balance("cash", "TWD") == Decimal("-4")

    def test_limit(self):
        """Test that only the newest rows are returned."""
        entries = [make_entry(f"tx_20240301_{i:03d}", income("bank", i)) for i in range(1, 6)]
        rows = reconstruct([_segment(entries)], limit=2)
        assert [r.entry.id for r in rows] == ["tx_20240301_005", "tx_20240301_004"]

    def test_each_segment_anchored_at_its_closing(self):
        """Test that a gap between segments does not skew older rows."""
        older = [make_entry("tx_20240228_001", income("bank", 100))]
        newer = [make_entry("tx_20240301_001", expense("cash", 5))]
        # Closing of the newer segment includes a day that was not readable
        gap = replay(Snapshot(), older + [make_entry("tx_20240229_001", income("bank", 7))])
        rows = reconstruct([_segment(older), _segment(newer, opening=gap)])

        assert rows[0].snapshot.balance("bank", "TWD") == Decimal("107")
        assert rows[1].snapshot.balance("bank", "TWD") == Decimal("100")


# =============================================================================
# RECONSTRUCTOR OVER DAY-FILES
# =============================================================================

class TestHistoryReconstructor:
    """Tests for history read from stored day-files."""

    def test_adjustment_across_files(self, files, history):
        """Test an edit recorded the day after its original."""
        bank = make_entry("tx_20240301_001", income("bank", 1000))
        original = make_entry("tx_20240301_002", expense("cash", 100))
        later = make_entry("tx_20240302_001", expense("cash", 20), datetime(2024, 3, 2, 9))
        adjustment = make_adjustment(original, expense("cash", 150), "tx_20240302_002", datetime(2024, 3, 2, 10))

        async def run():
            await _record(files, date(2024, 3, 1), [bank, original])
            await _record(files, date(2024, 3, 2), [later, adjustment])
            return await history.get_history(USER)

        page = asyncio.run(run())

        assert [r.entry.id for r in page.entries] == [
            "tx_20240302_001", "tx_20240301_002", "tx_20240301_001",
        ]
        assert page.entries[0].snapshot.balance("cash", "TWD") == Decimal("-170")
        assert page.entries[1].snapshot.balance("cash", "TWD") == Decimal("-150")
        assert page.entries[1].edited
        assert page.entries[2].snapshot.balance("cash", "TWD") == Decimal("0")
        assert page.entries[2].snapshot.balance("bank", "TWD") == Decimal("1000")
        assert not page.reduced_fidelity

    def test_corrupt_file_skipped(self, files, history, store, audit_logger):
        """Test that an undecodable day-file is listed and skipped."""
        broken = resolve_file_name(date(2024, 3, 2), USER)

        async def run():
            await _record(files, date(2024, 3, 1), [make_entry("tx_20240301_001", income("bank", 50))])
            store.put(broken, b"\x00\x01 not json", folder=FOLDER)
            await _record(files, date(2024, 3, 3), [
                make_entry("tx_20240303_001", expense("cash", 5), datetime(2024, 3, 3, 9)),
            ])
            return await history.get_history(USER)

        page = asyncio.run(run())

        assert page.skipped_files == [broken]
        assert [r.entry.id for r in page.entries] == ["tx_20240303_001", "tx_20240301_001"]
        assert page.entries[0].snapshot.balance("bank", "TWD") == Decimal("50")
        assert page.entries[0].snapshot.balance("cash", "TWD") == Decimal("-5")
        assert any(
            e.event_type == AuditEventType.CORRUPT_FILE_SKIPPED for e in audit_logger.events
        )

    def test_malformed_legacy_files_skipped(self, files, history, store):
        """Test that block files of the wrong shape are skipped, not fatal."""
        bad_rows = resolve_file_name(date(2024, 3, 2), USER)
        bad_header = resolve_file_name(date(2024, 3, 3), USER)

        async def run():
            await _record(files, date(2024, 3, 1), [make_entry("tx_20240301_001", income("bank", 50))])
            store.put(bad_rows, json.dumps({
                "block_header": {"date": "2024-03-02"},
                "transactions": ["bad"],
            }).encode("utf-8"), folder=FOLDER)
            store.put(bad_header, json.dumps({"block_header": []}).encode("utf-8"), folder=FOLDER)
            return await history.get_history(USER)

        page = asyncio.run(run())

        assert page.skipped_files == [bad_rows, bad_header]
        assert [r.entry.id for r in page.entries] == ["tx_20240301_001"]

    def test_file_deleted_after_listing_skipped(self, files, history, store, audit_logger):
        """Test that a listed file that is gone by read time is skipped."""
        second = resolve_file_name(date(2024, 3, 2), USER)

        async def run():
            await _record(files, date(2024, 3, 1), [make_entry("tx_20240301_001", income("bank", 50))])
            await _record(files, date(2024, 3, 2), [
                make_entry("tx_20240302_001", expense("cash", 5), datetime(2024, 3, 2, 9)),
            ])
            store.vanish_on_read(second)
            return await history.get_history(USER)

        page = asyncio.run(run())

        assert page.skipped_files == [second]
        assert [r.entry.id for r in page.entries] == ["tx_20240301_001"]
        vanished = [e for e in audit_logger.events if e.event_type == AuditEventType.FILE_VANISHED]
        assert [e.entity_id for e in vanished] == [second]

    def test_latest_snapshot_skips_deleted_file(self, files, history, store):
        """Test that the newest readable file anchors the snapshot."""
        async def run():
            await _record(files, date(2024, 3, 1), [make_entry("tx_20240301_001", income("bank", 10))])
            await _record(files, date(2024, 3, 2), [
                make_entry("tx_20240302_001", expense("cash", 3), datetime(2024, 3, 2, 9)),
            ])
            store.vanish_on_read(resolve_file_name(date(2024, 3, 2), USER))
            return await history.latest_snapshot(USER)

        snapshot, entry, file_name = asyncio.run(run())

        assert snapshot.total("TWD") == Decimal("10")
        assert entry.id == "tx_20240301_001"
        assert file_name == resolve_file_name(date(2024, 3, 1), USER)

    def test_orphan_audited(self, files, history, audit_logger):
        """Test that orphan adjustments are reported."""
        missing = make_entry("tx_20240220_001", expense("cash", 100))
        orphan = make_adjustment(missing, expense("cash", 150), "tx_20240301_001", datetime(2024, 3, 1, 10))

        async def run():
            await _record(files, date(2024, 3, 1), [orphan])
            return await history.get_history(USER)

        page = asyncio.run(run())

        assert page.entries == []
        orphans = [e for e in audit_logger.events if e.event_type == AuditEventType.ORPHAN_ADJUSTMENT]
        assert len(orphans) == 1

    def test_history_limit(self, files, history):
        """Test pagination across files."""
        async def run():
            await _record(files, date(2024, 3, 1), [
                make_entry("tx_20240301_001", income("bank", 1)),
                make_entry("tx_20240301_002", income("bank", 2)),
            ])
            await _record(files, date(2024, 3, 2), [
                make_entry("tx_20240302_001", income("bank", 3), datetime(2024, 3, 2, 9)),
            ])
            return await history.get_history(USER, limit=2)

        page = asyncio.run(run())
        assert [r.entry.id for r in page.entries] == ["tx_20240302_001", "tx_20240301_002"]

    def test_latest_snapshot(self, files, history):
        """Test the closing snapshot and last entry of the newest file."""
        last = make_entry("tx_20240302_001", expense("cash", 3), datetime(2024, 3, 2, 9))

        async def run():
            await _record(files, date(2024, 3, 1), [make_entry("tx_20240301_001", income("bank", 10))])
            await _record(files, date(2024, 3, 2), [last])
            return await history.latest_snapshot(USER)

        snapshot, entry, file_name = asyncio.run(run())

        assert snapshot.total("TWD") == Decimal("7")
        assert entry.id == last.id
        assert file_name == resolve_file_name(date(2024, 3, 2), USER)

    def test_latest_snapshot_empty(self, history):
        """Test a user with no day-files."""
        snapshot, entry, file_name = asyncio.run(history.latest_snapshot(USER))
        assert snapshot == Snapshot()
        assert entry is None
        assert file_name is None
