"""Tests for day-file decoding, the version 1 shim and entry validation."""

from datetime import date
from decimal import Decimal

import pytest

from daybook.ledger.compat import CorruptFileError, decode_file, encode_file, infer_kind
from daybook.ledger.hashing import entry_content_hash
from daybook.ledger.validation import ValidationError, build_movement, parse_kind, validate_movement
from daybook.models.ledger import AppendOptions, DailyLedgerFile, EntryKind, Exchange, FileHeader

from tests.factories import expense, income, make_entry, v1_block


DAY = date(2024, 3, 1)


class TestDecode:
    """Tests for decoding stored bytes."""

    def test_current_schema_round_trip(self):
        """Test that an encoded file decodes to the same content."""
        ledger_file = DailyLedgerFile(
            header=FileHeader(day=DAY, user="AliceChen", sequence_count=1),
            entries=[make_entry("tx_20240301_001", expense("cash", "12.30"))],
        )
        decoded = decode_file(encode_file(ledger_file))

        assert decoded.model_dump() == ledger_file.model_dump()
        assert decoded.entries[0].debit.amount == Decimal("12.30")

    def test_missing_hashes_filled(self):
        """Test that entries stored without a hash get one."""
        entry = make_entry("tx_20240301_001", income("bank", 5))
        bare = entry.model_copy(update={"content_hash": ""})
        raw = encode_file(DailyLedgerFile(header=FileHeader(day=DAY), entries=[bare]))

        assert decode_file(raw).entries[0].content_hash == entry.content_hash

    @pytest.mark.parametrize("raw", [
        b"{broken",
        b"\xff\xfe",
        b"[]",
        b'{"something": "else"}',
        b'{"header": {"version": "2.0"}, "entries": []}',
        b'{"header": {"date": "2024-03-01"}, "entries": [{"id": "x"}]}',
        b'{"block_header": []}',
        b'{"block_header": {"date": "2024-03-01"}, "transactions": ["bad"]}',
        b'{"block_header": {"date": "2024-03-01"}, "transactions": {"a": 1}}',
        b'{"block_header": {"date": "2024-03-01", "balances_snapshot": [1]}}',
        b'{"block_header": {"date": "2024-03-01", "exchange_rates": "TWD"}}',
        b'{"block_header": {"date": "2024-03-01"}, "block_signature": "abc"}',
    ])
    def test_corrupt_content(self, raw):
        """Test that undecodable content raises CorruptFileError."""
        with pytest.raises(CorruptFileError) as exc_info:
            decode_file(raw, file_name="20240301_AliceChen_0123456789abcdef.json")
        assert exc_info.value.file_name == "20240301_AliceChen_0123456789abcdef.json"


class TestVersionOneShim:
    """Tests for upgrading block-layout files."""

    def test_floats_become_exact_decimals(self):
        """Test that float amounts are converted without artifacts."""
        raw = v1_block(DAY, [{
            "tx_id": "tx_20240301_001",
            "type": "income",
            "credit": {"account": "bank", "amount": 0.1, "currency": "TWD"},
        }], {})

        decoded = decode_file(raw, user="AliceChen")

        assert decoded.entries[0].credit.amount == Decimal("0.1")
        assert decoded.header.user == "AliceChen"
        assert decoded.header.exchange_rates.rates["USD"] == Decimal("32.55")
        assert decoded.closing_snapshot.balance("bank", "TWD") == Decimal("0.1")

    def test_opening_derived_from_closing(self):
        """Test that opening balances are the closing minus the day's entries."""
        raw = v1_block(DAY, [{
            "tx_id": "tx_20240301_001",
            "type": "expense",
            "debit": {"account": "cash", "amount": 100, "currency": "TWD"},
        }], {
            "cash": {"amount": 400, "currency": "TWD"},
            "bank_USD": {"amount": 50, "currency": "USD"},
        })

        decoded = decode_file(raw)

        assert decoded.header.opening_balances.balance("cash", "TWD") == Decimal("500")
        assert decoded.closing_snapshot.balance("bank", "USD") == Decimal("50")
        assert decoded.header.prev_file_hash == "genesis"

    def test_stored_hashes_recomputed(self):
        """Test that legacy tx_hash values are replaced by real content hashes."""
        shared = "7b2274785f696422"
        raw = v1_block(DAY, [
            {"tx_id": "tx_20240301_001", "type": "expense", "tx_hash": shared,
             "debit": {"account": "cash", "amount": 10, "currency": "TWD"}},
            {"tx_id": "tx_20240301_002", "type": "income", "tx_hash": shared,
             "credit": {"account": "bank", "amount": 20, "currency": "TWD"}},
        ], {})

        entries = decode_file(raw).entries

        assert [e.content_hash for e in entries] == [entry_content_hash(e) for e in entries]
        assert entries[0].content_hash != entries[1].content_hash
        assert shared not in {e.content_hash for e in entries}

    def test_entries_without_legs_dropped(self):
        """Test that unusable legacy rows are skipped."""
        raw = v1_block(DAY, [
            {"tx_id": "a", "type": "expense"},
            {"tx_id": "b", "type": "expense", "debit": {"account": "cash", "amount": -3}},
            {"tx_id": "c", "type": "expense", "debit": {"account": "cash", "amount": 3}},
        ], {})

        assert [e.id for e in decode_file(raw).entries] == ["c"]

    @pytest.mark.parametrize("declared,debit,credit,expected", [
        ("expense", True, False, "expense"),
        ("income", False, True, "income"),
        ("transfer", True, True, "transfer"),
        ("exchange", True, True, "exchange"),
        (None, True, True, "transfer"),
        ("expense", False, False, None),
    ])
    def test_infer_kind(self, declared, debit, credit, expected):
        """Test kind inference from the legs present."""
        assert infer_kind(declared, debit, credit) == expected


class TestValidation:
    """Tests for building movements from append arguments."""

    def test_parse_kind(self):
        """Test accepted and rejected kinds."""
        assert parse_kind("income") == EntryKind.INCOME
        with pytest.raises(ValidationError):
            parse_kind("adjustment")
        with pytest.raises(ValidationError):
            parse_kind("gift")

    def test_default_currency(self):
        """Test that the configured currency applies when none is given."""
        movement = build_movement("expense", "9.99", "food", "", "cash", default_currency="JPY")
        assert movement.debit.currency == "JPY"
        assert movement.debit.amount == Decimal("9.99")

    def test_float_amount_not_distorted(self):
        """Test that float input keeps its printed value."""
        movement = build_movement("income", 0.1, "", "", "bank")
        assert movement.credit.amount == Decimal("0.1")

    def test_target_amount_preferred(self):
        """Test that an explicit target amount beats the rate."""
        movement = build_movement("exchange", 32550, "", "", "bank", options=AppendOptions(
            to_account_id="bank",
            target_currency="USD",
            target_amount=Decimal("999"),
            exchange_rate=Decimal("32.55"),
        ))
        assert isinstance(movement, Exchange)
        assert movement.credit.amount == Decimal("999")

    def test_rate_rounded_to_cents(self):
        """Test half-up rounding of the derived amount."""
        movement = build_movement("exchange", 100, "", "", "bank", options=AppendOptions(
            to_account_id="usd",
            target_currency="USD",
            exchange_rate=Decimal("3"),
        ))
        assert movement.credit.amount == Decimal("33.33")

    def test_transfer_defaults_to_same_amount(self):
        """Test a 1:1 transfer."""
        movement = build_movement("transfer", 5000, "", "", "bank", options=AppendOptions(to_account_id="cash"))
        assert movement.credit.amount == Decimal("5000")
        assert movement.credit.currency == "TWD"

    def test_validation_error_lists_fields(self):
        """Test that pydantic errors are carried on the ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            validate_movement({"kind": "income", "credit": {"account": "", "amount": 1}})
        assert exc_info.value.errors
        assert "Invalid entry" in str(exc_info.value)
