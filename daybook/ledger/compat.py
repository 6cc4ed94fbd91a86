"""
Day-file decoding and legacy schema shims.

Two on-disk layouts exist:

  2.0  {"header": {...}, "entries": [...], "signature": {...}}
  1.0  {"block_header": {...}, "transactions": [...], "block_signature": {...}}

Everything is decoded into the current DailyLedgerFile model before the
ledger sees it. Version 1 files carry float amounts, free-form types and
a closing snapshot keyed by account; the shim converts all of that.

A file that cannot be decoded raises CorruptFileError. Callers decide
whether that is fatal (appending) or skippable (history).
"""

import json
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from daybook.ledger.hashing import entry_content_hash
from daybook.ledger.snapshot import ZERO, replay, reverse_entry
from daybook.models.ledger import (
    DailyLedgerFile,
    ExchangeRates,
    FileHeader,
    FileSignature,
    LedgerEntry,
    Snapshot,
)


logger = structlog.get_logger(__name__)


class CorruptFileError(Exception):
    """A stored day-file could not be decoded."""

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"Cannot decode {file_name or 'day-file'}: {reason}")
        self.file_name = file_name
        self.reason = reason


# =============================================================================
# ENCODING
# =============================================================================

def encode_file(ledger_file: DailyLedgerFile) -> bytes:
    """Serialize a day-file. Decimals are written as strings."""
    return json.dumps(
        ledger_file.model_dump(mode="json", by_alias=True),
        ensure_ascii=False,
        indent=2,
    ).encode("utf-8")


def decode_file(
    raw: bytes,
    file_name: str = "",
    day: Optional[date] = None,
    user: str = "",
) -> DailyLedgerFile:
    """
    Decode stored bytes into a current-schema day-file.

    `day` and `user` fill header fields that legacy files lack.
    """
    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise CorruptFileError(file_name, f"invalid JSON: {e}") from e

    if not isinstance(document, dict):
        raise CorruptFileError(file_name, "top-level value is not an object")

    try:
        if "header" in document:
            ledger_file = DailyLedgerFile.model_validate(document)
            return _fill_content_hashes(ledger_file)
        if "block_header" in document:
            return upgrade_v1(document, file_name=file_name, day=day, user=user)
    except PydanticValidationError as e:
        raise CorruptFileError(file_name, f"schema mismatch: {e.error_count()} errors") from e
    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
        raise CorruptFileError(file_name, f"malformed content: {e}") from e

    raise CorruptFileError(file_name, "unknown file layout")


def _fill_content_hashes(ledger_file: DailyLedgerFile) -> DailyLedgerFile:
    if all(e.content_hash for e in ledger_file.entries):
        return ledger_file
    entries = [
        e if e.content_hash else e.model_copy(update={"content_hash": entry_content_hash(e)})
        for e in ledger_file.entries
    ]
    return ledger_file.model_copy(update={"entries": entries})


# =============================================================================
# VERSION 1 ("block") SHIM
# =============================================================================

def _money(value: Any) -> Decimal:
    # Floats go through str() so 0.1 stays 0.1
    return Decimal(str(value))


def _require_object(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise ValueError(f"{what} is not an object")
    return value


def _leg(raw: Any) -> Optional[dict]:
    if not isinstance(raw, dict) or not raw.get("account"):
        return None
    return {
        "account": raw["account"],
        "amount": _money(raw.get("amount", 0)),
        "currency": raw.get("currency") or "TWD",
    }


def infer_kind(declared: Optional[str], has_debit: bool, has_credit: bool) -> Optional[str]:
    """Movement kind from the declared type and the legs present."""
    if has_debit and has_credit:
        return "exchange" if declared == "exchange" else "transfer"
    if has_debit:
        return "expense"
    if has_credit:
        return "income"
    return None


def _v1_timestamp(raw: Any, day: date) -> datetime:
    if isinstance(raw, str) and raw:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.combine(day, time.min)


def _v1_entry(tx: dict, index: int, day: date) -> Optional[LedgerEntry]:
    debit = _leg(tx.get("debit"))
    credit = _leg(tx.get("credit"))
    kind = infer_kind(tx.get("type"), debit is not None, credit is not None)
    if kind is None:
        return None

    payload: dict[str, Any] = {
        "kind": kind,
        "category": tx.get("category") or "",
        "note": tx.get("note") or "",
    }
    if debit is not None:
        payload["debit"] = debit
    if credit is not None:
        payload["credit"] = credit

    entry = LedgerEntry.model_validate({
        "id": tx.get("tx_id") or f"tx_{day:%Y%m%d}_{index:03d}",
        "timestamp": _v1_timestamp(tx.get("time"), day),
        "payload": payload,
    })
    # Stored tx_hash covers only a prefix of the raw JSON; never reused
    return entry.model_copy(update={"content_hash": entry_content_hash(entry)})


def _v1_snapshot(raw: Any) -> Optional[Snapshot]:
    """
    Decode a v1 closing snapshot.

    Keys are an account id or "<account>_<CURRENCY>"; values are
    {"amount": float, "currency": str}.
    """
    if raw is None:
        return None
    _require_object(raw, "balances_snapshot")
    if not raw:
        return None
    balances: dict[str, dict[str, Decimal]] = {}
    totals: dict[str, Decimal] = {}
    for key, value in raw.items():
        if not isinstance(value, dict):
            raise ValueError(f"balance {key!r} is not an object")
        currency = value.get("currency") or "TWD"
        if not isinstance(currency, str):
            raise ValueError(f"balance {key!r} has a non-text currency")
        currency = currency.upper()
        amount = _money(value.get("amount", 0))
        suffix = f"_{currency}"
        account = key[:-len(suffix)] if key.endswith(suffix) and len(key) > len(suffix) else key
        per_account = balances.setdefault(account, {})
        per_account[currency] = per_account.get(currency, ZERO) + amount
        totals[currency] = totals.get(currency, ZERO) + amount
    return Snapshot(balances=balances, totals=totals)


def upgrade_v1(
    document: dict,
    file_name: str = "",
    day: Optional[date] = None,
    user: str = "",
) -> DailyLedgerFile:
    """
    Convert a version 1 block document into a version 2.0 day-file.

    Raises ValueError when the block layout itself is malformed; single
    unusable transactions are dropped with a warning.
    """
    header = _require_object(document["block_header"], "block_header")
    raw_day = header.get("date")
    file_day = date.fromisoformat(raw_day) if raw_day else day
    if file_day is None:
        raise ValueError("block header has no date")

    transactions = document.get("transactions") or []
    if not isinstance(transactions, list):
        raise ValueError("transactions is not a list")

    entries = []
    for index, tx in enumerate(transactions, start=1):
        _require_object(tx, f"transaction {index}")
        try:
            entry = _v1_entry(tx, index, file_day)
        except PydanticValidationError as e:
            logger.warning(
                "legacy_entry_dropped",
                file_name=file_name,
                tx_id=tx.get("tx_id"),
                error_count=e.error_count(),
            )
            continue
        if entry is None:
            logger.warning("legacy_entry_without_legs", file_name=file_name, tx_id=tx.get("tx_id"))
            continue
        entries.append(entry)

    closing = _v1_snapshot(header.get("balances_snapshot"))
    if closing is None:
        opening = Snapshot()
        closing = replay(opening, entries)
    else:
        opening = closing
        for entry in reversed(entries):
            opening = reverse_entry(opening, entry)

    rates = _require_object(header.get("exchange_rates") or {}, "exchange_rates")
    rate_table = _require_object(rates.get("rates") or {}, "exchange_rates.rates")
    signature = _require_object(document.get("block_signature") or {}, "block_signature")

    return DailyLedgerFile(
        header=FileHeader(
            version="2.0",
            day=file_day,
            user=user,
            sequence_count=len(entries),
            prev_file_hash=header.get("prev_block_hash") or "genesis",
            exchange_rates=ExchangeRates(
                base_currency=rates.get("base_currency") or "TWD",
                rates={code: _money(v) for code, v in rate_table.items()},
                source=rates.get("source") or "",
            ),
            opening_balances=opening,
            balances_snapshot=closing,
        ),
        entries=entries,
        signature=FileSignature(
            hash=signature.get("hash") or "",
            signed_by=signature.get("signed_by") or "",
        ),
    )
