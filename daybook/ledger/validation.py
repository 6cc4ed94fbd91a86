"""
Entry validation.

Malformed entries are rejected here, before they reach the snapshot
engine or a day-file. The engine itself assumes well-formed input.

DESIGN DECISION: Pydantic does the structural checks (positive amounts,
required legs, distinct transfer endpoints). This module turns the flat
arguments of an append into a typed movement and converts pydantic's
errors into a single ValidationError the callers can catch.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from daybook.models.ledger import (
    AppendOptions,
    EntryKind,
    Exchange,
    Expense,
    Income,
    Movement,
    Transfer,
)


CENT = Decimal("0.01")

_movement_adapter = TypeAdapter(Movement)


class ValidationError(ValueError):
    """An entry is malformed. Never retried."""

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, error: PydanticValidationError) -> "ValidationError":
        details = error.errors(include_url=False)
        summary = "; ".join(
            f"{'.'.join(str(p) for p in item['loc']) or 'entry'}: {item['msg']}"
            for item in details
        )
        return cls(f"Invalid entry: {summary}", errors=details)


def to_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    """Convert user input to a finite Decimal without float artifacts."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"Invalid amount: {value!r}") from e
    if not result.is_finite():
        raise ValidationError(f"Amount must be a finite number, got {value!r}")
    return result


def parse_kind(kind: Union[str, EntryKind]) -> EntryKind:
    try:
        parsed = EntryKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown entry kind: {kind!r}")
    if parsed == EntryKind.ADJUSTMENT:
        raise ValidationError("Adjustments are created by editing an entry, not appended directly")
    return parsed


def build_movement(
    kind: Union[str, EntryKind],
    amount: Union[Decimal, int, float, str],
    category: str,
    note: str,
    account_id: str,
    options: Optional[AppendOptions] = None,
    default_currency: str = "TWD",
):
    """
    Build a movement payload from append arguments.

    For transfers and exchanges the credited amount is, in order:
    `target_amount`, `amount / exchange_rate` rounded to cents, or
    `amount` itself.
    """
    entry_kind = parse_kind(kind)
    options = options or AppendOptions()
    value = to_decimal(amount)
    if value <= 0:
        raise ValidationError(f"Amount must be positive, got {value}")

    currency = (options.currency or default_currency).upper()
    source = {"account": account_id, "amount": value, "currency": currency}

    try:
        if entry_kind == EntryKind.EXPENSE:
            return Expense(category=category, note=note, debit=source)
        if entry_kind == EntryKind.INCOME:
            return Income(category=category, note=note, credit=source)

        if not options.to_account_id:
            raise ValidationError(f"A {entry_kind.value} needs a target account")

        if options.target_amount is not None:
            target_amount = options.target_amount
        elif options.exchange_rate is not None:
            target_amount = (value / options.exchange_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        else:
            target_amount = value

        target = {
            "account": options.to_account_id,
            "amount": target_amount,
            "currency": (options.target_currency or currency).upper(),
        }
        model = Transfer if entry_kind == EntryKind.TRANSFER else Exchange
        return model(category=category, note=note, debit=source, credit=target)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


def validate_movement(data: Any):
    """Validate a replacement payload given as a model or a plain dict."""
    if isinstance(data, (Expense, Income, Transfer, Exchange)):
        return data
    if isinstance(data, dict) and data.get("kind") == EntryKind.ADJUSTMENT.value:
        raise ValidationError("A replacement payload cannot be an adjustment")
    try:
        return _movement_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e
