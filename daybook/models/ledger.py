"""
Core Data Models for Daybook

These models define the strict schemas for everything the ledger stores
or derives:
1. Ledger entries (the atomic financial events)
2. Snapshots (per-account, per-currency balances)
3. Day-files (the unit of persistence)
4. Accounts (read-only, owned by user settings)

DESIGN DECISION: Entry payloads are a tagged union keyed by `kind`.
Each kind carries exactly the legs it needs, so an expense without a
debit or a transfer without a credit cannot be constructed at all.

All money is Decimal. Floats never enter ledger arithmetic.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class EntryKind(str, Enum):
    """Kinds of ledger entries."""
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"
    EXCHANGE = "exchange"
    ADJUSTMENT = "adjustment"  # Shadow correction of an earlier entry


# =============================================================================
# ENTRY PAYLOADS
# =============================================================================

class Leg(BaseModel):
    """
    One side of a movement: funds leaving (debit) or entering (credit)
    an account in a single currency.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    account: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Account identifier"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Unsigned amount moved"
    )
    currency: str = Field(
        default="TWD",
        min_length=1,
        max_length=10,
        description="Currency code"
    )

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class _MovementBase(BaseModel):
    """Descriptive fields shared by every movement kind."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    category: str = Field(
        default="",
        max_length=100,
        description="Free-form category"
    )
    note: str = Field(
        default="",
        max_length=1000,
        description="Free-form note"
    )


class Expense(_MovementBase):
    """Funds leaving one account."""
    kind: Literal["expense"] = "expense"
    debit: Leg


class Income(_MovementBase):
    """Funds entering one account."""
    kind: Literal["income"] = "income"
    credit: Leg


class Transfer(_MovementBase):
    """
    Funds moved between accounts.

    The credited amount may differ from the debited one (fees, rounding).
    """
    kind: Literal["transfer"] = "transfer"
    debit: Leg
    credit: Leg

    @model_validator(mode='after')
    def validate_legs(self) -> 'Transfer':
        if (
            self.debit.account == self.credit.account
            and self.debit.currency == self.credit.currency
        ):
            raise ValueError("Transfer must move funds to a different account")
        return self


class Exchange(_MovementBase):
    """
    Currency exchange: debit in one currency, credit in another.

    There is no separate FX engine. The rate is implied by the two legs.
    """
    kind: Literal["exchange"] = "exchange"
    debit: Leg
    credit: Leg

    @model_validator(mode='after')
    def validate_legs(self) -> 'Exchange':
        if (
            self.debit.account == self.credit.account
            and self.debit.currency == self.credit.currency
        ):
            raise ValueError("Exchange must change account or currency")
        return self

    @property
    def implied_rate(self) -> Decimal:
        """Debit units per credit unit (e.g. TWD per USD)."""
        return self.debit.amount / self.credit.amount


Movement = Annotated[
    Union[Expense, Income, Transfer, Exchange],
    Field(discriminator="kind"),
]


class Adjustment(BaseModel):
    """
    A shadow correction of an earlier entry.

    `replacement` is the complete new payload (never a diff).
    `supersedes` is the payload it replaces, as it was in effect when the
    edit was made, so the balance effect of the adjustment can be computed
    from this entry alone.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["adjustment"] = "adjustment"
    ref_original_id: str = Field(
        ...,
        min_length=1,
        description="ID of the entry being corrected"
    )
    replacement: Movement
    supersedes: Movement

    @property
    def category(self) -> str:
        return self.replacement.category

    @property
    def note(self) -> str:
        return self.replacement.note


Payload = Annotated[
    Union[Expense, Income, Transfer, Exchange, Adjustment],
    Field(discriminator="kind"),
]


# =============================================================================
# LEDGER ENTRY
# =============================================================================

class LedgerEntry(BaseModel):
    """
    The atomic unit of the ledger.

    Immutable once created. Edits never touch a stored entry; they append
    an Adjustment that references it.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Unique entry identifier"
    )
    timestamp: datetime = Field(
        ...,
        description="Logical time of the entry (user-selected or creation time)"
    )
    payload: Payload
    content_hash: str = Field(
        default="",
        description="Hash of the canonical fields, used for duplicate detection"
    )
    prev_id: Optional[str] = Field(
        default=None,
        description="Entry appended immediately before this one (in-memory chain)"
    )

    @property
    def kind(self) -> EntryKind:
        return EntryKind(self.payload.kind)

    @property
    def is_adjustment(self) -> bool:
        return isinstance(self.payload, Adjustment)

    @property
    def movement(self):
        """The movement in effect: the payload, or an adjustment's replacement."""
        if isinstance(self.payload, Adjustment):
            return self.payload.replacement
        return self.payload

    @property
    def category(self) -> str:
        return self.movement.category

    @property
    def note(self) -> str:
        return self.movement.note

    @property
    def debit(self) -> Optional[Leg]:
        return getattr(self.movement, "debit", None)

    @property
    def credit(self) -> Optional[Leg]:
        return getattr(self.movement, "credit", None)

    @property
    def sequence(self) -> Optional[int]:
        """Intra-day sequence number from the id suffix (tx_YYYYMMDD_NNN)."""
        suffix = self.id.rsplit("_", 1)[-1]
        return int(suffix) if suffix.isdigit() else None


# =============================================================================
# SNAPSHOTS
# =============================================================================

class Snapshot(BaseModel):
    """
    Balances per account per currency, plus per-currency totals.

    Derived data: only ever stored embedded in a day-file header.
    Equality ignores zero entries, so a lazily zero-filled snapshot
    equals its sparse counterpart.
    """

    balances: dict[str, dict[str, Decimal]] = Field(
        default_factory=dict,
        description="account -> currency -> signed amount"
    )
    totals: dict[str, Decimal] = Field(
        default_factory=dict,
        description="currency -> sum across accounts"
    )

    def balance(self, account: str, currency: str) -> Decimal:
        return self.balances.get(account, {}).get(currency, Decimal("0"))

    def total(self, currency: str) -> Decimal:
        return self.totals.get(currency, Decimal("0"))

    def _normalized(self) -> tuple[dict, dict]:
        balances = {}
        for account, currencies in self.balances.items():
            non_zero = {c: a for c, a in currencies.items() if a != 0}
            if non_zero:
                balances[account] = non_zero
        totals = {c: a for c, a in self.totals.items() if a != 0}
        return balances, totals

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return NotImplemented
        return self._normalized() == other._normalized()


# =============================================================================
# DAY-FILES
# =============================================================================

class ExchangeRates(BaseModel):
    """Exchange-rate snapshot recorded in a day-file header (informational)."""

    base_currency: str = "TWD"
    rates: dict[str, Decimal] = Field(default_factory=dict)
    source: str = ""


class FileHeader(BaseModel):
    """Day-file header. The day is stored under the key "date"."""
    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(
        default="2.0",
        description="Schema version"
    )
    day: date = Field(
        ...,
        alias="date",
        description="Calendar day this file holds"
    )
    user: str = Field(
        default="",
        description="Sanitized user account name"
    )
    sequence_count: int = Field(
        default=0,
        ge=0,
        description="Number of entries in the file"
    )
    prev_file_hash: str = Field(
        default="genesis",
        description="Signature hash of the previous day-file"
    )
    exchange_rates: ExchangeRates = Field(default_factory=ExchangeRates)
    opening_balances: Snapshot = Field(
        default_factory=Snapshot,
        description="Snapshot inherited from the previous day-file"
    )
    balances_snapshot: Snapshot = Field(
        default_factory=Snapshot,
        description="Snapshot after the last entry of this file"
    )


class FileSignature(BaseModel):
    """Integrity marker. Never verified on read."""

    hash: str = ""
    signed_by: str = ""


class DailyLedgerFile(BaseModel):
    """All entries for one user for one calendar day."""

    header: FileHeader
    entries: list[LedgerEntry] = Field(default_factory=list)
    signature: FileSignature = Field(default_factory=FileSignature)

    @property
    def closing_snapshot(self) -> Snapshot:
        return self.header.balances_snapshot

    def find_by_hash(self, content_hash: str) -> Optional[LedgerEntry]:
        for entry in self.entries:
            if entry.content_hash == content_hash:
                return entry
        return None


class FileHandle(BaseModel):
    """A resolved day-file in the blob store."""
    model_config = ConfigDict(frozen=True)

    file_id: str
    name: str
    day: date
    user: str


class AppendResult(BaseModel):
    """
    Outcome of appending to a day-file.

    `duplicate=True` is the DuplicateDetected signal: nothing was written
    and `entry` is the copy already on file.
    """

    entry: LedgerEntry
    handle: FileHandle
    duplicate: bool = False


# =============================================================================
# ACCOUNTS AND OPTIONS
# =============================================================================

class Account(BaseModel):
    """
    An account as defined in user settings.

    The ledger reads these but never owns them.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: str = Field(..., min_length=1)
    name: str = ""
    type: str = Field(
        default="cash",
        description="cash, bank, credit, ewallet, securities, exchange..."
    )
    currency: str = Field(
        default="TWD",
        description="Home currency of the account"
    )
    deleted: bool = False

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class AppendOptions(BaseModel):
    """Optional fields accepted when appending an entry."""
    model_config = ConfigDict(str_strip_whitespace=True)

    currency: Optional[str] = None
    to_account_id: Optional[str] = None
    target_currency: Optional[str] = None
    target_amount: Optional[Decimal] = Field(default=None, gt=0)
    exchange_rate: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Source units per target unit"
    )
    timestamp: Optional[datetime] = Field(
        default=None,
        description="User-selected logical time; defaults to now"
    )


# =============================================================================
# HISTORY
# =============================================================================

class EntryWithSnapshot(BaseModel):
    """An effective (merged) entry and the balances right after it."""

    entry: LedgerEntry
    snapshot: Snapshot
    edited: bool = Field(
        default=False,
        description="True if an adjustment replaced the original payload"
    )
    adjustment_ids: list[str] = Field(default_factory=list)


class HistoryPage(BaseModel):
    """A page of history, newest first."""

    entries: list[EntryWithSnapshot] = Field(default_factory=list)
    reduced_fidelity: bool = Field(
        default=False,
        description="Served from the in-memory chain instead of stored files"
    )
    skipped_files: list[str] = Field(
        default_factory=list,
        description="Day-files that could not be decoded"
    )
