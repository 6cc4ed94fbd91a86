"""
Snapshot Engine

Pure functions that fold ledger entries into per-account, per-currency
balances. Nothing here touches storage or mutates its inputs.

DESIGN DECISION: Every entry is reduced to a list of signed deltas
(account, currency, amount). Applying adds them, reversing subtracts
them. Because money is Decimal, reverse(apply(s, e), e) == s exactly.

An adjustment's delta is the negated delta of the payload it supersedes
plus the delta of its replacement.
"""

from decimal import Decimal
from typing import Iterable, Union

from daybook.models.ledger import (
    Account,
    Adjustment,
    Exchange,
    Expense,
    Income,
    LedgerEntry,
    Snapshot,
    Transfer,
)


Delta = tuple[str, str, Decimal]
ZERO = Decimal("0")


def movement_deltas(movement) -> list[Delta]:
    """Signed deltas of a single non-adjustment payload."""
    if isinstance(movement, Expense):
        return [(movement.debit.account, movement.debit.currency, -movement.debit.amount)]
    if isinstance(movement, Income):
        return [(movement.credit.account, movement.credit.currency, movement.credit.amount)]
    if isinstance(movement, (Transfer, Exchange)):
        return [
            (movement.debit.account, movement.debit.currency, -movement.debit.amount),
            (movement.credit.account, movement.credit.currency, movement.credit.amount),
        ]
    raise TypeError(f"Unsupported payload type: {type(movement).__name__}")


def payload_deltas(payload) -> list[Delta]:
    """Signed deltas of any payload, adjustments included."""
    if isinstance(payload, Adjustment):
        undo = [(a, c, -amount) for a, c, amount in movement_deltas(payload.supersedes)]
        return undo + movement_deltas(payload.replacement)
    return movement_deltas(payload)


def _payload_of(entry: Union[LedgerEntry, object]):
    return entry.payload if isinstance(entry, LedgerEntry) else entry


def _apply_deltas(snapshot: Snapshot, deltas: Iterable[Delta], sign: int) -> Snapshot:
    balances = {account: dict(currencies) for account, currencies in snapshot.balances.items()}
    totals = dict(snapshot.totals)
    for account, currency, amount in deltas:
        signed = amount if sign > 0 else -amount
        per_account = balances.setdefault(account, {})
        per_account[currency] = per_account.get(currency, ZERO) + signed
        totals[currency] = totals.get(currency, ZERO) + signed
    return Snapshot(balances=balances, totals=totals)


def apply_entry(snapshot: Snapshot, entry) -> Snapshot:
    """Snapshot after `entry`. Accepts a LedgerEntry or a bare payload."""
    return _apply_deltas(snapshot, payload_deltas(_payload_of(entry)), 1)


def reverse_entry(snapshot: Snapshot, entry) -> Snapshot:
    """Snapshot before `entry`, given the snapshot right after it."""
    return _apply_deltas(snapshot, payload_deltas(_payload_of(entry)), -1)


def replay(snapshot: Snapshot, entries: Iterable) -> Snapshot:
    for entry in entries:
        snapshot = apply_entry(snapshot, entry)
    return snapshot


def entry_delta(entry) -> Snapshot:
    """The signed effect of one entry, as a snapshot."""
    return apply_entry(Snapshot(), entry)


def combine(left: Snapshot, right: Snapshot) -> Snapshot:
    """Component-wise sum of two snapshots."""
    balances = {account: dict(currencies) for account, currencies in left.balances.items()}
    for account, currencies in right.balances.items():
        per_account = balances.setdefault(account, {})
        for currency, amount in currencies.items():
            per_account[currency] = per_account.get(currency, ZERO) + amount
    totals = dict(left.totals)
    for currency, amount in right.totals.items():
        totals[currency] = totals.get(currency, ZERO) + amount
    return Snapshot(balances=balances, totals=totals)


def negate(snapshot: Snapshot) -> Snapshot:
    return Snapshot(
        balances={
            account: {currency: -amount for currency, amount in currencies.items()}
            for account, currencies in snapshot.balances.items()
        },
        totals={currency: -amount for currency, amount in snapshot.totals.items()},
    )


def zero_fill(snapshot: Snapshot, accounts: Iterable[Account]) -> Snapshot:
    """
    Give every non-deleted account at least a zero in its home currency.

    Accounts not in `accounts` (unknown ids from old entries) are kept.
    """
    balances = {account: dict(currencies) for account, currencies in snapshot.balances.items()}
    totals = dict(snapshot.totals)
    for account in accounts:
        if account.deleted:
            continue
        balances.setdefault(account.id, {}).setdefault(account.currency, ZERO)
        totals.setdefault(account.currency, ZERO)
    return Snapshot(balances=balances, totals=totals)


def is_conserved(snapshot: Snapshot) -> bool:
    """True if every currency total equals the sum of its balances."""
    sums: dict[str, Decimal] = {}
    for currencies in snapshot.balances.values():
        for currency, amount in currencies.items():
            sums[currency] = sums.get(currency, ZERO) + amount
    currencies = set(sums) | set(snapshot.totals)
    return all(sums.get(c, ZERO) == snapshot.totals.get(c, ZERO) for c in currencies)
