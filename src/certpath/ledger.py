"""Currency ledger operations.

Every operation is a pure function `(state, ...) -> new state`: the input
`LedgerState` is never modified, and a rejected operation raises before
anything is built. Aggregates are always updated together with the posting
that changes them.

Balance rules:
- `EARN` adds to `balance` and `lifetime_earned`.
- `SPEND` subtracts from `balance` only; `lifetime_earned` never decreases.
- `PENDING` is held in `pending` until approved (promoted to `EARN`) or
  rejected (voided, kept in history).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime
from uuid import uuid4

from .config import DEFAULT_TIERS
from .errors import AlreadyResolved, InsufficientFunds, InvalidAmount, InvalidTransition
from .models import (
    APPROVE,
    APPROVED,
    EARN,
    PENDING,
    REJECT,
    REJECTED,
    SPEND,
    LedgerState,
    Tier,
    TierStatus,
    Transaction,
)

IdFactory = Callable[[], str]
Clock = Callable[[], str]


def _new_id() -> str:
    return uuid4().hex


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _check_amount(amount: object) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Amount must be a positive integer, got {amount!r}.")
    return amount


def _post(
    state: LedgerState,
    kind: str,
    amount: int,
    category: str,
    description: str,
    new_id: IdFactory,
    now: Clock,
) -> Transaction:
    transaction_id = new_id()
    if state.get(transaction_id) is not None:
        raise InvalidTransition(f"Duplicate transaction id: {transaction_id}")
    return Transaction(
        id=transaction_id,
        timestamp=now(),
        description=description,
        category=category,
        amount=amount,
        type=kind,
    )


def grant(
    state: LedgerState,
    amount: int,
    category: str,
    description: str,
    *,
    new_id: IdFactory = _new_id,
    now: Clock = _now,
) -> tuple[LedgerState, Transaction]:
    """Post an EARN; raises balance and lifetime earned."""
    amount = _check_amount(amount)
    transaction = _post(state, EARN, amount, category, description, new_id, now)
    return (
        replace(
            state,
            balance=state.balance + amount,
            lifetime_earned=state.lifetime_earned + amount,
            transactions=state.transactions + (transaction,),
        ),
        transaction,
    )


def grant_pending(
    state: LedgerState,
    amount: int,
    category: str,
    description: str,
    *,
    new_id: IdFactory = _new_id,
    now: Clock = _now,
) -> tuple[LedgerState, Transaction]:
    """Post a PENDING awaiting verification; balance is untouched."""
    amount = _check_amount(amount)
    transaction = _post(state, PENDING, amount, category, description, new_id, now)
    return (
        replace(state, pending=state.pending + amount, transactions=state.transactions + (transaction,)),
        transaction,
    )


def resolve_pending(state: LedgerState, transaction_id: str, outcome: str) -> tuple[LedgerState, Transaction]:
    """Approve or reject one pending posting, exactly once."""
    if outcome not in (APPROVE, REJECT):
        raise ValueError(f"Unknown resolution outcome: {outcome!r}")
    index = _index_of(state, transaction_id)
    original = state.transactions[index]
    if original.resolution is not None:
        raise AlreadyResolved(f"Transaction '{transaction_id}' was already {original.resolution}.")
    if original.type != PENDING:
        raise InvalidTransition(f"Transaction '{transaction_id}' is not pending.")

    transactions = list(state.transactions)
    if outcome == APPROVE:
        resolved = replace(original, type=EARN, resolution=APPROVED)
        transactions[index] = resolved
        new_state = replace(
            state,
            balance=state.balance + original.amount,
            pending=state.pending - original.amount,
            lifetime_earned=state.lifetime_earned + original.amount,
            transactions=tuple(transactions),
        )
    else:
        resolved = replace(original, resolution=REJECTED)
        transactions[index] = resolved
        new_state = replace(state, pending=state.pending - original.amount, transactions=tuple(transactions))
    return new_state, resolved


def spend(
    state: LedgerState,
    amount: int,
    category: str,
    description: str,
    *,
    new_id: IdFactory = _new_id,
    now: Clock = _now,
) -> tuple[LedgerState, Transaction]:
    """Post a SPEND; rejected when it exceeds the spendable balance."""
    amount = _check_amount(amount)
    if amount > state.balance:
        raise InsufficientFunds(amount, state.balance)
    transaction = _post(state, SPEND, amount, category, description, new_id, now)
    return (
        replace(state, balance=state.balance - amount, transactions=state.transactions + (transaction,)),
        transaction,
    )


def rebuild(transactions: Iterable[Transaction]) -> LedgerState:
    """Replay postings in insertion order and derive aggregates."""
    balance = 0
    pending = 0
    lifetime = 0
    ordered = tuple(transactions)
    for transaction in ordered:
        if transaction.type == EARN:
            balance += transaction.amount
            lifetime += transaction.amount
        elif transaction.type == SPEND:
            balance -= transaction.amount
        elif transaction.is_open_pending:
            pending += transaction.amount
    return LedgerState(balance=balance, pending=pending, lifetime_earned=lifetime, transactions=ordered)


def tier_for(lifetime_earned: int, tiers: tuple[Tier, ...] = DEFAULT_TIERS) -> Tier:
    """Return the highest tier whose minimum is at or below lifetime earned."""
    current = tiers[0]
    for tier in tiers:
        if tier.minimum <= lifetime_earned:
            current = tier
        else:
            break
    return current


def tier_status(lifetime_earned: int, tiers: tuple[Tier, ...] = DEFAULT_TIERS) -> TierStatus:
    """Return current tier plus linear progress toward the next one."""
    current = tier_for(lifetime_earned, tiers)
    index = tiers.index(current)
    following = tiers[index + 1] if index + 1 < len(tiers) else None
    if following is None:
        return TierStatus(current=current, next=None, progress_percent=100.0, to_next=0)
    span = following.minimum - current.minimum
    progress = 100.0 * (lifetime_earned - current.minimum) / span
    return TierStatus(
        current=current,
        next=following,
        progress_percent=max(0.0, min(100.0, progress)),
        to_next=following.minimum - lifetime_earned,
    )


def _index_of(state: LedgerState, transaction_id: str) -> int:
    for index, transaction in enumerate(state.transactions):
        if transaction.id == transaction_id:
            return index
    raise KeyError(transaction_id)
