"""Error kinds raised by the progression and ledger engine."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for rejected engine operations."""


class InvalidTransition(EngineError):
    """Illegal module or attempt state change."""


class NoSelection(EngineError):
    """Quiz answer confirmed without a selected option."""


class InsufficientFunds(EngineError):
    """Spend exceeds the spendable balance."""

    def __init__(self, amount: int, balance: int) -> None:
        super().__init__(f"Cannot spend {amount}; balance is {balance}.")
        self.amount = amount
        self.balance = balance


class AlreadyResolved(EngineError):
    """Pending posting was already approved or rejected."""


class ConfigurationError(EngineError, ValueError):
    """Malformed module, quiz, or engine configuration data."""


class InvalidAmount(EngineError, ValueError):
    """Amount is not a positive integer."""


class PersistenceFailure(EngineError):
    """Snapshot write failed; in-memory state was left unchanged."""
