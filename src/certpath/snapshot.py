"""JSON-shaped snapshots of module graphs and ledgers."""

from __future__ import annotations

from typing import Any, cast

from .errors import ConfigurationError
from .ledger import rebuild
from .models import (
    APPROVED,
    ICON_GENERIC,
    MODULE_STATUSES,
    REJECTED,
    TRANSACTION_TYPES,
    LedgerState,
    Module,
    Transaction,
)
from .pathway import ModuleGraph


def graph_to_dict(graph: ModuleGraph) -> list[dict[str, object]]:
    """Serialize modules in sequence order."""
    return [
        {
            "id": module.id,
            "title": module.title,
            "description": module.description,
            "icon_type": module.icon_type,
            "status": module.status,
            "xp_reward": module.xp_reward,
        }
        for module in graph.modules
    ]


def graph_from_dict(raw: object) -> ModuleGraph:
    """Rebuild a graph from serialized module records."""
    if not isinstance(raw, list):
        raise ConfigurationError("Module graph snapshot must be a list.")
    modules: list[Module] = []
    for item in cast(list[object], raw):
        if not isinstance(item, dict):
            raise ConfigurationError("Module record must be an object.")
        row = cast(dict[str, Any], item)
        status = str(row.get("status", ""))
        if status not in MODULE_STATUSES:
            raise ConfigurationError(f"Module record has unknown status {status!r}.")
        if "id" not in row:
            raise ConfigurationError("Module record is missing its id.")
        xp_reward = row.get("xp_reward", 0)
        if isinstance(xp_reward, bool) or not isinstance(xp_reward, int) or xp_reward < 0:
            raise ConfigurationError(f"Module '{row['id']}' has invalid xp_reward {xp_reward!r}.")
        modules.append(
            Module(
                id=str(row["id"]),
                title=str(row.get("title", "")),
                description=str(row.get("description", "")),
                icon_type=str(row.get("icon_type", ICON_GENERIC)),
                status=status,
                xp_reward=xp_reward,
            )
        )
    graph = ModuleGraph(modules=tuple(modules))
    graph.validate()
    return graph


def transaction_to_dict(transaction: Transaction) -> dict[str, object]:
    return {
        "id": transaction.id,
        "timestamp": transaction.timestamp,
        "description": transaction.description,
        "category": transaction.category,
        "amount": transaction.amount,
        "type": transaction.type,
        "resolution": transaction.resolution,
    }


def transaction_from_dict(raw: dict[str, Any]) -> Transaction:
    if "id" not in raw:
        raise ConfigurationError("Transaction is missing its id.")
    kind = str(raw.get("type", ""))
    if kind not in TRANSACTION_TYPES:
        raise ConfigurationError(f"Transaction has unknown type {kind!r}.")
    amount = raw.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ConfigurationError(f"Transaction has invalid amount {amount!r}.")
    resolution = raw.get("resolution")
    if resolution not in (None, APPROVED, REJECTED):
        raise ConfigurationError(f"Transaction has unknown resolution {resolution!r}.")
    return Transaction(
        id=str(raw["id"]),
        timestamp=str(raw.get("timestamp", "")),
        description=str(raw.get("description", "")),
        category=str(raw.get("category", "")),
        amount=amount,
        type=kind,
        resolution=resolution,
    )


def ledger_to_dict(state: LedgerState) -> dict[str, object]:
    return {
        "balance": state.balance,
        "pending": state.pending,
        "lifetime_earned": state.lifetime_earned,
        "transactions": [transaction_to_dict(item) for item in state.transactions],
    }


def ledger_from_dict(raw: object) -> LedgerState:
    """Rebuild a ledger; stored aggregates must agree with a replay of its postings."""
    if not isinstance(raw, dict):
        raise ConfigurationError("Ledger snapshot must be an object.")
    row = cast(dict[str, Any], raw)
    items = row.get("transactions", [])
    if not isinstance(items, list):
        raise ConfigurationError("Ledger transactions must be a list.")
    if not all(isinstance(item, dict) for item in items):
        raise ConfigurationError("Ledger transaction record must be an object.")
    transactions = [transaction_from_dict(cast(dict[str, Any], item)) for item in items]
    if len({item.id for item in transactions}) != len(transactions):
        raise ConfigurationError("Ledger snapshot has duplicate transaction ids.")
    state = rebuild(transactions)
    for name in ("balance", "pending", "lifetime_earned"):
        if name in row and row[name] != getattr(state, name):
            raise ConfigurationError(
                f"Ledger snapshot {name}={row[name]!r} disagrees with its transactions ({getattr(state, name)})."
            )
    if state.balance < 0:
        raise ConfigurationError("Ledger snapshot has a negative balance.")
    return state
