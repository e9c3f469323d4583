"""Core domain models for the certification pathway and currency ledger."""

from __future__ import annotations

from dataclasses import dataclass, field

LOCKED = "locked"
ACTIVE = "active"
COMPLETED = "completed"
MODULE_STATUSES = frozenset({LOCKED, ACTIVE, COMPLETED})

ICON_VIDEO = "video"
ICON_QUIZ = "quiz"
ICON_TROPHY = "trophy"
ICON_GENERIC = "generic"
ICON_TYPES = frozenset({ICON_VIDEO, ICON_QUIZ, ICON_TROPHY, ICON_GENERIC})

EARN = "EARN"
SPEND = "SPEND"
PENDING = "PENDING"
TRANSACTION_TYPES = frozenset({EARN, SPEND, PENDING})

APPROVE = "approve"
REJECT = "reject"
APPROVED = "approved"
REJECTED = "rejected"


@dataclass(frozen=True)
class Module:
    """One unit of the training pathway."""

    id: str
    title: str
    description: str
    icon_type: str
    status: str
    xp_reward: int


@dataclass(frozen=True)
class QuizQuestion:
    """One multiple-choice question."""

    id: str
    question: str
    options: tuple[str, ...]
    correct_answer: int


@dataclass(frozen=True)
class Quiz:
    """Ordered question set bound to a pathway module."""

    module_id: str
    title: str
    questions: tuple[QuizQuestion, ...]


@dataclass(frozen=True)
class Transaction:
    """One ledger posting."""

    id: str
    timestamp: str
    description: str
    category: str
    amount: int
    type: str
    resolution: str | None = None

    @property
    def is_open_pending(self) -> bool:
        """Return whether this is a pending posting awaiting verification."""
        return self.type == PENDING and self.resolution is None

    @property
    def is_void(self) -> bool:
        """Return whether this posting was rejected during verification."""
        return self.resolution == REJECTED


@dataclass(frozen=True)
class LedgerState:
    """Currency ledger with derived aggregates."""

    balance: int = 0
    pending: int = 0
    lifetime_earned: int = 0
    transactions: tuple[Transaction, ...] = field(default_factory=tuple)

    def transactions_newest_first(self) -> list[Transaction]:
        """Return postings in display order."""
        return list(reversed(self.transactions))

    def get(self, transaction_id: str) -> Transaction | None:
        """Return one posting by id."""
        for transaction in self.transactions:
            if transaction.id == transaction_id:
                return transaction
        return None


@dataclass(frozen=True)
class Tier:
    """Named band of lifetime-earned currency."""

    name: str
    minimum: int


@dataclass(frozen=True)
class TierStatus:
    """Current tier and progress toward the next one."""

    current: Tier
    next: Tier | None
    progress_percent: float
    to_next: int


@dataclass(frozen=True)
class FeedbackRecord:
    """One moderation record in the admin feedback console."""

    id: int
    session_id: str
    user_prompt: str
    model_response: str
    rating: str
    comment: str
    timestamp: str
    status: str
