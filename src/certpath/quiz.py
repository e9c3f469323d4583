"""Quiz scoring and the transient per-attempt state machine."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from fractions import Fraction

from .errors import InvalidTransition, NoSelection
from .models import Quiz, QuizQuestion

DEFAULT_PASS_RATIO = 0.8


def pass_threshold(question_count: int, pass_ratio: float = DEFAULT_PASS_RATIO) -> int:
    """Return the minimum correct answers needed to pass.

    Uses exact decimal arithmetic so 35 * 0.8 is 28, not 28.000000000000004.
    """
    return math.ceil(Fraction(question_count) * Fraction(str(pass_ratio)))


def score_selections(questions: Sequence[QuizQuestion], selections: Sequence[int | None]) -> int:
    """Count selections equal to each question's correct answer."""
    return sum(
        1
        for question, selected in zip(questions, selections)
        if selected is not None and selected == question.correct_answer
    )


@dataclass(frozen=True)
class QuizResult:
    """Outcome of a finished attempt."""

    score: int
    total: int
    threshold: int

    @property
    def passed(self) -> bool:
        return self.score >= self.threshold


def evaluate(
    questions: Sequence[QuizQuestion], selections: Sequence[int | None], pass_ratio: float = DEFAULT_PASS_RATIO
) -> QuizResult:
    """Score a complete set of selections against the pass threshold."""
    return QuizResult(
        score=score_selections(questions, selections),
        total=len(questions),
        threshold=pass_threshold(len(questions), pass_ratio),
    )


class QuizAttempt:
    """One in-progress run through a quiz.

    Flow per question: `select` any number of times, `confirm` once, then
    `advance`. Nothing here is persisted; a failed attempt is discarded or
    reset with `retry`.
    """

    def __init__(self, quiz: Quiz, pass_ratio: float = DEFAULT_PASS_RATIO) -> None:
        self.quiz = quiz
        self.pass_ratio = pass_ratio
        self.retry()

    def retry(self) -> None:
        """Discard all progress and restart from the first question."""
        self.current_index = 0
        self.score = 0
        self.selected_option: int | None = None
        self.answered = False
        self.finished = False
        self._selections: list[int | None] = [None] * len(self.quiz.questions)

    @property
    def current_question(self) -> QuizQuestion:
        return self.quiz.questions[self.current_index]

    @property
    def question_count(self) -> int:
        return len(self.quiz.questions)

    def select(self, option: int) -> None:
        """Choose an option for the current question."""
        self._require_open()
        if self.answered:
            raise InvalidTransition("Question already answered.")
        if not 0 <= option < len(self.current_question.options):
            raise InvalidTransition(f"Option {option} is out of range.")
        self.selected_option = option

    def confirm(self) -> bool:
        """Lock in the current selection and return whether it was correct."""
        self._require_open()
        if self.answered:
            raise InvalidTransition("Question already answered.")
        if self.selected_option is None:
            raise NoSelection("Select an option before confirming.")
        self.answered = True
        self._selections[self.current_index] = self.selected_option
        correct = self.selected_option == self.current_question.correct_answer
        if correct:
            self.score += 1
        return correct

    def advance(self) -> bool:
        """Move to the next question; return False once the quiz is finished."""
        self._require_open()
        if not self.answered:
            raise InvalidTransition("Confirm an answer before moving on.")
        if self.current_index + 1 >= self.question_count:
            self.finished = True
            return False
        self.current_index += 1
        self.selected_option = None
        self.answered = False
        return True

    def result(self) -> QuizResult:
        """Return the scored outcome of a finished attempt."""
        if not self.finished:
            raise InvalidTransition("Quiz is not finished.")
        return evaluate(self.quiz.questions, self._selections, self.pass_ratio)

    def _require_open(self) -> None:
        if self.finished:
            raise InvalidTransition("Quiz is already finished.")
