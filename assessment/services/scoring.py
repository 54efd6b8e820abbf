"""Scoring engine for closed attempts.

Everything here is a pure function of the quiz definition and the submitted
answers; nothing touches the session. The attempt manager applies the result
before it writes the closing transition.

Rules per question type:
  - multiple-choice / true-false: the selected option set must equal the set
    of options flagged correct (all-or-nothing)
  - short-answer: trimmed, whitespace-collapsed, case-folded exact match
  - essay: never auto-scored; stays pending until an instructor sets points
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from assessment.core.clock import ensure_utc
from assessment.db.models import QuestionTypeEnum

logger = logging.getLogger(__name__)

# Inclusive lower bounds, evaluated top-down
GRADE_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (90, "A+"),
    (85, "A"),
    (80, "A-"),
    (75, "B+"),
    (70, "B"),
    (65, "B-"),
    (60, "C+"),
    (55, "C"),
    (50, "C-"),
    (45, "D"),
)
FAILING_GRADE = "F"

_MULTI_SPACE = re.compile(r"\s+")

_CHOICE_TYPES = (QuestionTypeEnum.MULTIPLE_CHOICE, QuestionTypeEnum.TRUE_FALSE)


@dataclass(frozen=True)
class AnswerScore:
    """Outcome for one question. ``is_correct`` is None while pending."""

    question_id: Any
    is_correct: bool | None
    points_earned: int

    @property
    def pending(self) -> bool:
        return self.is_correct is None


@dataclass(frozen=True)
class Totals:
    total_score: int
    percentage: int
    grade: str


@dataclass
class ScoreResult:
    answers: dict[Any, AnswerScore] = field(default_factory=dict)
    total_score: int = 0
    max_score: int = 0
    percentage: int = 0
    grade: str = FAILING_GRADE

    @property
    def is_graded(self) -> bool:
        """False while any essay answer is waiting for a manual score."""
        return not any(a.pending for a in self.answers.values())


# ── Primitive computations ────────────────────────────────────────────────────


def round_half_up(value: Decimal | float | int) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_percentage(total_score: int, max_score: int) -> int:
    """round(total / max × 100), clamped to [0, 100]; 0 when max is 0."""
    if max_score <= 0:
        return 0
    raw = Decimal(total_score * 100) / Decimal(max_score)
    return max(0, min(100, round_half_up(raw)))


def grade_for_percentage(percentage: int) -> str:
    for threshold, letter in GRADE_THRESHOLDS:
        if percentage >= threshold:
            return letter
    return FAILING_GRADE


def compute_time_spent(started_at: datetime, completed_at: datetime) -> int:
    """Whole seconds between start and completion, never negative."""
    delta = ensure_utc(completed_at) - ensure_utc(started_at)
    return max(0, int(delta.total_seconds()))


def recompute_totals(points_earned: Iterable[int], max_score: int) -> Totals:
    """Totals step on its own, also used after a manual essay score is set."""
    total = sum(points_earned)
    percentage = compute_percentage(total, max_score)
    return Totals(total_score=total, percentage=percentage, grade=grade_for_percentage(percentage))


# ── Per-question matching ─────────────────────────────────────────────────────


def normalise_text(text: str | None) -> str:
    """'  Paris   France ' → 'paris france'"""
    if not text:
        return ""
    return _MULTI_SPACE.sub(" ", text.strip()).casefold()


def _resolve_selection(question: Any, identifiers: Iterable[str]) -> set[str]:
    """Map submitted identifiers to option ids, falling back to option text.

    Identifiers that match nothing are kept verbatim so they spoil the match.
    """
    by_id = {str(opt.id): str(opt.id) for opt in question.options}
    by_text = {normalise_text(opt.text): str(opt.id) for opt in question.options}
    resolved: set[str] = set()
    for ident in identifiers:
        if ident is None:
            continue
        key = str(ident).strip()
        if key in by_id:
            resolved.add(by_id[key])
        elif normalise_text(key) in by_text:
            resolved.add(by_text[normalise_text(key)])
        else:
            resolved.add(key)
    return resolved


def score_answer(
    question: Any,
    answer: str | None = None,
    selected_options: Iterable[str] | None = None,
) -> AnswerScore:
    """Score one submitted answer against its question."""
    qtype = question.question_type

    if qtype == QuestionTypeEnum.ESSAY:
        return AnswerScore(question.id, None, 0)

    if qtype in _CHOICE_TYPES:
        identifiers = list(selected_options or [])
        if not identifiers and answer:
            identifiers = [answer]
        selected = _resolve_selection(question, identifiers)
        correct = {str(opt.id) for opt in question.options if opt.is_correct}
        is_correct = bool(correct) and selected == correct
    elif qtype == QuestionTypeEnum.SHORT_ANSWER:
        expected = normalise_text(question.correct_answer)
        is_correct = bool(expected) and normalise_text(answer) == expected
    else:
        logger.warning("Unknown question type %s on question %s", qtype, question.id)
        is_correct = False

    return AnswerScore(question.id, is_correct, question.points if is_correct else 0)


def score_attempt(
    questions: Iterable[Any],
    answers: Mapping[Any, Any],
    max_score: int,
) -> ScoreResult:
    """Score every question of a quiz.

    Args:
        questions: the quiz's questions
        answers: question id → object with ``answer`` and ``selected_options``
        max_score: the attempt's snapshot of the quiz total points

    Unanswered questions earn nothing and count as incorrect, except essays,
    which stay pending like any other essay.
    """
    result = ScoreResult(max_score=max_score)
    for question in questions:
        submitted = answers.get(question.id)
        if submitted is None:
            pending = question.question_type == QuestionTypeEnum.ESSAY
            result.answers[question.id] = AnswerScore(question.id, None if pending else False, 0)
            continue
        result.answers[question.id] = score_answer(
            question,
            answer=getattr(submitted, "answer", None),
            selected_options=getattr(submitted, "selected_options", None),
        )

    totals = recompute_totals((a.points_earned for a in result.answers.values()), max_score)
    result.total_score = totals.total_score
    result.percentage = totals.percentage
    result.grade = totals.grade
    return result
