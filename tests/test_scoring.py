"""Unit tests for the pure scoring functions."""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from assessment.db.models import QuestionTypeEnum
from assessment.services.scoring import (
    compute_percentage,
    compute_time_spent,
    grade_for_percentage,
    normalise_text,
    recompute_totals,
    round_half_up,
    score_answer,
    score_attempt,
)


def _option(text: str, is_correct: bool = False):
    return SimpleNamespace(id=uuid.uuid4(), text=text, is_correct=is_correct)


def _question(qtype: QuestionTypeEnum, points: int = 5, options=(), correct_answer=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        question_type=qtype,
        points=points,
        options=list(options),
        correct_answer=correct_answer,
    )


def _answer(answer=None, selected=()):
    return SimpleNamespace(answer=answer, selected_options=list(selected))


# ── Percentage & grade ────────────────────────────────────────────────────────


def test_percentage_rounds_half_up():
    assert compute_percentage(1, 8) == 13  # 12.5
    assert compute_percentage(5, 8) == 63  # 62.5
    assert round_half_up(2.5) == 3


def test_percentage_zero_when_max_is_zero():
    assert compute_percentage(0, 0) == 0
    assert compute_percentage(3, 0) == 0


def test_percentage_clamped():
    assert compute_percentage(12, 10) == 100
    assert compute_percentage(-2, 10) == 0


@pytest.mark.parametrize(
    "percentage,grade",
    [
        (100, "A+"),
        (90, "A+"),
        (89, "A"),
        (85, "A"),
        (80, "A-"),
        (75, "B+"),
        (70, "B"),
        (65, "B-"),
        (60, "C+"),
        (55, "C"),
        (50, "C-"),
        (45, "D"),
        (44, "F"),
        (0, "F"),
    ],
)
def test_grade_thresholds(percentage, grade):
    assert grade_for_percentage(percentage) == grade


def test_grade_is_monotone():
    order = ["F", "D", "C-", "C", "C+", "B-", "B", "B+", "A-", "A", "A+"]
    ranks = [order.index(grade_for_percentage(p)) for p in range(101)]
    assert ranks == sorted(ranks)


def test_recompute_totals_after_manual_essay_points():
    totals = recompute_totals([5, 0, 7], max_score=20)
    assert totals.total_score == 12
    assert totals.percentage == 60
    assert totals.grade == "C+"


def test_time_spent_whole_seconds():
    start = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert compute_time_spent(start, start + timedelta(minutes=2, seconds=5.9)) == 125
    # naive values (as read back from SQLite) are treated as UTC
    assert compute_time_spent(start.replace(tzinfo=None), start + timedelta(seconds=30)) == 30
    assert compute_time_spent(start, start - timedelta(seconds=5)) == 0


# ── Per-question rules ────────────────────────────────────────────────────────


def test_multiple_choice_exact_set():
    a, b, c = _option("A", True), _option("B", True), _option("C")
    q = _question(QuestionTypeEnum.MULTIPLE_CHOICE, options=[a, b, c])

    assert score_answer(q, selected_options=[str(a.id), str(b.id)]).points_earned == 5
    partial = score_answer(q, selected_options=[str(a.id)])
    assert partial.is_correct is False and partial.points_earned == 0
    extra = score_answer(q, selected_options=[str(a.id), str(b.id), str(c.id)])
    assert extra.is_correct is False


def test_multiple_choice_matches_option_text():
    q = _question(QuestionTypeEnum.MULTIPLE_CHOICE, options=[_option("Paris", True), _option("Rome")])
    assert score_answer(q, selected_options=["  paris "]).is_correct is True


def test_true_false_free_text_answer():
    q = _question(
        QuestionTypeEnum.TRUE_FALSE,
        points=2,
        options=[_option("True", True), _option("False")],
    )
    assert score_answer(q, answer="true").points_earned == 2
    assert score_answer(q, answer="False").is_correct is False


def test_short_answer_normalised():
    q = _question(QuestionTypeEnum.SHORT_ANSWER, correct_answer="New  York")
    assert normalise_text("  New   york ") == "new york"
    assert score_answer(q, answer=" new york").is_correct is True
    assert score_answer(q, answer="newyork").is_correct is False


def test_essay_is_pending():
    q = _question(QuestionTypeEnum.ESSAY, points=10)
    pending = score_answer(q, answer="A long answer")
    assert pending.pending
    assert pending.points_earned == 0
    assert score_answer(q, answer="   ").pending


# ── Whole attempt ─────────────────────────────────────────────────────────────


def _two_mc_questions():
    q1 = _question(QuestionTypeEnum.MULTIPLE_CHOICE, options=[_option("Paris", True), _option("Rome")])
    q2 = _question(QuestionTypeEnum.MULTIPLE_CHOICE, options=[_option("Madrid"), _option("Rome", True)])
    return q1, q2


def test_all_correct_scores_full_marks():
    q1, q2 = _two_mc_questions()
    answers = {
        q1.id: _answer(selected=[str(q1.options[0].id)]),
        q2.id: _answer(selected=[str(q2.options[1].id)]),
    }
    result = score_attempt([q1, q2], answers, max_score=10)
    assert (result.total_score, result.max_score, result.percentage, result.grade) == (10, 10, 100, "A+")
    assert result.is_graded


def test_half_correct_is_c_minus():
    q1, q2 = _two_mc_questions()
    answers = {
        q1.id: _answer(selected=[str(q1.options[0].id)]),
        q2.id: _answer(selected=[str(q2.options[0].id)]),
    }
    result = score_attempt([q1, q2], answers, max_score=10)
    assert result.percentage == 50
    assert result.grade == "C-"


def test_unanswered_questions_are_incorrect():
    q1, q2 = _two_mc_questions()
    result = score_attempt([q1, q2], {q1.id: _answer(selected=[str(q1.options[0].id)])}, max_score=10)
    assert result.answers[q2.id].is_correct is False
    assert result.total_score == 5


def test_essay_keeps_attempt_ungraded():
    q1, _ = _two_mc_questions()
    essay = _question(QuestionTypeEnum.ESSAY)
    answers = {
        q1.id: _answer(selected=[str(q1.options[0].id)]),
        essay.id: _answer(answer="My essay"),
    }
    result = score_attempt([q1, essay], answers, max_score=10)
    assert not result.is_graded
    assert result.total_score == 5


def test_unanswered_essay_stays_pending():
    q1, _ = _two_mc_questions()
    essay = _question(QuestionTypeEnum.ESSAY)
    result = score_attempt([q1, essay], {q1.id: _answer(selected=[str(q1.options[0].id)])}, max_score=10)
    assert result.answers[essay.id].is_correct is None
    assert not result.is_graded
