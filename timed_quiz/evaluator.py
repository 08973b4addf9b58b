"""
Answer evaluation for quiz attempts.
Pure functions only: nothing here touches session state.
"""
from typing import Sequence

from .models import Question, Quiz, Score, ResultTier, UNANSWERED


# Result banding policy
TOP_TIER_THRESHOLD = 70
MID_TIER_THRESHOLD = 50


def score_answer(question: Question, selected_index: int) -> bool:
    """
    Check a single selection against the question's correct option.

    Args:
        question: Question being answered
        selected_index: Chosen option index, or UNANSWERED

    Returns:
        True if the selection is the correct option
    """
    if selected_index == UNANSWERED:
        return False
    return selected_index == question.correct_index


def round_half_up_percentage(numerator: int, denominator: int) -> int:
    """Return round(numerator / denominator * 100) with halves rounded up."""
    if denominator <= 0:
        raise ValueError("Denominator must be positive")
    return (200 * numerator + denominator) // (2 * denominator)


def result_tier(percentage: int) -> ResultTier:
    """Map a percentage onto its user-facing result tier."""
    if percentage >= TOP_TIER_THRESHOLD:
        return ResultTier.TOP
    if percentage >= MID_TIER_THRESHOLD:
        return ResultTier.MID
    return ResultTier.LOW


def score_attempt(quiz: Quiz, answers: Sequence[int]) -> Score:
    """
    Score a whole attempt.

    Unanswered questions count as incorrect; the total is always the
    number of questions in the quiz.

    Args:
        quiz: Quiz the attempt belongs to
        answers: One entry per question, UNANSWERED or an option index

    Returns:
        Score with correct count, total, percentage and tier

    Raises:
        ValueError: If the answers do not line up with the quiz questions
    """
    if len(answers) != quiz.question_count:
        raise ValueError(
            f"Expected {quiz.question_count} answers, got {len(answers)}"
        )

    correct_count = sum(
        1 for question, answer in zip(quiz.questions, answers)
        if score_answer(question, answer)
    )
    total = quiz.question_count
    percentage = round_half_up_percentage(correct_count, total)

    return Score(
        correct_count=correct_count,
        total=total,
        percentage=percentage,
        tier=result_tier(percentage),
    )


def elapsed_seconds(quiz: Quiz, remaining_seconds: int) -> int:
    """Time spent on an attempt so far."""
    return quiz.total_seconds - remaining_seconds


def format_time(seconds: int) -> str:
    """Format seconds as m:ss."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"
