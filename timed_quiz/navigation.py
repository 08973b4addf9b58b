"""
Navigation rules for moving between questions of an attempt.
"""
from .models import Attempt, Quiz


def can_navigate(attempt: Attempt) -> bool:
    """Index changes need a running attempt with no feedback window open."""
    return attempt.is_running and not attempt.feedback_open


def can_go_to(attempt: Attempt, quiz: Quiz, index: int) -> bool:
    """Check whether a direct jump to ``index`` is legal."""
    if not can_navigate(attempt):
        return False
    if isinstance(index, bool) or not isinstance(index, int):
        return False
    return 0 <= index < quiz.question_count


def can_next(attempt: Attempt, quiz: Quiz) -> bool:
    # The last question is finished explicitly, never advanced past
    return can_navigate(attempt) and attempt.current_index < quiz.last_index


def can_previous(attempt: Attempt) -> bool:
    return can_navigate(attempt) and attempt.current_index > 0
