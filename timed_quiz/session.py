"""
Quiz attempt state machine.

Every input (a user action or a timer tick) is an event passed to
``QuizSession.dispatch``. The pure ``reduce`` function computes the next
state in one step, so a tick and a user action can never interleave into a
partially applied update. Rejected transitions return the state unchanged
and are never raised as errors.
"""
import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from . import navigation
from .evaluator import score_answer, score_attempt, elapsed_seconds
from .models import (
    Attempt, Feedback, Quiz, QuizLoadError, Score, SessionSettings,
    SessionSnapshot, SessionStatus,
)

logger = logging.getLogger(__name__)


# Events

@dataclass(frozen=True)
class QuizLoaded:
    quiz: Quiz


@dataclass(frozen=True)
class LoadFailed:
    reason: str


@dataclass(frozen=True)
class SelectAnswer:
    option: int


@dataclass(frozen=True)
class FeedbackElapsed:
    # None matches the current attempt
    generation: Optional[int] = None


@dataclass(frozen=True)
class GoTo:
    index: int


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Previous:
    pass


@dataclass(frozen=True)
class Tick:
    generation: Optional[int] = None


@dataclass(frozen=True)
class Finish:
    pass


@dataclass(frozen=True)
class Restart:
    pass


@dataclass(frozen=True)
class SessionState:
    """Whole session state: the loaded quiz plus the current attempt."""
    quiz: Optional[Quiz] = None
    attempt: Optional[Attempt] = None
    error: Optional[str] = None

    @property
    def status(self) -> SessionStatus:
        if self.error is not None:
            return SessionStatus.ERROR
        if self.attempt is None:
            return SessionStatus.LOADING
        return self.attempt.status


# Reducer

def _matches_generation(attempt: Attempt, generation: Optional[int]) -> bool:
    return generation is None or generation == attempt.generation


def _on_quiz_loaded(state: SessionState, event: QuizLoaded) -> SessionState:
    if state.status != SessionStatus.LOADING:
        return state
    return SessionState(quiz=event.quiz, attempt=Attempt.fresh(event.quiz))


def _on_load_failed(state: SessionState, event: LoadFailed) -> SessionState:
    if state.status != SessionStatus.LOADING:
        return state
    return SessionState(error=event.reason)


def _on_select_answer(state: SessionState, event: SelectAnswer) -> SessionState:
    attempt = state.attempt
    if attempt is None or not attempt.is_running or attempt.feedback_open:
        return state

    index = attempt.current_index
    question = state.quiz.questions[index]
    option = event.option
    if isinstance(option, bool) or not isinstance(option, int):
        return state
    if not 0 <= option < len(question.options):
        return state

    answers = list(attempt.answers)
    answers[index] = option
    feedback = Feedback(correct=score_answer(question, option), question_index=index)
    return replace(state, attempt=replace(attempt, answers=tuple(answers), feedback=feedback))


def _on_feedback_elapsed(state: SessionState, event: FeedbackElapsed) -> SessionState:
    attempt = state.attempt
    if attempt is None or not attempt.is_running or not attempt.feedback_open:
        return state
    if not _matches_generation(attempt, event.generation):
        return state

    answered_index = attempt.feedback.question_index
    current_index = attempt.current_index
    if answered_index < state.quiz.last_index:
        current_index = answered_index + 1
    return replace(state, attempt=replace(attempt, feedback=None, current_index=current_index))


def _on_go_to(state: SessionState, event: GoTo) -> SessionState:
    attempt = state.attempt
    if attempt is None or not navigation.can_go_to(attempt, state.quiz, event.index):
        return state
    return replace(state, attempt=replace(attempt, current_index=event.index))


def _on_next(state: SessionState, event: Next) -> SessionState:
    attempt = state.attempt
    if attempt is None or not navigation.can_next(attempt, state.quiz):
        return state
    return replace(state, attempt=replace(attempt, current_index=attempt.current_index + 1))


def _on_previous(state: SessionState, event: Previous) -> SessionState:
    attempt = state.attempt
    if attempt is None or not navigation.can_previous(attempt):
        return state
    return replace(state, attempt=replace(attempt, current_index=attempt.current_index - 1))


def _finished(attempt: Attempt) -> Attempt:
    return replace(attempt, status=SessionStatus.FINISHED, feedback=None)


def _on_tick(state: SessionState, event: Tick) -> SessionState:
    attempt = state.attempt
    if attempt is None or not attempt.is_running:
        return state
    if not _matches_generation(attempt, event.generation):
        return state

    remaining = max(0, attempt.remaining_seconds - 1)
    attempt = replace(attempt, remaining_seconds=remaining)
    if remaining == 0:
        # Auto-submit on timeout
        attempt = _finished(attempt)
    return replace(state, attempt=attempt)


def _on_finish(state: SessionState, event: Finish) -> SessionState:
    attempt = state.attempt
    if attempt is None or not attempt.is_running:
        return state
    return replace(state, attempt=_finished(attempt))


def _on_restart(state: SessionState, event: Restart) -> SessionState:
    attempt = state.attempt
    if attempt is None or not attempt.is_finished:
        return state
    return replace(state, attempt=Attempt.fresh(state.quiz, generation=attempt.generation + 1))


_HANDLERS = {
    QuizLoaded: _on_quiz_loaded,
    LoadFailed: _on_load_failed,
    SelectAnswer: _on_select_answer,
    FeedbackElapsed: _on_feedback_elapsed,
    GoTo: _on_go_to,
    Next: _on_next,
    Previous: _on_previous,
    Tick: _on_tick,
    Finish: _on_finish,
    Restart: _on_restart,
}


def reduce(state: SessionState, event) -> SessionState:
    """
    Compute the next session state for an event.

    Args:
        state: Current session state
        event: One of the event dataclasses defined in this module

    Returns:
        The next state, or ``state`` itself when the event is rejected
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        return state
    return handler(state, event)


StateListener = Callable[[SessionState, SessionState, object], None]


class QuizSession:
    """
    Drives a single quiz attempt through ``dispatch``.

    The session owns no timers. A scheduler feeds ``Tick`` and
    ``FeedbackElapsed`` events into the same ``dispatch`` path that user
    actions use.
    """

    def __init__(self, session_id: str = "", settings: Optional[SessionSettings] = None):
        self.session_id = session_id
        self.settings = settings or SessionSettings()
        self._state = SessionState()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def quiz(self) -> Optional[Quiz]:
        return self._state.quiz

    @property
    def attempt(self) -> Optional[Attempt]:
        return self._state.attempt

    @property
    def generation(self) -> int:
        return self._state.attempt.generation if self._state.attempt else 0

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked as ``listener(old, new, event)`` after each change."""
        self._listeners.append(listener)

    def dispatch(self, event) -> SessionState:
        """
        Apply an event to the session.

        Args:
            event: Event to apply

        Returns:
            The resulting session state
        """
        previous = self._state
        current = reduce(previous, event)

        if current is previous:
            logger.debug(
                f"Session {self.session_id}: ignored {type(event).__name__} in state {previous.status.value}",
                extra={
                    'event_type': 'session_event_ignored',
                    'session_id': self.session_id,
                    'event': type(event).__name__,
                    'status': previous.status.value,
                }
            )
            return current

        self._state = current
        if previous.status != current.status:
            logger.info(
                f"Session {self.session_id}: {previous.status.value} -> {current.status.value} "
                f"({type(event).__name__})",
                extra={
                    'event_type': 'session_state_transition',
                    'session_id': self.session_id,
                    'from_state': previous.status.value,
                    'to_state': current.status.value,
                    'event': type(event).__name__,
                }
            )

        for listener in list(self._listeners):
            listener(previous, current, event)
        return current

    def load(self, quiz: Optional[Quiz], reason: str = "Quiz not found") -> Quiz:
        """
        Complete the loading phase with the quiz fetched from the store.

        Args:
            quiz: Quiz returned by the store, or None when it was not found
            reason: Error message used when ``quiz`` is None

        Returns:
            The loaded quiz

        Raises:
            QuizLoadError: If no quiz was supplied
        """
        if quiz is None:
            self.fail(reason)
            raise QuizLoadError(reason)
        self.dispatch(QuizLoaded(quiz))
        return quiz

    def fail(self, reason: str) -> None:
        """Move a loading session into the error state."""
        self.dispatch(LoadFailed(reason))

    # Presentation callbacks

    def select_answer(self, option: int) -> SessionState:
        return self.dispatch(SelectAnswer(option))

    def go_to(self, index: int) -> SessionState:
        return self.dispatch(GoTo(index))

    def next(self) -> SessionState:
        return self.dispatch(Next())

    def previous(self) -> SessionState:
        return self.dispatch(Previous())

    def finish(self) -> SessionState:
        return self.dispatch(Finish())

    def restart(self) -> SessionState:
        return self.dispatch(Restart())

    def tick(self, generation: Optional[int] = None) -> SessionState:
        return self.dispatch(Tick(generation))

    def close_feedback(self, generation: Optional[int] = None) -> SessionState:
        return self.dispatch(FeedbackElapsed(generation))

    # Derived values

    @property
    def score(self) -> Optional[Score]:
        """Final score, available once the attempt has finished."""
        attempt = self._state.attempt
        if attempt is None or not attempt.is_finished:
            return None
        return score_attempt(self._state.quiz, attempt.answers)

    def snapshot(self) -> SessionSnapshot:
        """Build a read-only view of the session for presentation."""
        state = self._state
        attempt = state.attempt
        quiz = state.quiz

        if attempt is None:
            return SessionSnapshot(status=state.status, error=state.error)

        return SessionSnapshot(
            status=attempt.status,
            current_index=attempt.current_index,
            answers=attempt.answers,
            remaining_seconds=attempt.remaining_seconds,
            feedback=attempt.feedback,
            score=self.score,
            progress_percent=(attempt.current_index + 1) / quiz.question_count * 100,
            answered_count=attempt.answered_count,
            time_percent=attempt.remaining_seconds / quiz.total_seconds * 100,
            elapsed_seconds=elapsed_seconds(quiz, attempt.remaining_seconds),
            low_time=attempt.is_running and attempt.remaining_seconds < self.settings.low_time_warning,
            quiz=quiz.metadata(),
        )
