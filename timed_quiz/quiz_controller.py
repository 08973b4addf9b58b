"""
Quiz session controller.
Manages one quiz attempt per Discord channel, wiring the quiz store,
the session state machine and the countdown scheduler together.
"""
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .config_manager import ConfigManager
from .data_manager import DataManager
from .evaluator import format_time
from .models import QuizLoadError, Score, SessionSnapshot, SessionStatus
from .quiz_engine import QuizEngine
from .session import (
    QuizSession, FeedbackElapsed, Finish, GoTo, Next, Previous, Restart,
    SelectAnswer, Tick,
)

SnapshotCallback = Callable[[int, SessionSnapshot], Awaitable[None]]


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionConflictError(QuizControllerError):
    """Raised when attempting to start a quiz while another is running in the channel."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class QuizController:
    """
    Orchestrates quiz sessions across Discord channels.

    Every user action and timer tick goes through ``_apply``, which
    dispatches the event to the channel's session and then reacts to the
    transition: arming the feedback timer when a window opens, announcing the
    question shown once it closes, and stopping all timers once the attempt
    leaves the running state.
    """

    def __init__(
        self,
        data_manager: DataManager,
        config_manager: ConfigManager,
        quiz_engine: Optional[QuizEngine] = None,
        on_finished: Optional[SnapshotCallback] = None,
        on_feedback_closed: Optional[SnapshotCallback] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            data_manager: Quiz store used to load quizzes
            config_manager: Source of session settings
            quiz_engine: Timer scheduler, a new one is created if None
            on_finished: Awaited with (channel_id, snapshot) whenever an attempt finishes
            on_feedback_closed: Awaited with (channel_id, snapshot) when a feedback
                window closes on a running attempt
        """
        self.logger = logging.getLogger(__name__)
        self.data_manager = data_manager
        self.config_manager = config_manager
        self.quiz_engine = quiz_engine or QuizEngine()
        self.on_finished = on_finished
        self.on_feedback_closed = on_feedback_closed

        # Sessions mapped by channel ID
        self._sessions: Dict[int, QuizSession] = {}

        self.logger.info("QuizController initialized")

    # Session lifecycle

    async def start_session(self, channel_id: int, quiz_key: str) -> QuizSession:
        """
        Load a quiz and start a new attempt in a channel.

        Args:
            channel_id: Discord channel identifier
            quiz_key: Quiz slug or id

        Returns:
            The running session

        Raises:
            SessionConflictError: If a quiz is already running in the channel
            QuizLoadError: If the quiz is missing or malformed
        """
        if self.has_running_session(channel_id):
            raise SessionConflictError(f"Quiz already running in channel {channel_id}")

        # A finished attempt left in the channel is discarded
        if channel_id in self._sessions:
            await self.stop_session(channel_id)

        session = QuizSession(str(channel_id), self.config_manager.get_session_settings())
        self._sessions[channel_id] = session

        try:
            quiz = self.data_manager.get_quiz(quiz_key)
            session.load(quiz, reason=f"Quiz '{quiz_key}' not found")
        except QuizLoadError as e:
            if session.status == SessionStatus.LOADING:
                session.fail(str(e))
            del self._sessions[channel_id]
            self.logger.error(
                f"Failed to load quiz '{quiz_key}' for channel {channel_id}: {e}",
                extra={
                    'event_type': 'session_load_failed',
                    'channel_id': channel_id,
                    'quiz_key': quiz_key,
                    'timestamp': time.time()
                }
            )
            raise

        await self._arm_countdown(channel_id, session)

        self.logger.info(
            f"Started quiz session for channel {channel_id}: quiz='{session.quiz.id}', "
            f"questions={session.quiz.question_count}, time={session.quiz.duration_minutes}m",
            extra={
                'event_type': 'session_started',
                'channel_id': channel_id,
                'quiz_id': session.quiz.id,
                'timestamp': time.time()
            }
        )
        return session

    async def stop_session(self, channel_id: int) -> bool:
        """
        Tear down a channel's session, stopping its timers.

        Args:
            channel_id: Discord channel identifier

        Returns:
            True if a session was stopped, False if none existed
        """
        session = self._sessions.pop(channel_id, None)
        if session is None:
            self.logger.warning(
                f"Cannot stop session for channel {channel_id}: no session exists",
                extra={
                    'event_type': 'session_stop_no_session',
                    'channel_id': channel_id,
                    'timestamp': time.time()
                }
            )
            return False

        timers_cancelled = await self.quiz_engine.cancel_timers(str(channel_id))

        self.logger.info(
            f"Stopped and cleaned up session for channel {channel_id}, timers cancelled: {timers_cancelled}",
            extra={
                'event_type': 'session_stopped',
                'channel_id': channel_id,
                'timer_cancelled': timers_cancelled,
                'timestamp': time.time()
            }
        )
        return True

    async def shutdown(self) -> None:
        """Stop every session and timer."""
        active_sessions = self.get_all_active_sessions()
        if active_sessions:
            self.logger.info(
                f"Shutting down {len(active_sessions)} quiz sessions: {list(active_sessions)}",
                extra={
                    'event_type': 'controller_shutdown',
                    'sessions': active_sessions,
                    'timestamp': time.time()
                }
            )
        for channel_id in active_sessions:
            await self.stop_session(channel_id)
        await self.quiz_engine.shutdown()

    # Presentation callbacks

    async def select_answer(self, channel_id: int, option: int) -> SessionSnapshot:
        return await self._apply(channel_id, self._require_session(channel_id), SelectAnswer(option))

    async def go_to(self, channel_id: int, index: int) -> SessionSnapshot:
        return await self._apply(channel_id, self._require_session(channel_id), GoTo(index))

    async def next_question(self, channel_id: int) -> SessionSnapshot:
        return await self._apply(channel_id, self._require_session(channel_id), Next())

    async def previous_question(self, channel_id: int) -> SessionSnapshot:
        return await self._apply(channel_id, self._require_session(channel_id), Previous())

    async def finish(self, channel_id: int) -> SessionSnapshot:
        return await self._apply(channel_id, self._require_session(channel_id), Finish())

    async def restart(self, channel_id: int) -> SessionSnapshot:
        """
        Restart a finished attempt over the already loaded quiz.

        The previous countdown is fully stopped before the new one is armed.
        """
        session = self._require_session(channel_id)
        if session.status != SessionStatus.FINISHED:
            return session.snapshot()

        await self.quiz_engine.cancel_timers(str(channel_id))
        snapshot = await self._apply(channel_id, session, Restart())
        if session.status == SessionStatus.RUNNING:
            await self._arm_countdown(channel_id, session)
            self.logger.info(
                f"Restarted quiz '{session.quiz.id}' in channel {channel_id}",
                extra={
                    'event_type': 'session_restarted',
                    'channel_id': channel_id,
                    'generation': session.generation,
                    'timestamp': time.time()
                }
            )
        return snapshot

    # Event plumbing

    async def _apply(self, channel_id: int, session: QuizSession, event) -> SessionSnapshot:
        """Dispatch an event and react to the resulting transition."""
        before = session.state
        after = session.dispatch(event)

        if after is not before:
            if before.status == SessionStatus.RUNNING and after.status != SessionStatus.RUNNING:
                await self._on_attempt_ended(channel_id, session)
            elif after.attempt.feedback is not None and before.attempt.feedback is None:
                await self._arm_feedback_timer(channel_id, session)
            elif before.attempt.feedback is not None and after.attempt.feedback is None:
                await self._notify(self.on_feedback_closed, channel_id, session.snapshot())

        return session.snapshot()

    async def _notify(self, callback: Optional[SnapshotCallback], channel_id: int,
                      snapshot: SessionSnapshot) -> None:
        if callback is None:
            return
        try:
            await callback(channel_id, snapshot)
        except Exception as e:
            # The transition has already been applied at this point
            self.logger.error(f"Session callback failed for channel {channel_id}: {e}", exc_info=True)

    async def _arm_countdown(self, channel_id: int, session: QuizSession) -> None:
        generation = session.generation

        async def on_tick() -> bool:
            if self._sessions.get(channel_id) is not session:
                return False
            await self._apply(channel_id, session, Tick(generation))
            return session.status == SessionStatus.RUNNING and session.generation == generation

        await self.quiz_engine.start_countdown(
            str(channel_id), on_tick, interval=session.settings.tick_interval
        )

    async def _arm_feedback_timer(self, channel_id: int, session: QuizSession) -> None:
        generation = session.generation

        async def on_feedback_elapsed() -> None:
            if self._sessions.get(channel_id) is session:
                await self._apply(channel_id, session, FeedbackElapsed(generation))

        await self.quiz_engine.start_feedback_timer(
            str(channel_id), session.settings.feedback_duration, on_feedback_elapsed
        )

    async def _on_attempt_ended(self, channel_id: int, session: QuizSession) -> None:
        await self.quiz_engine.cancel_timers(str(channel_id))

        snapshot = session.snapshot()
        score = snapshot.score
        self.logger.info(
            f"Quiz finished in channel {channel_id}: {score.correct_count}/{score.total} "
            f"({score.percentage}%), time taken {format_time(snapshot.elapsed_seconds)}",
            extra={
                'event_type': 'session_finished',
                'channel_id': channel_id,
                'correct_count': score.correct_count,
                'total': score.total,
                'percentage': score.percentage,
                'timed_out': snapshot.remaining_seconds == 0,
                'timestamp': time.time()
            }
        )

        await self._notify(self.on_finished, channel_id, snapshot)

    # Queries

    def _require_session(self, channel_id: int) -> QuizSession:
        session = self._sessions.get(channel_id)
        if session is None:
            raise SessionNotFoundError(f"No quiz session in channel {channel_id}")
        return session

    def get_session(self, channel_id: int) -> Optional[QuizSession]:
        return self._sessions.get(channel_id)

    def has_running_session(self, channel_id: int) -> bool:
        session = self._sessions.get(channel_id)
        return session is not None and session.status == SessionStatus.RUNNING

    def get_session_state(self, channel_id: int) -> Optional[SessionStatus]:
        session = self._sessions.get(channel_id)
        return session.status if session else None

    def get_snapshot(self, channel_id: int) -> Optional[SessionSnapshot]:
        session = self._sessions.get(channel_id)
        return session.snapshot() if session else None

    def get_score(self, channel_id: int) -> Optional[Score]:
        """Final score of the channel's attempt, None until it has finished."""
        session = self._sessions.get(channel_id)
        return session.score if session else None

    def get_session_progress(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """
        Get progress information for a session.

        Args:
            channel_id: Discord channel identifier

        Returns:
            Dictionary with progress info, None if no session
        """
        session = self._sessions.get(channel_id)
        if session is None or session.quiz is None:
            return None

        snapshot = session.snapshot()
        return {
            'quiz_id': session.quiz.id,
            'quiz_title': session.quiz.title,
            'status': snapshot.status.value,
            'current_question': snapshot.current_index + 1,
            'total_questions': session.quiz.question_count,
            'answered': snapshot.answered_count,
            'remaining_seconds': snapshot.remaining_seconds,
            'remaining': format_time(snapshot.remaining_seconds),
            'progress_percent': round(snapshot.progress_percent),
            'low_time': snapshot.low_time,
            'feedback_open': snapshot.feedback is not None,
        }

    def get_session_status_summary(self, channel_id: int) -> str:
        """
        One-line status summary for a channel.
        """
        progress = self.get_session_progress(channel_id)
        if progress is None:
            return "No quiz session in this channel"

        return (
            f"Quiz: {progress['quiz_title']} | Status: {progress['status'].title()} | "
            f"Question {progress['current_question']}/{progress['total_questions']} | "
            f"Answered: {progress['answered']} | Time left: {progress['remaining']}"
        )

    def get_all_active_sessions(self) -> Dict[int, Dict[str, Any]]:
        return {
            channel_id: self.get_session_progress(channel_id)
            for channel_id in self._sessions
        }

