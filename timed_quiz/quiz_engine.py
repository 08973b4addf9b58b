"""
Countdown scheduling for quiz sessions.
Runs the 1 Hz attempt countdown and the one-shot feedback window timer.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional

# Set up logger for timer operations
logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[bool]]
FeedbackCallback = Callable[[], Awaitable[None]]

# Maximum time to wait for a cancelled timer task to unwind
CANCEL_WAIT_SECONDS = 2.0


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_created(session_key: str, kind: str, interval: float) -> None:
        """Log timer creation with structured data."""
        logger.info(
            f"Timer lifecycle: CREATED - Session {session_key}, Kind {kind}, Interval {interval:.3f}s",
            extra={
                'event_type': 'timer_created',
                'session_key': session_key,
                'kind': kind,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_tick(session_key: str, tick_count: int) -> None:
        """Log tick events (throttled to avoid spam)."""
        if tick_count % 30 == 0:
            logger.debug(
                f"Timer lifecycle: TICK - Session {session_key}, Tick {tick_count}",
                extra={
                    'event_type': 'timer_tick',
                    'session_key': session_key,
                    'tick_count': tick_count,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(session_key: str, kind: str, completion_type: str) -> None:
        """Log timer completion (attempt ended, fired or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Session {session_key}, Kind {kind}, Type {completion_type}",
            extra={
                'event_type': 'timer_completed',
                'session_key': session_key,
                'kind': kind,
                'completion_type': completion_type,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(session_key: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Session {session_key}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'session_key': session_key,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_key: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_key}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_key': session_key,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(session_key: str, details: str) -> None:
        """Log race condition detection."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Session {session_key}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'session_key': session_key,
                'details': details,
                'timestamp': time.time()
            }
        )


class ScheduledTimer:
    """Shared task ownership and cancellation for session timers."""

    kind = "timer"

    def __init__(self, session_key: str, interval: float):
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False
        self._session_key = session_key
        self._interval = interval

    def cancel(self) -> None:
        """Cancel the timer. A timer cancelling itself from its own task just stops."""
        if self._is_cancelled:
            return
        self._is_cancelled = True

        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
            TimerLifecycleLogger.log_timer_state_transition(
                self._session_key, "running", "cancelled", "task cancelled"
            )
        else:
            TimerLifecycleLogger.log_timer_state_transition(
                self._session_key, "running", "cancelled", "no pending task"
            )

    async def wait_closed(self, timeout: float = CANCEL_WAIT_SECONDS) -> bool:
        """
        Wait for the timer task to finish unwinding.

        Returns:
            True if the task is done (or is the calling task), False on timeout
        """
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return True
        await asyncio.wait({task}, timeout=timeout)
        if not task.done():
            TimerLifecycleLogger.log_timer_error(
                self._session_key,
                "cancellation_timeout",
                f"{self.kind} task did not finish within {timeout}s",
                "wait_closed"
            )
            return False
        return True

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def interval(self) -> float:
        return self._interval


class QuizTimer(ScheduledTimer):
    """Repeating countdown tick for one attempt."""

    kind = "countdown"

    def __init__(self, session_key: str, interval: float = 1.0):
        super().__init__(session_key, interval)
        self._tick_count = 0

    def start(self, tick_callback: TickCallback) -> asyncio.Task:
        """Arm the countdown. Must be called from a running event loop."""
        self._task = asyncio.create_task(self.run(tick_callback))
        return self._task

    async def run(self, tick_callback: TickCallback) -> None:
        """
        Fire ``tick_callback`` every interval until it returns False or the timer is cancelled.

        Args:
            tick_callback: Coroutine function returning True while the attempt keeps running
        """
        try:
            while not self._is_cancelled:
                await asyncio.sleep(self._interval)
                if self._is_cancelled:
                    break
                self._tick_count += 1
                TimerLifecycleLogger.log_timer_tick(self._session_key, self._tick_count)
                if not await tick_callback():
                    TimerLifecycleLogger.log_timer_completion(self._session_key, self.kind, "attempt_ended")
                    return

            TimerLifecycleLogger.log_timer_completion(self._session_key, self.kind, "cancelled")

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._session_key, self.kind, "asyncio_cancelled")
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._session_key,
                "countdown_execution_error",
                str(e),
                "run"
            )
            raise

    @property
    def tick_count(self) -> int:
        return self._tick_count


class FeedbackTimer(ScheduledTimer):
    """One-shot timer closing a feedback window."""

    kind = "feedback"

    def start(self, callback: FeedbackCallback) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(callback))
        return self._task

    async def run(self, callback: FeedbackCallback) -> None:
        try:
            await asyncio.sleep(self._interval)
            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._session_key, self.kind, "cancelled")
                return
            await callback()
            TimerLifecycleLogger.log_timer_completion(self._session_key, self.kind, "fired")
        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._session_key, self.kind, "asyncio_cancelled")
            raise


class QuizEngine:
    """Owns the countdown and feedback timers of every active session."""

    def __init__(self):
        self._timers: Dict[str, QuizTimer] = {}  # Session key -> countdown
        self._feedback_timers: Dict[str, FeedbackTimer] = {}

    def _verify_timer_readiness(self, session_key: str) -> bool:
        """
        Verify no live countdown exists before arming a new one.

        Args:
            session_key: Session identifier

        Returns:
            True if ready to start a new timer, False if an active timer was found
        """
        timer = self._timers.get(session_key)
        if timer is None:
            return True

        if timer.is_active:
            TimerLifecycleLogger.log_race_condition_detected(
                session_key,
                "Active countdown exists during readiness check"
            )
            return False

        # Timer exists but is inactive, clean it up
        del self._timers[session_key]
        TimerLifecycleLogger.log_timer_state_transition(
            session_key,
            "inactive_exists",
            "cleaned",
            "found inactive timer during readiness check"
        )
        return True

    def _discard(self, registry: Dict[str, ScheduledTimer], session_key: str, timer: ScheduledTimer) -> None:
        if registry.get(session_key) is timer:
            del registry[session_key]

    async def start_countdown(
        self,
        session_key: str,
        tick_callback: TickCallback,
        interval: float = 1.0
    ) -> QuizTimer:
        """
        Arm the countdown for a session, stopping any previous one first.

        Args:
            session_key: Session identifier
            tick_callback: Called once per interval; returns False to stop
            interval: Seconds between ticks

        Returns:
            The armed timer
        """
        if not self._verify_timer_readiness(session_key):
            await self.cancel_countdown(session_key)

        timer = QuizTimer(session_key, interval)
        self._timers[session_key] = timer
        TimerLifecycleLogger.log_timer_created(session_key, timer.kind, interval)

        task = timer.start(tick_callback)
        task.add_done_callback(lambda _: self._discard(self._timers, session_key, timer))
        return timer

    async def cancel_countdown(self, session_key: str) -> bool:
        """
        Cancel the countdown for a session and wait for it to unwind.

        Returns:
            True if a countdown was cancelled, False if none existed
        """
        timer = self._timers.pop(session_key, None)
        if timer is None:
            logger.debug(f"No active countdown found for session {session_key}")
            return False

        timer.cancel()
        await timer.wait_closed()
        return True

    async def start_feedback_timer(
        self,
        session_key: str,
        delay: float,
        callback: FeedbackCallback
    ) -> FeedbackTimer:
        """
        Arm the one-shot feedback window timer for a session.

        Args:
            session_key: Session identifier
            delay: Seconds until the window closes
            callback: Called once when the window closes

        Returns:
            The armed timer
        """
        await self.cancel_feedback_timer(session_key)

        timer = FeedbackTimer(session_key, delay)
        self._feedback_timers[session_key] = timer
        TimerLifecycleLogger.log_timer_created(session_key, timer.kind, delay)

        task = timer.start(callback)
        task.add_done_callback(lambda _: self._discard(self._feedback_timers, session_key, timer))
        return timer

    async def cancel_feedback_timer(self, session_key: str) -> bool:
        timer = self._feedback_timers.pop(session_key, None)
        if timer is None:
            return False
        timer.cancel()
        await timer.wait_closed()
        return True

    async def cancel_timers(self, session_key: str) -> bool:
        """
        Cancel every timer owned by a session.

        Returns:
            True if any timer was cancelled
        """
        countdown_cancelled = await self.cancel_countdown(session_key)
        feedback_cancelled = await self.cancel_feedback_timer(session_key)
        return countdown_cancelled or feedback_cancelled

    async def shutdown(self) -> None:
        """Cancel all timers of all sessions."""
        keys = set(self._timers) | set(self._feedback_timers)
        for session_key in keys:
            await self.cancel_timers(session_key)
        logger.info(f"Quiz engine shut down, cancelled timers for {len(keys)} sessions")

    def has_active_countdown(self, session_key: str) -> bool:
        timer = self._timers.get(session_key)
        return timer is not None and timer.is_active

    def get_timer_status(self, session_key: str) -> Optional[dict]:
        """
        Get the status of the timers for a session.

        Returns:
            Dictionary with timer status or None if no timer exists
        """
        timer = self._timers.get(session_key)
        feedback_timer = self._feedback_timers.get(session_key)
        if timer is None and feedback_timer is None:
            return None
        return {
            'countdown_active': timer is not None and timer.is_active,
            'tick_count': timer.tick_count if timer else 0,
            'feedback_pending': feedback_timer is not None and feedback_timer.is_active,
        }

    @property
    def active_timer_count(self) -> int:
        return len(self._timers) + len(self._feedback_timers)
