"""
Unit tests for the quiz session state machine.
"""
import unittest
from unittest.mock import Mock

from timed_quiz.models import (
    Question, Quiz, QuizLoadError, ResultTier, SessionSettings, SessionStatus, UNANSWERED,
)
from timed_quiz.session import (
    QuizSession, SessionState, reduce,
    QuizLoaded, LoadFailed, SelectAnswer, FeedbackElapsed, GoTo, Next, Previous,
    Tick, Finish, Restart,
)
from tests.test_fixtures import TestFixtures


class TestModels(unittest.TestCase):
    """Test cases for quiz definition validation."""

    def test_question_options_are_frozen(self):
        question = Question("Q?", ["a", "b"], 0)
        self.assertEqual(question.options, ("a", "b"))

    def test_question_rejects_out_of_range_correct_index(self):
        with self.assertRaises(QuizLoadError):
            Question("Q?", ["a", "b"], 2)
        with self.assertRaises(QuizLoadError):
            Question("Q?", ["a", "b"], -1)

    def test_question_needs_two_options(self):
        with self.assertRaises(QuizLoadError):
            Question("Q?", ["a"], 0)

    def test_question_allows_duplicate_options(self):
        question = Question("Q?", ["same", "same"], 1)
        self.assertEqual(question.correct_index, 1)

    def test_quiz_requires_questions(self):
        with self.assertRaises(QuizLoadError):
            Quiz("empty", "Empty", 1, [])

    def test_quiz_requires_positive_duration(self):
        questions = TestFixtures.create_sample_questions()
        with self.assertRaises(QuizLoadError):
            Quiz("q", "Quiz", 0, questions)
        with self.assertRaises(QuizLoadError):
            Quiz("q", "Quiz", 1.5, questions)

    def test_quiz_metadata(self):
        quiz = TestFixtures.create_sample_quiz(duration_minutes=3)
        self.assertEqual(quiz.total_seconds, 180)
        metadata = quiz.metadata()
        self.assertEqual(metadata['id'], "test-quiz")
        self.assertEqual(metadata['question_count'], 3)
        self.assertEqual(metadata['grade'], "Grade 1")


class TestReducer(unittest.TestCase):
    """Test cases for the pure transition function."""

    def setUp(self):
        self.quiz = TestFixtures.create_sample_quiz()
        self.running = reduce(SessionState(), QuizLoaded(self.quiz))

    def test_loaded_quiz_starts_zeroed_attempt(self):
        attempt = self.running.attempt
        self.assertEqual(self.running.status, SessionStatus.RUNNING)
        self.assertEqual(attempt.answers, (UNANSWERED,) * 3)
        self.assertEqual(attempt.remaining_seconds, 60)
        self.assertEqual(attempt.current_index, 0)
        self.assertIsNone(attempt.feedback)

    def test_load_failure_is_terminal(self):
        failed = reduce(SessionState(), LoadFailed("Quiz 'x' not found"))
        self.assertEqual(failed.status, SessionStatus.ERROR)
        self.assertIsNone(failed.attempt)
        for event in (QuizLoaded(self.quiz), Tick(), Finish(), Restart(), SelectAnswer(0)):
            self.assertIs(reduce(failed, event), failed)

    def test_rejected_event_returns_same_state(self):
        self.assertIs(reduce(self.running, Previous()), self.running)
        self.assertIs(reduce(self.running, GoTo(10)), self.running)
        self.assertIs(reduce(self.running, object()), self.running)

    def test_select_answer_opens_feedback(self):
        state = reduce(self.running, SelectAnswer(1))
        self.assertEqual(state.attempt.answers[0], 1)
        self.assertTrue(state.attempt.feedback.correct)
        self.assertEqual(state.attempt.feedback.question_index, 0)
        self.assertEqual(state.attempt.current_index, 0)

    def test_wrong_answer_feedback(self):
        state = reduce(self.running, SelectAnswer(0))
        self.assertFalse(state.attempt.feedback.correct)

    def test_invalid_option_is_ignored(self):
        self.assertIs(reduce(self.running, SelectAnswer(4)), self.running)
        self.assertIs(reduce(self.running, SelectAnswer(-1)), self.running)
        self.assertIs(reduce(self.running, SelectAnswer(True)), self.running)

    def test_answer_rejected_while_feedback_open(self):
        state = reduce(self.running, SelectAnswer(1))
        self.assertIs(reduce(state, SelectAnswer(2)), state)

    def test_feedback_elapsed_advances(self):
        state = reduce(self.running, SelectAnswer(1))
        state = reduce(state, FeedbackElapsed())
        self.assertIsNone(state.attempt.feedback)
        self.assertEqual(state.attempt.current_index, 1)

    def test_feedback_elapsed_on_last_question_does_not_advance(self):
        state = reduce(self.running, GoTo(2))
        state = reduce(state, SelectAnswer(0))
        state = reduce(state, FeedbackElapsed())
        self.assertEqual(state.attempt.current_index, 2)
        self.assertEqual(state.status, SessionStatus.RUNNING)

    def test_navigation_blocked_during_feedback(self):
        state = reduce(self.running, SelectAnswer(1))
        self.assertIs(reduce(state, Next()), state)
        self.assertIs(reduce(state, GoTo(2)), state)

    def test_go_to_keeps_answers(self):
        state = reduce(self.running, SelectAnswer(1))
        state = reduce(state, FeedbackElapsed())
        state = reduce(state, GoTo(0))
        self.assertEqual(state.attempt.current_index, 0)
        self.assertEqual(state.attempt.answers, (1, UNANSWERED, UNANSWERED))

    def test_revisited_answer_can_be_changed(self):
        state = reduce(self.running, SelectAnswer(0))
        state = reduce(state, FeedbackElapsed())
        state = reduce(state, Previous())
        state = reduce(state, SelectAnswer(1))
        self.assertEqual(state.attempt.answers[0], 1)

    def test_tick_decrements(self):
        state = reduce(self.running, Tick())
        self.assertEqual(state.attempt.remaining_seconds, 59)
        self.assertEqual(state.status, SessionStatus.RUNNING)

    def test_tick_to_zero_finishes(self):
        state = self.running
        for _ in range(60):
            state = reduce(state, Tick())
        self.assertEqual(state.status, SessionStatus.FINISHED)
        self.assertEqual(state.attempt.remaining_seconds, 0)
        self.assertIs(reduce(state, Tick()), state)

    def test_stale_generation_tick_ignored(self):
        self.assertIs(reduce(self.running, Tick(generation=5)), self.running)
        self.assertIsNot(reduce(self.running, Tick(generation=0)), self.running)

    def test_finish_discards_feedback(self):
        state = reduce(self.running, SelectAnswer(1))
        state = reduce(state, Finish())
        self.assertEqual(state.status, SessionStatus.FINISHED)
        self.assertIsNone(state.attempt.feedback)

    def test_finished_attempt_rejects_mutation(self):
        finished = reduce(self.running, Finish())
        for event in (SelectAnswer(1), GoTo(1), Next(), Tick(), Finish(), FeedbackElapsed()):
            self.assertIs(reduce(finished, event), finished)

    def test_restart_only_from_finished(self):
        self.assertIs(reduce(self.running, Restart()), self.running)

    def test_restart_reuses_quiz(self):
        state = reduce(self.running, SelectAnswer(1))
        state = reduce(state, Finish())
        restarted = reduce(state, Restart())
        self.assertIs(restarted.quiz, self.quiz)
        self.assertEqual(restarted.status, SessionStatus.RUNNING)
        self.assertEqual(restarted.attempt.answers, (UNANSWERED,) * 3)
        self.assertEqual(restarted.attempt.remaining_seconds, 60)
        self.assertEqual(restarted.attempt.generation, 1)

    def test_old_generation_tick_ignored_after_restart(self):
        restarted = reduce(reduce(self.running, Finish()), Restart())
        self.assertIs(reduce(restarted, Tick(generation=0)), restarted)


class TestQuizSession(unittest.TestCase):
    """Test cases for the QuizSession dispatcher."""

    def setUp(self):
        self.quiz = TestFixtures.create_sample_quiz()
        self.session = QuizSession("12345", SessionSettings(low_time_warning=30))
        self.session.load(self.quiz)

    def test_new_session_is_loading(self):
        session = QuizSession()
        self.assertEqual(session.status, SessionStatus.LOADING)
        self.assertEqual(session.snapshot().status, SessionStatus.LOADING)

    def test_load_missing_quiz_raises(self):
        session = QuizSession()
        with self.assertRaises(QuizLoadError):
            session.load(None, reason="Quiz 'nope' not found")
        self.assertEqual(session.status, SessionStatus.ERROR)
        self.assertEqual(session.snapshot().error, "Quiz 'nope' not found")

    def test_one_correct_then_finish_scores_33(self):
        """Answer Q1 correctly, skip Q2 and Q3, then finish."""
        self.session.select_answer(1)
        self.session.close_feedback()
        self.session.finish()

        score = self.session.score
        self.assertEqual(score.correct_count, 1)
        self.assertEqual(score.total, 3)
        self.assertEqual(score.percentage, 33)
        self.assertEqual(score.tier, ResultTier.LOW)

    def test_correct_wrong_blank_scores_33(self):
        """Q1 right, Q2 wrong, Q3 left blank."""
        self.session.select_answer(1)
        self.session.close_feedback()
        self.assertEqual(self.session.attempt.current_index, 1)
        self.session.select_answer(0)
        self.session.close_feedback()
        self.assertEqual(self.session.attempt.current_index, 2)
        self.session.finish()

        self.assertEqual(self.session.attempt.answers, (1, 0, UNANSWERED))
        score = self.session.score
        self.assertEqual(score.correct_count, 1)
        self.assertEqual(score.total, 3)
        self.assertEqual(score.percentage, 33)

    def test_answer_after_timeout_is_ignored(self):
        answers = self.session.attempt.answers
        for _ in range(60):
            self.session.tick()

        self.session.select_answer(1)

        self.assertEqual(self.session.status, SessionStatus.FINISHED)
        self.assertEqual(self.session.attempt.answers, answers)
        self.assertIsNone(self.session.attempt.feedback)

    def test_timeout_without_answers_scores_zero(self):
        for _ in range(60):
            self.session.tick()

        self.assertEqual(self.session.status, SessionStatus.FINISHED)
        score = self.session.score
        self.assertEqual(score.correct_count, 0)
        self.assertEqual(score.percentage, 0)

    def test_score_only_available_when_finished(self):
        self.assertIsNone(self.session.score)
        self.session.finish()
        self.assertIsNotNone(self.session.score)

    def test_snapshot_progress_and_time(self):
        self.session.next()
        for _ in range(15):
            self.session.tick()

        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.current_index, 1)
        self.assertAlmostEqual(snapshot.progress_percent, 200 / 3)
        self.assertEqual(snapshot.remaining_seconds, 45)
        self.assertEqual(snapshot.elapsed_seconds, 15)
        self.assertEqual(snapshot.time_percent, 75.0)
        self.assertEqual(snapshot.quiz['title'], "Test Quiz")
        self.assertFalse(snapshot.low_time)

    def test_snapshot_low_time_flag(self):
        for _ in range(31):
            self.session.tick()
        self.assertTrue(self.session.snapshot().low_time)

    def test_finished_snapshot_is_not_low_time(self):
        for _ in range(60):
            self.session.tick()
        snapshot = self.session.snapshot()
        self.assertFalse(snapshot.low_time)
        self.assertIsNotNone(snapshot.score)

    def test_listener_notified_on_change_only(self):
        listener = Mock()
        self.session.add_listener(listener)

        self.session.previous()
        listener.assert_not_called()

        self.session.next()
        listener.assert_called_once()
        old, new, event = listener.call_args[0]
        self.assertEqual(old.attempt.current_index, 0)
        self.assertEqual(new.attempt.current_index, 1)
        self.assertIsInstance(event, Next)

    def test_generation_increments_on_restart(self):
        self.assertEqual(self.session.generation, 0)
        self.session.finish()
        self.session.restart()
        self.assertEqual(self.session.generation, 1)
        self.assertIs(self.session.quiz, self.quiz)


if __name__ == '__main__':
    unittest.main()
