"""
Core data models for the timed quiz session engine.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Any, Dict


# Sentinel stored in an attempt's answer slots for unanswered questions
UNANSWERED = -1


class QuizLoadError(Exception):
    """Raised when a quiz is missing or its payload is malformed."""
    pass


class SessionStatus(Enum):
    """Enumeration of possible quiz session states."""
    LOADING = "loading"
    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"


class ResultTier(Enum):
    """User-facing result bands for a finished attempt."""
    TOP = "Excellent"
    MID = "Good"
    LOW = "Needs improvement"


@dataclass(frozen=True)
class Question:
    """Represents a single multiple-choice question."""
    text: str
    options: Tuple[str, ...]
    correct_index: int

    def __post_init__(self):
        if not isinstance(self.text, str) or not self.text.strip():
            raise QuizLoadError("Question text must be a non-empty string")
        # Lists from JSON payloads are frozen into tuples
        object.__setattr__(self, 'options', tuple(self.options))
        if len(self.options) < 2:
            raise QuizLoadError(f"Question '{self.text}' needs at least 2 options")
        if not all(isinstance(option, str) for option in self.options):
            raise QuizLoadError(f"Question '{self.text}' options must be strings")
        if isinstance(self.correct_index, bool) or not isinstance(self.correct_index, int):
            raise QuizLoadError(f"Question '{self.text}' correct index must be an integer")
        if not 0 <= self.correct_index < len(self.options):
            raise QuizLoadError(
                f"Question '{self.text}' correct index {self.correct_index} "
                f"is out of range for {len(self.options)} options"
            )


@dataclass(frozen=True)
class Quiz:
    """An immutable quiz definition as returned by the quiz store."""
    id: str
    title: str
    duration_minutes: int
    questions: Tuple[Question, ...]
    slug: str = ""
    description: Optional[str] = None
    grade: str = ""
    category: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'questions', tuple(self.questions))
        if not self.questions:
            raise QuizLoadError(f"Quiz '{self.id}' has no questions")
        if (isinstance(self.duration_minutes, bool)
                or not isinstance(self.duration_minutes, int)
                or self.duration_minutes < 1):
            raise QuizLoadError(
                f"Quiz '{self.id}' duration must be a whole number of minutes >= 1, "
                f"got {self.duration_minutes!r}"
            )

    @property
    def total_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def last_index(self) -> int:
        return len(self.questions) - 1

    def metadata(self) -> Dict[str, Any]:
        """Opaque fields passed through to presentation unchanged."""
        return {
            'id': self.id,
            'slug': self.slug,
            'title': self.title,
            'description': self.description,
            'grade': self.grade,
            'category': self.category,
            'duration_minutes': self.duration_minutes,
            'question_count': self.question_count,
        }


@dataclass(frozen=True)
class Feedback:
    """Transient correctness feedback shown after an answer is selected."""
    correct: bool
    question_index: int


@dataclass(frozen=True)
class Attempt:
    """One run through a quiz. Replaced wholesale on every transition."""
    answers: Tuple[int, ...]
    remaining_seconds: int
    current_index: int = 0
    status: SessionStatus = SessionStatus.RUNNING
    feedback: Optional[Feedback] = None
    generation: int = 0

    @classmethod
    def fresh(cls, quiz: Quiz, generation: int = 0) -> "Attempt":
        """Create a zeroed attempt for the given quiz."""
        return cls(
            answers=(UNANSWERED,) * quiz.question_count,
            remaining_seconds=quiz.total_seconds,
            current_index=0,
            status=SessionStatus.RUNNING,
            feedback=None,
            generation=generation,
        )

    @property
    def is_running(self) -> bool:
        return self.status == SessionStatus.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.status == SessionStatus.FINISHED

    @property
    def feedback_open(self) -> bool:
        return self.feedback is not None

    @property
    def answered_count(self) -> int:
        return sum(1 for answer in self.answers if answer != UNANSWERED)


@dataclass(frozen=True)
class Score:
    """Final score of an attempt."""
    correct_count: int
    total: int
    percentage: int
    tier: ResultTier


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session handed to presentation."""
    status: SessionStatus
    current_index: int = 0
    answers: Tuple[int, ...] = field(default_factory=tuple)
    remaining_seconds: int = 0
    feedback: Optional[Feedback] = None
    score: Optional[Score] = None
    progress_percent: float = 0.0
    answered_count: int = 0
    time_percent: float = 100.0
    elapsed_seconds: int = 0
    low_time: bool = False
    quiz: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class SessionSettings:
    """Configuration settings applied to new quiz sessions."""
    feedback_duration: float = 2.0
    low_time_warning: int = 300
    tick_interval: float = 1.0
