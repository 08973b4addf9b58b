"""
Data manager for JSON quiz files.
Acts as the quiz store the session engine loads quizzes from.
"""
import json
import os
import re
import logging
from typing import Any, Dict, List, Optional
from pathlib import Path

from .models import Question, Quiz, QuizLoadError


def generate_slug(title: str) -> str:
    """Build a URL slug from a quiz title, keeping Arabic letters."""
    slug = title.lower()
    slug = re.sub(r'[^\w\s\u0600-\u06FF-]', '', slug)
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip().strip('-')


class DataManager:
    """Manages loading and validation of JSON quiz files."""

    # Prevent loading extremely large files
    MAX_FILE_SIZE = 10 * 1024 * 1024

    def __init__(self, quiz_directory: str = "./quizzes/"):
        """
        Initialize DataManager with quiz directory path.

        Args:
            quiz_directory: Path to directory containing JSON quiz files
        """
        self.quiz_directory = Path(quiz_directory)
        self.loaded_quizzes: Dict[str, Quiz] = {}  # Quiz id -> Quiz
        self._slug_index: Dict[str, str] = {}  # Slug -> quiz id
        self.invalid_quizzes: Dict[str, str] = {}  # File stem -> load error
        self._invalid_aliases: Dict[str, str] = {}  # Payload id or slug -> file stem
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []  # Track loading errors for user feedback
        self.sample_quiz_created = False

    def load_quiz_files(self) -> Dict[str, Quiz]:
        """
        Load all JSON files from the quiz directory.

        Returns:
            Dictionary mapping quiz ids to Quiz objects
        """
        self.loaded_quizzes.clear()
        self._slug_index.clear()
        self.invalid_quizzes.clear()
        self._invalid_aliases.clear()
        self.load_errors.clear()
        self.sample_quiz_created = False

        directory_result = self._ensure_quiz_directory()
        if not directory_result['success']:
            self.load_errors.append(directory_result['error'])
            return self.loaded_quizzes

        scan_result = self._scan_quiz_files()
        if not scan_result['success']:
            self.load_errors.append(scan_result['error'])
            return self.loaded_quizzes

        json_files = scan_result['files']

        # If no files found, create sample quiz and provide guidance
        if not json_files:
            self.logger.warning(f"No JSON files found in {self.quiz_directory}")
            self.load_errors.append(f"No quiz files found in {self.quiz_directory}")
            json_files = self._create_sample_quiz()

        successful_loads = 0
        for json_file in json_files:
            load_result = self._load_quiz_file_safely(json_file)
            if load_result['success']:
                successful_loads += 1
            else:
                self.invalid_quizzes[json_file.stem] = load_result['error']
                for alias in load_result.get('aliases', []):
                    self._invalid_aliases.setdefault(alias, json_file.stem)
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        self.logger.info(f"Successfully loaded {successful_loads} quiz files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_quizzes

    def _load_single_file(self, file_path: Path) -> Any:
        """
        Load and parse a single JSON file.

        Raises:
            QuizLoadError: If the file cannot be read or is not valid JSON
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise QuizLoadError(f"Invalid JSON: {e}") from e
        except OSError as e:
            raise QuizLoadError(f"Failed to read quiz file: {e}") from e

    def structure_errors(self, data: Any) -> List[str]:
        """
        List the structural problems of a quiz payload.

        Expected structure:
        {
            "id": str,            # Optional, defaults to the file name
            "slug": str,          # Optional, derived from the title
            "title": str,
            "time": int,          # Minutes, >= 1
            "questions": [
                {
                    "question": str,
                    "options": [str, ...],
                    "correct": int
                }
            ]
        }
        """
        if not isinstance(data, dict):
            return ["Quiz data must be a JSON object"]

        errors = []
        if not isinstance(data.get("title"), str) or not data.get("title", "").strip():
            errors.append("Quiz must have a non-empty 'title'")

        duration = data.get("time")
        if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
            errors.append("'time' must be a whole number of minutes >= 1")

        questions = data.get("questions")
        if not isinstance(questions, list):
            errors.append("'questions' must be an array")
            return errors
        if not questions:
            errors.append("'questions' array cannot be empty")

        for i, question_data in enumerate(questions):
            if not isinstance(question_data, dict):
                errors.append(f"Question {i} must be an object")
                continue
            for key in ("question", "options", "correct"):
                if key not in question_data:
                    errors.append(f"Question {i} missing '{key}' field")
            if "question" in question_data and not isinstance(question_data["question"], str):
                errors.append(f"Question {i} 'question' field must be a string")
            if "options" in question_data and not isinstance(question_data["options"], list):
                errors.append(f"Question {i} 'options' field must be an array")
            if "correct" in question_data and (
                isinstance(question_data["correct"], bool)
                or not isinstance(question_data["correct"], int)
            ):
                errors.append(f"Question {i} 'correct' field must be an integer")

        return errors

    def parse_quiz(self, data: Any, default_id: str = "") -> Quiz:
        """
        Parse a quiz payload into an immutable Quiz.

        Args:
            data: Parsed JSON payload
            default_id: Id used when the payload has none

        Returns:
            Quiz object

        Raises:
            QuizLoadError: If the payload is malformed
        """
        errors = self.structure_errors(data)
        if errors:
            raise QuizLoadError("; ".join(errors))

        questions = [
            Question(
                text=question_data["question"],
                options=question_data["options"],
                correct_index=question_data["correct"]
            )
            for question_data in data["questions"]
        ]

        quiz_id = str(data.get("id") or default_id)
        if not quiz_id:
            raise QuizLoadError("Quiz has no id")

        return Quiz(
            id=quiz_id,
            title=data["title"],
            duration_minutes=data["time"],
            questions=questions,
            slug=data.get("slug") or generate_slug(data["title"]),
            description=data.get("description"),
            grade=data.get("grade", ""),
            category=data.get("category", ""),
        )

    def register_quiz(self, quiz: Quiz) -> None:
        """Add a quiz to the in-memory index."""
        self.loaded_quizzes[quiz.id] = quiz
        if quiz.slug:
            self._slug_index[quiz.slug] = quiz.id

    def get_available_quizzes(self) -> List[str]:
        """
        Get list of available quiz ids.
        """
        return list(self.loaded_quizzes.keys())

    def list_quizzes(self) -> List[Dict[str, Any]]:
        """Metadata of every loaded quiz, for listings."""
        return [quiz.metadata() for quiz in self.loaded_quizzes.values()]

    def get_quiz(self, key: str) -> Optional[Quiz]:
        """
        Retrieve a quiz by slug, falling back to its id.

        Args:
            key: Quiz slug or id

        Returns:
            Quiz, or None if no quiz matches

        Raises:
            QuizLoadError: If the matching quiz file is malformed
        """
        quiz_id = self._slug_index.get(key, key)
        quiz = self.loaded_quizzes.get(quiz_id)
        if quiz is not None:
            return quiz

        stem = self._invalid_aliases.get(key, key)
        if stem in self.invalid_quizzes:
            raise QuizLoadError(f"Quiz '{key}' is malformed: {self.invalid_quizzes[stem]}")
        return None

    def _ensure_quiz_directory(self) -> Dict[str, Any]:
        """
        Ensure quiz directory exists.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not self.quiz_directory.exists():
                self.quiz_directory.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created quiz directory: {self.quiz_directory}")

            if not os.access(self.quiz_directory, os.R_OK):
                return {
                    'success': False,
                    'error': f"Permission denied: Cannot read from {self.quiz_directory}"
                }

            return {'success': True}

        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot access {self.quiz_directory}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error accessing {self.quiz_directory}: {e}"
            }

    def _scan_quiz_files(self) -> Dict[str, Any]:
        """
        Scan quiz directory for JSON files.

        Returns:
            Dictionary with success status, files list, and error message if applicable
        """
        try:
            json_files = sorted(self.quiz_directory.glob("*.json"))
            return {
                'success': True,
                'files': json_files
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error scanning {self.quiz_directory}: {e}",
                'files': []
            }

    def _load_quiz_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single quiz file, recording rather than raising failures.

        Returns:
            Dictionary with success status and error message if applicable
        """
        data = None
        try:
            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). "
                             f"Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                }

            data = self._load_single_file(json_file)
            quiz = self.parse_quiz(data, default_id=json_file.stem)

            if quiz.id in self.loaded_quizzes:
                return {
                    'success': False,
                    'error': f"Duplicate quiz id '{quiz.id}'"
                }

            self.register_quiz(quiz)
            self.logger.info(f"Loaded quiz '{quiz.id}' with {quiz.question_count} questions")
            return {'success': True}

        except QuizLoadError as e:
            self.logger.error(f"Invalid quiz file {json_file}: {e}")
            return {
                'success': False,
                'error': str(e),
                'aliases': self._payload_aliases(data)
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error: {e}"
            }

    @staticmethod
    def _payload_aliases(data: Any) -> List[str]:
        """Keys a malformed payload would have been looked up by, where readable."""
        if not isinstance(data, dict):
            return []

        aliases = []
        for field in ("id", "slug"):
            value = data.get(field)
            if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
                aliases.append(str(value))
        title = data.get("title")
        if isinstance(title, str) and generate_slug(title):
            aliases.append(generate_slug(title))
        return aliases

    def _create_sample_quiz(self) -> List[Path]:
        """
        Write a sample quiz file when the quiz directory is empty.

        Returns:
            List with the sample file path, or empty if it could not be written
        """
        sample_quiz_data = {
            "id": "sample-quiz",
            "title": "Sample Quiz",
            "description": "A short quiz showing the file format",
            "grade": "General",
            "category": "Demo",
            "time": 1,
            "questions": [
                {
                    "question": "What is the capital of France?",
                    "options": ["London", "Paris", "Berlin", "Madrid"],
                    "correct": 1
                },
                {
                    "question": "What is 2 + 2?",
                    "options": ["3", "4", "5"],
                    "correct": 1
                },
                {
                    "question": "Which language is this quiz engine written in?",
                    "options": ["Python", "Ruby"],
                    "correct": 0
                }
            ]
        }

        sample_file_path = self.quiz_directory / "sample_quiz.json"
        try:
            if not sample_file_path.exists():
                with open(sample_file_path, 'w', encoding='utf-8') as f:
                    json.dump(sample_quiz_data, f, indent=2, ensure_ascii=False)
                self.logger.info(f"Created sample quiz file: {sample_file_path}")
            self.sample_quiz_created = True
            return [sample_file_path]
        except OSError as e:
            self.logger.error(f"Failed to create sample quiz: {e}")
            self.load_errors.append(f"Failed to create sample quiz: {e}")
            return []

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the last loading operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_quizzes': len(self.loaded_quizzes),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'invalid_quizzes': list(self.invalid_quizzes.keys()),
            'sample_created': self.sample_quiz_created,
            'quiz_directory': str(self.quiz_directory),
            'available_quizzes': self.get_available_quizzes()
        }
