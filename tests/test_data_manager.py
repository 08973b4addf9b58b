"""
Unit tests for the DataManager class.
"""
import unittest
import tempfile
import shutil
import json
from pathlib import Path

from timed_quiz.data_manager import DataManager, generate_slug
from timed_quiz.models import QuizLoadError
from tests.test_fixtures import TestFixtures


class TestDataManager(unittest.TestCase):
    """Test cases for DataManager class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.data_manager = DataManager(self.temp_dir)

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def test_load_quiz_files(self):
        """Valid files load, broken ones are recorded and skipped."""
        TestFixtures.create_temp_quiz_files(self.temp_dir)

        loaded = self.data_manager.load_quiz_files()

        self.assertEqual(set(loaded.keys()), {"capitals", "math"})
        self.assertIn("invalid", self.data_manager.invalid_quizzes)
        self.assertIn("broken", self.data_manager.invalid_quizzes)
        self.assertTrue(self.data_manager.has_load_errors())
        self.assertEqual(len(self.data_manager.get_available_quizzes()), 2)

    def test_parsed_quiz_fields(self):
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.data_manager.load_quiz_files()

        quiz = self.data_manager.get_quiz("capitals")
        self.assertEqual(quiz.title, "World Capitals")
        self.assertEqual(quiz.duration_minutes, 5)
        self.assertEqual(quiz.question_count, 2)
        self.assertEqual(quiz.questions[0].options, ("Seoul", "Tokyo", "Beijing"))
        self.assertEqual(quiz.questions[0].correct_index, 1)
        self.assertEqual(quiz.category, "Geography")
        self.assertEqual(quiz.slug, "world-capitals")

    def test_file_stem_used_as_default_id(self):
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.data_manager.load_quiz_files()
        self.assertEqual(self.data_manager.get_quiz("math").title, "Simple Math")

    def test_lookup_by_slug(self):
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.data_manager.load_quiz_files()

        self.assertEqual(self.data_manager.get_quiz("world-capitals").id, "capitals")
        self.assertEqual(self.data_manager.get_quiz("simple-math").id, "math")

    def test_missing_quiz_returns_none(self):
        self.data_manager.load_quiz_files()
        self.assertIsNone(self.data_manager.get_quiz("does-not-exist"))

    def test_malformed_quiz_raises_on_lookup(self):
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.data_manager.load_quiz_files()

        with self.assertRaises(QuizLoadError) as ctx:
            self.data_manager.get_quiz("broken")
        self.assertIn("malformed", str(ctx.exception))

    def test_malformed_quiz_found_by_title_slug(self):
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.data_manager.load_quiz_files()

        with self.assertRaises(QuizLoadError) as ctx:
            self.data_manager.get_quiz("out-of-range")
        self.assertIn("malformed", str(ctx.exception))

    def test_malformed_quiz_found_by_payload_id_and_slug(self):
        payload = {"id": "algebra-1", "slug": "algebra", "title": "Algebra", "time": 1, "questions": []}
        with open(Path(self.temp_dir) / "draft.json", 'w', encoding='utf-8') as f:
            json.dump(payload, f)

        self.data_manager.load_quiz_files()

        for key in ("draft", "algebra-1", "algebra"):
            with self.subTest(key=key):
                with self.assertRaises(QuizLoadError) as ctx:
                    self.data_manager.get_quiz(key)
                self.assertIn("'questions' array cannot be empty", str(ctx.exception))

    def test_valid_quiz_wins_over_malformed_alias(self):
        broken = {"id": "capitals", "title": "World Capitals", "time": 1, "questions": []}
        with open(Path(self.temp_dir) / "a_draft.json", 'w', encoding='utf-8') as f:
            json.dump(broken, f)
        with open(Path(self.temp_dir) / "capitals.json", 'w', encoding='utf-8') as f:
            json.dump(TestFixtures.create_valid_quiz_json(), f)

        self.data_manager.load_quiz_files()

        self.assertEqual(self.data_manager.get_quiz("capitals").title, "World Capitals")
        self.assertEqual(self.data_manager.get_quiz("world-capitals").id, "capitals")

    def test_empty_directory_creates_sample_quiz(self):
        loaded = self.data_manager.load_quiz_files()

        self.assertTrue(self.data_manager.sample_quiz_created)
        self.assertTrue((Path(self.temp_dir) / "sample_quiz.json").exists())
        self.assertIn("sample-quiz", loaded)
        self.assertEqual(loaded["sample-quiz"].question_count, 3)

    def test_missing_directory_is_created(self):
        nested = Path(self.temp_dir) / "nested" / "quizzes"
        data_manager = DataManager(str(nested))
        data_manager.load_quiz_files()
        self.assertTrue(nested.exists())

    def test_duplicate_ids_rejected(self):
        payload = TestFixtures.create_valid_quiz_json()
        for name in ("a.json", "b.json"):
            with open(Path(self.temp_dir) / name, 'w', encoding='utf-8') as f:
                json.dump(payload, f)

        self.data_manager.load_quiz_files()

        self.assertEqual(self.data_manager.get_available_quizzes(), ["capitals"])
        self.assertIn("b", self.data_manager.invalid_quizzes)

    def test_invalid_structures(self):
        """Every malformed payload is rejected by parse_quiz."""
        for data in TestFixtures.create_invalid_quiz_json_structures():
            with self.subTest(title=data.get("title")):
                with self.assertRaises(QuizLoadError):
                    self.data_manager.parse_quiz(data, default_id="bad")

    def test_structure_errors(self):
        self.assertEqual(self.data_manager.structure_errors(TestFixtures.create_valid_quiz_json()), [])
        self.assertIn("'questions' must be an array", self.data_manager.structure_errors({"title": "x", "time": 1}))
        self.assertEqual(self.data_manager.structure_errors([]), ["Quiz data must be a JSON object"])

    def test_list_quizzes(self):
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.data_manager.load_quiz_files()

        listing = {info['id']: info for info in self.data_manager.list_quizzes()}
        self.assertEqual(listing['capitals']['question_count'], 2)
        self.assertEqual(listing['math']['duration_minutes'], 2)

    def test_loading_summary(self):
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.data_manager.load_quiz_files()

        summary = self.data_manager.get_loading_summary()
        self.assertEqual(summary['total_quizzes'], 2)
        self.assertTrue(summary['has_errors'])
        self.assertEqual(summary['error_count'], 2)
        self.assertFalse(summary['sample_created'])
        self.assertEqual(sorted(summary['invalid_quizzes']), ["broken", "invalid"])

    def test_reload_clears_previous_state(self):
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.data_manager.load_quiz_files()
        (Path(self.temp_dir) / "invalid.json").unlink()
        (Path(self.temp_dir) / "broken.json").unlink()

        self.data_manager.load_quiz_files()

        self.assertFalse(self.data_manager.has_load_errors())
        self.assertEqual(self.data_manager.invalid_quizzes, {})


class TestGenerateSlug(unittest.TestCase):

    def test_basic_title(self):
        self.assertEqual(generate_slug("World Capitals"), "world-capitals")

    def test_punctuation_removed(self):
        self.assertEqual(generate_slug("Math: Part 1!"), "math-part-1")

    def test_whitespace_collapsed(self):
        self.assertEqual(generate_slug("  Lots   of  space "), "lots-of-space")

    def test_arabic_letters_kept(self):
        self.assertEqual(generate_slug("اختبار الرياضيات"), "اختبار-الرياضيات")


if __name__ == '__main__':
    unittest.main()
