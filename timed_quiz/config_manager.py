"""
Configuration manager for quiz session settings and parameters.
"""
import logging
import os
from typing import Any, Dict, List, Optional
from pathlib import Path

from .models import SessionSettings


class ConfigManager:
    """Manages bot configuration settings and session parameters."""

    # Default configuration values
    DEFAULT_FEEDBACK_DURATION = 2.0
    DEFAULT_LOW_TIME_WARNING = 300  # Timer turns red under five minutes
    DEFAULT_QUIZ_DIRECTORY = "./quizzes/"

    # Validation limits
    MIN_FEEDBACK_DURATION = 1.0
    MAX_FEEDBACK_DURATION = 10.0
    MIN_LOW_TIME_WARNING = 0
    MAX_LOW_TIME_WARNING = 3600

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._global_settings = SessionSettings(
            feedback_duration=self.DEFAULT_FEEDBACK_DURATION,
            low_time_warning=self.DEFAULT_LOW_TIME_WARNING
        )
        self._quiz_directory = self.DEFAULT_QUIZ_DIRECTORY

    def get_session_settings(self) -> SessionSettings:
        """
        Get current session settings.

        Returns:
            A copy of the current SessionSettings
        """
        return SessionSettings(
            feedback_duration=self._global_settings.feedback_duration,
            low_time_warning=self._global_settings.low_time_warning,
            tick_interval=self._global_settings.tick_interval
        )

    def apply_config(self, config: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Apply the 'quiz' section of a loaded config.json.

        Args:
            config: Full configuration dictionary

        Returns:
            List of setter results that failed
        """
        # Values missing from the section fall back to defaults
        self.reset_to_defaults()
        quiz_config = config.get('quiz', {})
        results = []

        if 'quiz_directory' in quiz_config:
            results.append(self.set_quiz_directory(quiz_config['quiz_directory']))
        if 'feedback_duration' in quiz_config:
            results.append(self.set_feedback_duration(quiz_config['feedback_duration']))
        if 'low_time_warning' in quiz_config:
            results.append(self.set_low_time_warning(quiz_config['low_time_warning']))

        failures = [result for result in results if not result['success']]
        for failure in failures:
            self.logger.warning(f"Ignoring invalid configuration value: {failure['error']}")
        return failures

    def set_feedback_duration(self, duration: float) -> Dict[str, Any]:
        """
        Set how long answer feedback stays open, in seconds.

        Args:
            duration: Feedback window length in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            error_msg = f"Feedback duration must be a number, got {type(duration).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(duration).__name__}"
            }

        if duration < self.MIN_FEEDBACK_DURATION:
            error_msg = f"Feedback duration must be at least {self.MIN_FEEDBACK_DURATION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Feedback too short: Minimum is {self.MIN_FEEDBACK_DURATION} seconds"
            }

        if duration > self.MAX_FEEDBACK_DURATION:
            error_msg = f"Feedback duration cannot exceed {self.MAX_FEEDBACK_DURATION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Feedback too long: Maximum is {self.MAX_FEEDBACK_DURATION} seconds"
            }

        self._global_settings.feedback_duration = float(duration)
        self.logger.info(f"Feedback duration set to {duration} seconds")
        return {
            'success': True,
            'message': f"Feedback duration set to {duration} seconds",
            'user_message': f"✅ Feedback shown for {duration} seconds"
        }

    def get_feedback_duration(self) -> float:
        return self._global_settings.feedback_duration

    def set_low_time_warning(self, seconds: int) -> Dict[str, Any]:
        """
        Set the remaining-time threshold under which the timer is flagged as low.

        Args:
            seconds: Threshold in seconds, 0 disables the warning

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(seconds, bool) or not isinstance(seconds, int):
            error_msg = f"Low time warning must be an integer, got {type(seconds).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            }

        if not self.MIN_LOW_TIME_WARNING <= seconds <= self.MAX_LOW_TIME_WARNING:
            error_msg = (
                f"Low time warning must be between {self.MIN_LOW_TIME_WARNING} "
                f"and {self.MAX_LOW_TIME_WARNING} seconds"
            )
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {error_msg}"
            }

        self._global_settings.low_time_warning = seconds
        self.logger.info(f"Low time warning set to {seconds} seconds")
        return {
            'success': True,
            'message': f"Low time warning set to {seconds} seconds",
            'user_message': f"✅ Timer warns when {seconds} seconds remain"
        }

    def get_low_time_warning(self) -> int:
        return self._global_settings.low_time_warning

    def set_quiz_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory path for quiz files with validation.

        Args:
            directory: Path to quiz files directory

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str):
            error_msg = f"Quiz directory must be a string, got {type(directory).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a path string, got {type(directory).__name__}"
            }

        if not directory.strip():
            error_msg = "Quiz directory cannot be empty"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Directory path cannot be empty"
            }

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid directory path format: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid path format: {directory}"
            }

        # Refuse system directories
        system_dirs = ['/bin', '/usr', '/etc', '/sys', '/proc', 'C:\\Windows', 'C:\\Program Files']
        if any(normalized_path.startswith(sys_dir) for sys_dir in system_dirs):
            error_msg = f"Cannot use system directory: {normalized_path}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Cannot use system directory: {directory}"
            }

        self._quiz_directory = normalized_path
        self.logger.info(f"Quiz directory set to {normalized_path}")
        return {
            'success': True,
            'message': f"Quiz directory set to {normalized_path}",
            'user_message': f"✅ Quiz directory set to {normalized_path}"
        }

    def get_quiz_directory(self) -> str:
        return self._quiz_directory

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._global_settings = SessionSettings(
            feedback_duration=self.DEFAULT_FEEDBACK_DURATION,
            low_time_warning=self.DEFAULT_LOW_TIME_WARNING
        )
        self._quiz_directory = self.DEFAULT_QUIZ_DIRECTORY
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        feedback_duration = self._global_settings.feedback_duration
        if (not isinstance(feedback_duration, (int, float)) or
                not self.MIN_FEEDBACK_DURATION <= feedback_duration <= self.MAX_FEEDBACK_DURATION):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid feedback duration: {feedback_duration}")

        low_time_warning = self._global_settings.low_time_warning
        if (not isinstance(low_time_warning, int) or
                not self.MIN_LOW_TIME_WARNING <= low_time_warning <= self.MAX_LOW_TIME_WARNING):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid low time warning: {low_time_warning}")

        if not isinstance(self._quiz_directory, str) or not self._quiz_directory.strip():
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid quiz directory: {self._quiz_directory}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        return (
            f"Session Settings:\n"
            f"• Feedback: {self.get_feedback_duration():g} seconds\n"
            f"• Low time warning: {self.get_low_time_warning()} seconds\n"
            f"• Quiz Directory: {self.get_quiz_directory()}"
        )

    def get_configuration_health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the configuration.

        Returns:
            Dictionary with health status and recommendations
        """
        health_check = {
            'healthy': True,
            'warnings': [],
            'errors': [],
            'recommendations': []
        }

        validation_result = self.validate_settings()
        if not validation_result['valid']:
            health_check['healthy'] = False
            health_check['errors'].extend(f"❌ {issue}" for issue in validation_result['issues'])

        quiz_directory = self.get_quiz_directory()
        quiz_dir = Path(quiz_directory)
        if not quiz_dir.exists():
            health_check['warnings'].append(
                f"⚠️ Quiz directory does not exist: {quiz_directory}"
            )
            health_check['recommendations'].append(
                "The quiz directory will be created automatically when loading quiz files."
            )
        elif not os.access(quiz_dir, os.R_OK):
            health_check['healthy'] = False
            health_check['errors'].append(
                f"❌ Cannot read quiz directory: {quiz_directory}"
            )

        return health_check


def get_bot_token(config: Dict[str, Any]) -> Optional[str]:
    """Get bot token from environment variable or config file."""
    # Environment variable takes precedence
    token = os.getenv('DISCORD_BOT_TOKEN')
    if token:
        return token

    token = config.get('bot', {}).get('token')
    if not token or token == "YOUR_DISCORD_BOT_TOKEN_HERE":
        return None
    return token
