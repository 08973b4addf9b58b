import discord
from discord.ext import commands
import logging
import os
from typing import Optional

from .data_manager import DataManager
from .config_manager import ConfigManager
from .evaluator import format_time
from .models import Quiz, QuizLoadError, ResultTier, SessionSnapshot, SessionStatus, UNANSWERED
from .quiz_controller import QuizController, SessionConflictError, SessionNotFoundError

logger = logging.getLogger(__name__)

TIER_COLORS = {
    ResultTier.TOP: 0x00ff00,
    ResultTier.MID: 0xffaa00,
    ResultTier.LOW: 0xff0000,
}


def build_question_embed(quiz: Quiz, snapshot: SessionSnapshot) -> discord.Embed:
    """Render the current question of a running attempt."""
    question = quiz.questions[snapshot.current_index]
    color = 0xff0000 if snapshot.low_time else 0x4f46e5

    embed = discord.Embed(
        title=f"🎯 Question {snapshot.current_index + 1}/{quiz.question_count}",
        description=question.text,
        color=color
    )

    selected = snapshot.answers[snapshot.current_index]
    option_lines = []
    for i, option in enumerate(question.options):
        marker = "🔘" if i == selected else "⚪"
        option_lines.append(f"{marker} **{i + 1}.** {option}")
    embed.add_field(name="Options", value="\n".join(option_lines), inline=False)

    timer_emoji = "🚨" if snapshot.low_time else "⏱️"
    embed.add_field(
        name=f"{timer_emoji} Time Remaining",
        value=format_time(snapshot.remaining_seconds),
        inline=True
    )
    embed.add_field(
        name="📊 Progress",
        value=f"{round(snapshot.progress_percent)}% - answered {snapshot.answered_count}/{quiz.question_count}",
        inline=True
    )

    if snapshot.feedback is not None:
        if snapshot.feedback.correct:
            embed.add_field(name="✅ Correct answer!", value="Well done!", inline=False)
        else:
            embed.add_field(name="❌ Wrong answer", value="Keep going!", inline=False)

    embed.set_footer(text=f"{quiz.title} • /answer, /next, /previous, /goto, /finish")
    return embed


def build_result_embed(snapshot: SessionSnapshot) -> discord.Embed:
    """Render the final score of a finished attempt."""
    score = snapshot.score
    quiz_info = snapshot.quiz

    title = f"🏁 {score.tier.value}!"
    if snapshot.remaining_seconds == 0:
        title = f"⏰ Time's up! {score.tier.value}"

    embed = discord.Embed(
        title=title,
        description=f"**{quiz_info.get('title', '')}**",
        color=TIER_COLORS[score.tier]
    )
    embed.add_field(name="🎯 Score", value=f"{score.percentage}%", inline=True)
    embed.add_field(
        name="✅ Correct",
        value=f"{score.correct_count} of {score.total}",
        inline=True
    )
    unanswered = sum(1 for answer in snapshot.answers if answer == UNANSWERED)
    embed.add_field(name="➖ Unanswered", value=str(unanswered), inline=True)
    embed.add_field(
        name="⏱️ Time Taken",
        value=format_time(snapshot.elapsed_seconds),
        inline=True
    )
    embed.set_footer(text="Use /restart to try again or /stop to leave the quiz")
    return embed


class QuizBot(commands.Bot):
    """Discord bot for taking timed quizzes"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,  # Fallback prefix, mainly using slash commands
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.data_manager: Optional[DataManager] = None
        self.config_manager: Optional[ConfigManager] = None
        self.quiz_controller: Optional[QuizController] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")

        self.config_manager = ConfigManager()
        if self.app_config:
            self.config_manager.apply_config(self.app_config)

        self.data_manager = DataManager(self.config_manager.get_quiz_directory())
        self.quiz_controller = QuizController(
            self.data_manager,
            self.config_manager,
            on_finished=self.announce_timeout,
            on_feedback_closed=self.show_next_question
        )

        logger.info(self.config_manager.get_settings_summary())
        health = self.config_manager.get_configuration_health_check()
        for warning in health['warnings']:
            logger.warning(f"Configuration warning: {warning}")
        for error in health['errors']:
            logger.error(f"Configuration error: {error}")

        await self.load_quiz_data()
        await self.setup_commands()

        logger.info("Bot setup completed successfully")

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quizzes", description="List the available quizzes")
        async def quizzes_command(interaction: discord.Interaction):
            await self.handle_quizzes(interaction)

        @self.tree.command(name="start", description="Start a timed quiz by slug or id")
        async def start_command(interaction: discord.Interaction, quiz: str):
            await self.handle_start(interaction, quiz)

        @self.tree.command(name="answer", description="Answer the current question with an option number")
        async def answer_command(interaction: discord.Interaction, option: int):
            await self.handle_answer(interaction, option)

        @self.tree.command(name="goto", description="Jump to a question number")
        async def goto_command(interaction: discord.Interaction, number: int):
            await self.handle_goto(interaction, number)

        @self.tree.command(name="next", description="Go to the next question")
        async def next_command(interaction: discord.Interaction):
            await self.handle_next(interaction)

        @self.tree.command(name="previous", description="Go to the previous question")
        async def previous_command(interaction: discord.Interaction):
            await self.handle_previous(interaction)

        @self.tree.command(name="finish", description="Submit your answers and see your score")
        async def finish_command(interaction: discord.Interaction):
            await self.handle_finish(interaction)

        @self.tree.command(name="restart", description="Retake the finished quiz")
        async def restart_command(interaction: discord.Interaction):
            await self.handle_restart(interaction)

        @self.tree.command(name="status", description="Show the current question and remaining time")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="stop", description="Leave the current quiz")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        logger.info("Slash commands registered successfully")

    async def load_quiz_data(self):
        """Load quiz files from the quizzes directory"""
        self.data_manager.load_quiz_files()
        summary = self.data_manager.get_loading_summary()
        logger.info(f"Loaded {summary['total_quizzes']} quizzes from {summary['quiz_directory']}")

        if summary['sample_created']:
            logger.info("Quiz directory was empty, created a sample quiz")
        if summary['has_errors']:
            logger.warning(
                f"{summary['error_count']} quiz files failed to load: {', '.join(summary['invalid_quizzes'])}"
            )

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        """Stop every quiz timer before disconnecting"""
        if self.quiz_controller is not None:
            await self.quiz_controller.shutdown()
        await super().close()

    async def announce_timeout(self, channel_id: int, snapshot: SessionSnapshot):
        """Post the result of an attempt that was auto-submitted when time ran out"""
        if snapshot.remaining_seconds != 0:
            return

        channel = self.get_channel(channel_id)
        if channel is None:
            logger.warning(f"Cannot announce timeout: channel {channel_id} not found")
            return

        try:
            await channel.send(embed=build_result_embed(snapshot))
        except discord.HTTPException as e:
            logger.error(f"Failed to announce timeout in channel {channel_id}: {e}")

    async def show_next_question(self, channel_id: int, snapshot: SessionSnapshot):
        """Post the question shown once a feedback window closes"""
        if snapshot.status != SessionStatus.RUNNING:
            return

        session = self.quiz_controller.get_session(channel_id)
        channel = self.get_channel(channel_id)
        if session is None or channel is None:
            logger.warning(f"Cannot show next question: channel {channel_id} not found")
            return

        try:
            await channel.send(embed=build_question_embed(session.quiz, snapshot))
        except discord.HTTPException as e:
            logger.error(f"Failed to post next question in channel {channel_id}: {e}")

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        embed = discord.Embed(
            title="📚 Quiz Commands",
            description="Take timed multiple-choice quizzes right here in the channel.",
            color=0x6699ff
        )
        embed.add_field(
            name="🎯 Taking a quiz",
            value=(
                "`/quizzes` - List available quizzes\n"
                "`/start <quiz>` - Start a quiz\n"
                "`/answer <option>` - Answer the current question\n"
                "`/status` - Show the current question and timer"
            ),
            inline=False
        )
        embed.add_field(
            name="🧭 Navigation",
            value=(
                "`/next`, `/previous` - Move between questions\n"
                "`/goto <number>` - Jump to a question"
            ),
            inline=False
        )
        embed.add_field(
            name="🏁 Finishing",
            value=(
                "`/finish` - Submit and see your score\n"
                "`/restart` - Retake a finished quiz\n"
                "`/stop` - Leave the quiz"
            ),
            inline=False
        )
        embed.set_footer(text="The quiz is submitted automatically when the timer reaches zero")

        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send help: {e}")

    async def handle_quizzes(self, interaction: discord.Interaction):
        """Handle /quizzes command"""
        quizzes = self.data_manager.list_quizzes()
        if not quizzes:
            await self.send_info_response(
                interaction,
                "No quizzes are available. Add quiz JSON files to the quizzes directory.",
                "ℹ️ No Quizzes"
            )
            return

        embed = discord.Embed(title="📚 Available Quizzes", color=0x6699ff)
        for info in quizzes[:25]:  # Discord embed field limit
            details = f"`{info['slug'] or info['id']}` • {info['question_count']} questions • {info['duration_minutes']} min"
            if info['grade'] or info['category']:
                details += f"\n{info['grade']} - {info['category']}"
            embed.add_field(name=info['title'], value=details, inline=False)

        try:
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to list quizzes: {e}")

    async def handle_start(self, interaction: discord.Interaction, quiz_key: str):
        """Handle /start command"""
        channel_id = interaction.channel_id
        try:
            session = await self.quiz_controller.start_session(channel_id, quiz_key)
        except SessionConflictError:
            await self.send_warning_response(
                interaction,
                "A quiz is already running in this channel. Finish it with `/finish` or leave with `/stop`.",
                "⚠️ Quiz In Progress"
            )
            return
        except QuizLoadError as e:
            await self.send_error_response(interaction, str(e), "❌ Quiz Not Available")
            return

        quiz = session.quiz
        embed = build_question_embed(quiz, session.snapshot())
        embed.title = f"🎯 {quiz.title} - Question 1/{quiz.question_count}"
        embed.description = (
            f"You have **{quiz.duration_minutes} minutes**.\n\n{quiz.questions[0].text}"
        )
        try:
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to send first question: {e}")

    async def handle_answer(self, interaction: discord.Interaction, option: int):
        """Handle /answer command (options are numbered from 1)"""
        await self._handle_session_action(
            interaction, self.quiz_controller.select_answer, option - 1
        )

    async def handle_goto(self, interaction: discord.Interaction, number: int):
        """Handle /goto command (questions are numbered from 1)"""
        await self._handle_session_action(
            interaction, self.quiz_controller.go_to, number - 1
        )

    async def handle_next(self, interaction: discord.Interaction):
        await self._handle_session_action(interaction, self.quiz_controller.next_question)

    async def handle_previous(self, interaction: discord.Interaction):
        await self._handle_session_action(interaction, self.quiz_controller.previous_question)

    async def handle_finish(self, interaction: discord.Interaction):
        await self._handle_session_action(interaction, self.quiz_controller.finish)

    async def handle_restart(self, interaction: discord.Interaction):
        await self._handle_session_action(interaction, self.quiz_controller.restart)

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        snapshot = self.quiz_controller.get_snapshot(interaction.channel_id)
        if snapshot is None:
            await self.send_info_response(
                interaction,
                "There is no quiz in this channel. Use `/quizzes` and `/start` to begin.",
                "ℹ️ No Active Quiz"
            )
            return
        await self.send_snapshot(
            interaction, snapshot,
            footer=self.quiz_controller.get_session_status_summary(interaction.channel_id)
        )

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        stopped = await self.quiz_controller.stop_session(interaction.channel_id)
        if stopped:
            await self.send_info_response(interaction, "You left the quiz.", "👋 Quiz Closed")
        else:
            await self.send_info_response(interaction, "There is no quiz in this channel.", "ℹ️ No Active Quiz")

    async def _handle_session_action(self, interaction: discord.Interaction, action, *args):
        """Run a controller action for the channel and render the resulting snapshot"""
        try:
            snapshot = await action(interaction.channel_id, *args)
        except SessionNotFoundError:
            await self.send_info_response(
                interaction,
                "There is no quiz in this channel. Use `/start` to begin.",
                "ℹ️ No Active Quiz"
            )
            return
        await self.send_snapshot(interaction, snapshot)

    async def send_snapshot(self, interaction: discord.Interaction, snapshot: SessionSnapshot,
                            footer: Optional[str] = None):
        """Render a session snapshot as a reply"""
        if snapshot.status == SessionStatus.FINISHED:
            embed = build_result_embed(snapshot)
        else:
            session = self.quiz_controller.get_session(interaction.channel_id)
            embed = build_question_embed(session.quiz, snapshot)
        if footer:
            embed.set_footer(text=footer)

        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed)
            else:
                await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to send quiz state: {e}")

    async def _send_embed(self, interaction: discord.Interaction, embed: discord.Embed):
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send '{embed.title}' response to user")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        embed = discord.Embed(title=title, description=message, color=0xff0000)
        embed.set_footer(text="If this error persists, try using /help for available commands")
        await self._send_embed(interaction, embed)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_embed(interaction, discord.Embed(title=title, description=message, color=0x6699ff))

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_embed(interaction, discord.Embed(title=title, description=message, color=0xffaa00))


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Discord Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
