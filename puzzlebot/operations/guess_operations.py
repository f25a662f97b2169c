"""
Guess Operations - weekly puzzle guess orchestration

Turns a submitted guess into a validated, durably recorded outcome, then
drives the post-solve steps (mood update, achievement check, celebration).

The guess row is committed before any post-solve step runs; those steps are
not rolled back together with it, and a failure in one of them is logged and
leaves the player-visible result intact.
"""

from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from puzzlebot.data_models.profile import GuessResult
from puzzlebot.database.models import Guess, Player, Puzzle
from puzzlebot.services.achievements import AchievementService
from puzzlebot.services.answer_validation import AnswerValidator
from puzzlebot.services.celebration import CelebrationProvider, StaticCelebrationProvider
from puzzlebot.services.mood import MoodService
from puzzlebot.services.stats import StatsService
from puzzlebot.utils.exceptions import AlreadySolvedError, NoActivePuzzleError, PlayerNotFoundError
from puzzlebot.utils.locks import KeyedLock
from puzzlebot.utils.logger import setup_logger
from puzzlebot.utils.time_utils import utcnow


class GuessOperations:
    """
    Service class for weekly guess submission.

    Guesses from one player are serialized so two concurrent submissions can
    neither share a guess number nor both be recorded as the winning guess.
    """

    def __init__(
        self,
        db,
        validator: AnswerValidator,
        mood_service: MoodService,
        achievement_service: AchievementService,
        celebration_provider: Optional[CelebrationProvider] = None,
        stats_service: Optional[StatsService] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.validator = validator
        self.mood = mood_service
        self.achievements = achievement_service
        self.celebration = celebration_provider or StaticCelebrationProvider()
        self._static_celebration = StaticCelebrationProvider()
        self.stats = stats_service or StatsService(db.session_factory)
        self.clock = clock
        self._player_locks = KeyedLock()
        self.logger = setup_logger(f"{__name__}.GuessOperations")

    async def _load_context(self, player_id: int, session: AsyncSession):
        result = await session.execute(select(Puzzle).where(Puzzle.is_active.is_(True)))
        puzzle = result.scalar_one_or_none()
        if puzzle is None:
            raise NoActivePuzzleError()

        player = await session.get(Player, player_id)
        if player is None:
            raise PlayerNotFoundError(player_id)

        if await self.stats.has_solved(player_id, puzzle.id, session):
            raise AlreadySolvedError(player_id, puzzle.id)

        guess_number = await self.stats.count_guesses_on_puzzle(player_id, puzzle.id, session) + 1
        return puzzle, player, guess_number

    async def submit_guess(self, player_id: int, raw_text: str) -> GuessResult:
        """
        Submit a guess for the active puzzle.

        Args:
            player_id: Internal player id
            raw_text: The guess as typed

        Returns:
            GuessResult with correctness, explanation and any progression changes

        Raises:
            ValueError: If the guess is blank
            NoActivePuzzleError: If no puzzle is active
            PlayerNotFoundError: If the player does not exist
            AlreadySolvedError: If the player already solved the active puzzle
        """
        guess_text = (raw_text or '').strip()
        if not guess_text:
            raise ValueError("Guess cannot be empty")

        async with self._player_locks.acquire(player_id):
            async with self.db.get_session() as session:
                puzzle, player, guess_number = await self._load_context(player_id, session)
                tier_at_time = player.mood_tier

            outcome = await self.validator.validate(puzzle.answer, guess_text)
            timestamp = self.clock()

            async with self.db.transaction() as session:
                session.add(Guess(
                    player_id=player_id,
                    puzzle_id=puzzle.id,
                    guess_text=guess_text,
                    is_correct=outcome.is_correct,
                    guess_number=guess_number,
                    mood_tier_at_time=tier_at_time,
                    timestamp=timestamp
                ))
                await session.execute(
                    update(Player).where(Player.id == player_id).values(last_active=timestamp)
                )

            self.logger.info(
                f"Player {player_id} guess #{guess_number} on puzzle {puzzle.puzzle_key}: "
                f"{'correct' if outcome.is_correct else 'incorrect'}"
                f"{' (fallback)' if outcome.used_fallback else ''}"
            )

            if not outcome.is_correct:
                return GuessResult(
                    is_correct=False,
                    guess_number=guess_number,
                    explanation=outcome.explanation,
                    confidence=outcome.confidence,
                    used_fallback=outcome.used_fallback
                )

            return await self._after_solve(player_id, puzzle, guess_number, timestamp, tier_at_time, outcome)

    async def _after_solve(self, player_id, puzzle, guess_number, timestamp, tier_at_time, outcome) -> GuessResult:
        tier_changed = False
        old_tier = new_tier = tier_at_time
        new_achievements = []
        celebration_url = None

        try:
            mood_update = await self.mood.update_after_solve(player_id)
            tier_changed = mood_update.tier_changed
            old_tier, new_tier = mood_update.old_tier, mood_update.new_tier
        except Exception as e:
            self.logger.error(f"Mood update failed for player {player_id}: {e}", exc_info=True)

        try:
            new_achievements = await self.achievements.check_and_award(
                player_id, puzzle.id, guess_number, timestamp
            )
        except Exception as e:
            self.logger.error(f"Achievement check failed for player {player_id}: {e}", exc_info=True)

        try:
            celebration_url = await self.celebration.fetch_celebration(new_tier)
        except Exception as e:
            self.logger.warning(f"Celebration lookup failed for player {player_id}: {e}, using static GIF")
            celebration_url = await self._static_celebration.fetch_celebration(new_tier)

        return GuessResult(
            is_correct=True,
            guess_number=guess_number,
            explanation=outcome.explanation,
            confidence=outcome.confidence,
            corrected_spelling=outcome.corrected_spelling,
            used_fallback=outcome.used_fallback,
            tier_changed=tier_changed,
            old_tier=old_tier,
            new_tier=new_tier,
            new_achievements=new_achievements,
            celebration_url=celebration_url
        )

    async def get_guesses_for_active_puzzle(self, player_id: int) -> List[Guess]:
        """The player's weekly guesses on the active puzzle, in order"""
        async with self.db.get_session() as session:
            result = await session.execute(select(Puzzle.id).where(Puzzle.is_active.is_(True)))
            puzzle_id = result.scalar_one_or_none()
            if puzzle_id is None:
                return []

            result = await session.execute(
                select(Guess)
                .where(
                    Guess.player_id == player_id,
                    Guess.puzzle_id == puzzle_id,
                    Guess.duel_id.is_(None)
                )
                .order_by(Guess.guess_number)
            )
            return list(result.scalars().all())
