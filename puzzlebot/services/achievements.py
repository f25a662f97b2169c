"""
Achievement engine.

Rules are pure predicates over an AchievementContext, keyed by catalog id and
evaluated in catalog order. Threshold rules use equality so they fire once, on
the solve that crosses the threshold. Unlocking is idempotent: an existing row
short-circuits, and a concurrent duplicate insert is absorbed by the unique
constraint.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from puzzlebot.config import Config
from puzzlebot.constants import AchievementConstants as AC
from puzzlebot.data_models.achievements import ACHIEVEMENT_CATALOG, ACHIEVEMENTS_BY_ID, AchievementDefinition
from puzzlebot.data_models.profile import AchievementProgress, CategoryProgress, UnlockedAchievementInfo
from puzzlebot.database.models import (
    Achievement, UnlockedAchievement, MoodHistory, MoodChangeReason, Player, Puzzle
)
from puzzlebot.services.base import BaseService
from puzzlebot.services.stats import StatsService
from puzzlebot.utils.exceptions import PlayerNotFoundError
from puzzlebot.utils.time_utils import to_local, minutes_between, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AchievementContext:
    """Statistics snapshot taken right after a solve."""
    total_solves: int
    total_guesses: int
    avg_guesses_per_solve: float
    current_streak: int
    best_streak: int
    first_place_finishes: int
    efficient_solves: int
    max_lost_streak: int
    mood_tier: int
    guess_number: int
    local_hour: int
    minutes_since_start: Optional[float] = None
    leaderboard_views: int = 0


def _in_hour_window(hour: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def _solved_within(minutes: float) -> Callable[[AchievementContext], bool]:
    return lambda c: c.minutes_since_start is not None and c.minutes_since_start < minutes


ACHIEVEMENT_RULES: Dict[str, Callable[[AchievementContext], bool]] = {
    'streak_first_blood': lambda c: c.total_solves == 1,
    'streak_hat_trick': lambda c: c.current_streak == 3,
    'streak_week_warrior': lambda c: c.current_streak == 7,
    'streak_unstoppable': lambda c: c.current_streak == 15,
    'streak_legendary': lambda c: c.current_streak == 25,

    'solve_rookie': lambda c: c.total_solves == 5,
    'solve_veteran': lambda c: c.total_solves == 20,
    'solve_master': lambda c: c.total_solves == 50,
    'solve_legend': lambda c: c.total_solves == 100,

    'speed_flash': _solved_within(AC.FLASH_MINUTES),
    'speed_speedrun': _solved_within(AC.SPEEDRUN_MINUTES),
    'speed_quick_draw': lambda c: c.first_place_finishes == AC.QUICK_DRAW_FIRST_PLACES,

    'efficiency_one_shot': lambda c: c.guess_number == 1,
    'efficiency_sharp': lambda c: c.efficient_solves >= AC.SHARP_SHOOTER_PUZZLES,
    'efficiency_sniper': lambda c: (
        c.total_solves >= AC.SNIPER_MIN_SOLVES and c.avg_guesses_per_solve <= AC.SNIPER_MAX_AVERAGE
    ),

    'comeback_phoenix': lambda c: c.current_streak == AC.PHOENIX_STREAK and c.best_streak > AC.PHOENIX_STREAK,
    'comeback_redemption': lambda c: (
        c.current_streak == c.best_streak
        and c.best_streak >= AC.REDEMPTION_MIN_STREAK
        and c.max_lost_streak >= c.best_streak
    ),

    'special_night_owl': lambda c: _in_hour_window(c.local_hour, AC.NIGHT_OWL_START_HOUR, AC.NIGHT_OWL_END_HOUR),
    'special_early_bird': lambda c: _in_hour_window(c.local_hour, AC.EARLY_BIRD_START_HOUR, AC.EARLY_BIRD_END_HOUR),
    'special_lucky13': lambda c: c.guess_number == AC.LUCKY_GUESS_NUMBER,
    'special_perfectionist': lambda c: c.mood_tier == 6,
    'special_comeback_kid': lambda c: c.guess_number >= AC.COMEBACK_KID_MIN_GUESS,
    'special_century_club': lambda c: c.total_guesses >= AC.CENTURY_CLUB_GUESSES,
}

# Evaluated on leaderboard views rather than on solves
VIEW_RULES: Dict[str, Callable[[AchievementContext], bool]] = {
    'special_social_butterfly': lambda c: c.leaderboard_views >= AC.SOCIAL_BUTTERFLY_VIEWS,
}


def evaluate_rules(context: AchievementContext, rules: Dict[str, Callable] = None) -> List[str]:
    """Ids of every rule that holds for the context, in catalog order"""
    rules = ACHIEVEMENT_RULES if rules is None else rules
    return [
        definition.id for definition in ACHIEVEMENT_CATALOG
        if definition.id in rules and rules[definition.id](context)
    ]


class AchievementService(BaseService):
    """Evaluates achievement rules and records unlocks."""

    def __init__(self, session_factory, stats_service: Optional[StatsService] = None,
                 timezone_name: Optional[str] = None):
        super().__init__(session_factory)
        self.stats = stats_service or StatsService(session_factory)
        self.timezone_name = timezone_name or Config.ACHIEVEMENT_TIMEZONE

    async def build_context(
        self,
        player_id: int,
        puzzle_id: int,
        guess_number: int,
        solve_timestamp: datetime,
        session: AsyncSession
    ) -> AchievementContext:
        player = await session.get(Player, player_id)
        if player is None:
            raise PlayerNotFoundError(player_id)
        puzzle = await session.get(Puzzle, puzzle_id)

        total_solves = await self.stats.get_total_solves(player_id, session)
        total_guesses = await self.stats.get_total_guesses(player_id, session)

        lost = await session.execute(
            select(func.max(MoodHistory.streak_at_change)).where(
                MoodHistory.player_id == player_id,
                MoodHistory.reason == MoodChangeReason.STREAK_BREAK
            )
        )

        minutes_since_start = None
        if puzzle is not None and puzzle.week_start_date is not None:
            minutes_since_start = minutes_between(puzzle.week_start_date, solve_timestamp)

        return AchievementContext(
            total_solves=total_solves,
            total_guesses=total_guesses,
            avg_guesses_per_solve=self.stats.average_guesses(total_guesses, total_solves),
            current_streak=await self.stats.get_current_streak(player_id, session),
            best_streak=player.best_streak,
            first_place_finishes=await self.stats.get_first_place_finishes(player_id, session),
            efficient_solves=await self.stats.get_efficient_solves(
                player_id, AC.SHARP_SHOOTER_MAX_GUESSES, session
            ),
            max_lost_streak=lost.scalar() or 0,
            mood_tier=player.mood_tier,
            guess_number=guess_number,
            local_hour=to_local(solve_timestamp, self.timezone_name).hour,
            minutes_since_start=minutes_since_start,
            leaderboard_views=player.leaderboard_views
        )

    async def check_and_award(
        self,
        player_id: int,
        puzzle_id: int,
        guess_number: int,
        solve_timestamp: datetime
    ) -> List[UnlockedAchievementInfo]:
        """
        Evaluate every solve rule and unlock the ones that newly hold.

        Args:
            player_id: Player who just solved
            puzzle_id: Puzzle that was solved
            guess_number: Ordinal of the correct guess
            solve_timestamp: Naive UTC time of the correct guess

        Returns:
            Achievements unlocked by this call (empty on a repeat call)
        """
        async with self.get_session() as session:
            context = await self.build_context(player_id, puzzle_id, guess_number, solve_timestamp, session)
        return await self._award(player_id, evaluate_rules(context))

    async def track_leaderboard_view(self, player_id: int) -> List[UnlockedAchievementInfo]:
        """Check view-count rules after the view counter was incremented"""
        async with self.get_session() as session:
            player = await session.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)
            views = player.leaderboard_views

        # Only the view counter matters for view rules
        context = AchievementContext(
            total_solves=0, total_guesses=0, avg_guesses_per_solve=0.0, current_streak=0,
            best_streak=0, first_place_finishes=0, efficient_solves=0, max_lost_streak=0,
            mood_tier=0, guess_number=0, local_hour=12, leaderboard_views=views
        )
        return await self._award(player_id, evaluate_rules(context, VIEW_RULES))

    async def _award(self, player_id: int, achievement_ids: List[str]) -> List[UnlockedAchievementInfo]:
        if not achievement_ids:
            return []

        already = await self._unlocked_ids(player_id)
        unlocked = []
        for achievement_id in achievement_ids:
            if achievement_id in already:
                continue
            info = await self.unlock(player_id, achievement_id)
            if info is not None:
                unlocked.append(info)
        return unlocked

    async def _unlocked_ids(self, player_id: int) -> set:
        async with self.get_session() as session:
            result = await session.execute(
                select(UnlockedAchievement.achievement_id).where(UnlockedAchievement.player_id == player_id)
            )
            return set(result.scalars().all())

    async def unlock(self, player_id: int, achievement_id: str) -> Optional[UnlockedAchievementInfo]:
        """
        Insert one unlock in its own transaction.

        Returns:
            The unlock, or None if the player already had it
        """
        definition = ACHIEVEMENTS_BY_ID.get(achievement_id)
        if definition is None:
            raise ValueError(f"Unknown achievement '{achievement_id}'")

        try:
            async with self.get_session() as session:
                existing = await session.execute(
                    select(UnlockedAchievement.id).where(
                        UnlockedAchievement.player_id == player_id,
                        UnlockedAchievement.achievement_id == achievement_id
                    )
                )
                if existing.scalar_one_or_none() is not None:
                    return None

                row = UnlockedAchievement(
                    player_id=player_id,
                    achievement_id=achievement_id,
                    unlocked_at=utcnow()
                )
                session.add(row)
                await session.flush()
        except IntegrityError:
            logger.debug(f"Achievement {achievement_id} already unlocked for player {player_id}")
            return None

        logger.info(f"Player {player_id} unlocked achievement {achievement_id}")
        return self._to_info(definition, row.unlocked_at)

    @staticmethod
    def _to_info(definition: AchievementDefinition, unlocked_at: datetime) -> UnlockedAchievementInfo:
        return UnlockedAchievementInfo(
            achievement_id=definition.id,
            name=definition.name,
            description=definition.description,
            emoji=definition.emoji,
            category=definition.category,
            tier=definition.tier,
            unlocked_at=unlocked_at
        )

    async def get_player_achievements(self, player_id: int) -> List[UnlockedAchievementInfo]:
        """Unlocked achievements, oldest first"""
        async with self.get_session() as session:
            result = await session.execute(
                select(UnlockedAchievement)
                .where(UnlockedAchievement.player_id == player_id)
                .order_by(UnlockedAchievement.unlocked_at, UnlockedAchievement.id)
            )
            rows = result.scalars().all()

        return [
            self._to_info(ACHIEVEMENTS_BY_ID[row.achievement_id], row.unlocked_at)
            for row in rows
            if row.achievement_id in ACHIEVEMENTS_BY_ID
        ]

    async def get_catalog(self, include_secret: bool = False) -> List[Achievement]:
        async with self.get_session() as session:
            query = select(Achievement)
            if not include_secret:
                query = query.where(Achievement.is_secret.is_(False))
            result = await session.execute(query)
            rows = {row.id: row for row in result.scalars().all()}

        # Keep catalog order
        return [rows[d.id] for d in ACHIEVEMENT_CATALOG if d.id in rows]

    async def get_progress(self, player_id: int) -> AchievementProgress:
        """Unlocked vs total, overall and per category"""
        unlocked_ids = await self._unlocked_ids(player_id)

        by_category = {}
        for definition in ACHIEVEMENT_CATALOG:
            current = by_category.get(definition.category, CategoryProgress(0, 0))
            by_category[definition.category] = CategoryProgress(
                unlocked=current.unlocked + (1 if definition.id in unlocked_ids else 0),
                total=current.total + 1
            )

        total = len(ACHIEVEMENT_CATALOG)
        unlocked = sum(1 for d in ACHIEVEMENT_CATALOG if d.id in unlocked_ids)
        return AchievementProgress(
            unlocked=unlocked,
            total=total,
            percentage=round(unlocked / total * 100, 1) if total else 0.0,
            by_category=by_category
        )
