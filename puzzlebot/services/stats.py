"""
Player statistics derived from the guess log.

Every figure here is recomputed from Guess rows (duel guesses excluded) so the
log stays the single source of truth. Pure streak arithmetic lives in
puzzlebot.utils.streaks.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from puzzlebot.data_models.profile import PlayerStats
from puzzlebot.database.models import Guess, Puzzle, Player, WeeklyLeaderboardEntry
from puzzlebot.services.base import BaseService
from puzzlebot.utils.exceptions import PlayerNotFoundError
from puzzlebot.utils.streaks import StreakCalculator

logger = logging.getLogger(__name__)


def weekly_guesses():
    """Filter for guesses that count toward weekly statistics."""
    return Guess.duel_id.is_(None)


class StatsService(BaseService):
    """Read-side statistics over the guess log."""

    async def get_solved_week_starts(self, player_id: int, session: Optional[AsyncSession] = None) -> List[datetime]:
        async with self.use_session(session) as s:
            result = await s.execute(
                select(Puzzle.week_start_date).distinct()
                .join(Guess, Guess.puzzle_id == Puzzle.id)
                .where(
                    Guess.player_id == player_id,
                    Guess.is_correct.is_(True),
                    weekly_guesses(),
                    Puzzle.week_start_date.is_not(None)
                )
            )
            return list(result.scalars().all())

    async def get_current_streak(self, player_id: int, session: Optional[AsyncSession] = None) -> int:
        """Consecutive solved weeks ending at the most recent solve"""
        week_starts = await self.get_solved_week_starts(player_id, session)
        return StreakCalculator.current_streak(week_starts)

    async def get_total_solves(self, player_id: int, session: Optional[AsyncSession] = None) -> int:
        """Number of distinct puzzles solved"""
        async with self.use_session(session) as s:
            result = await s.execute(
                select(func.count(distinct(Guess.puzzle_id))).where(
                    Guess.player_id == player_id,
                    Guess.is_correct.is_(True),
                    weekly_guesses()
                )
            )
            return result.scalar() or 0

    async def get_total_guesses(self, player_id: int, session: Optional[AsyncSession] = None) -> int:
        async with self.use_session(session) as s:
            result = await s.execute(
                select(func.count(Guess.id)).where(Guess.player_id == player_id, weekly_guesses())
            )
            return result.scalar() or 0

    async def get_first_place_finishes(self, player_id: int, session: Optional[AsyncSession] = None) -> int:
        """Rank-1 rows in persisted weekly snapshots"""
        async with self.use_session(session) as s:
            result = await s.execute(
                select(func.count(WeeklyLeaderboardEntry.id)).where(
                    WeeklyLeaderboardEntry.player_id == player_id,
                    WeeklyLeaderboardEntry.rank == 1
                )
            )
            return result.scalar() or 0

    async def get_efficient_solves(self, player_id: int, max_guesses: int,
                                   session: Optional[AsyncSession] = None) -> int:
        """Distinct puzzles solved within max_guesses guesses"""
        async with self.use_session(session) as s:
            result = await s.execute(
                select(func.count(distinct(Guess.puzzle_id))).where(
                    Guess.player_id == player_id,
                    Guess.is_correct.is_(True),
                    Guess.guess_number <= max_guesses,
                    weekly_guesses()
                )
            )
            return result.scalar() or 0

    @staticmethod
    def average_guesses(total_guesses: int, total_solves: int) -> float:
        if total_solves == 0:
            return 0.0
        return round(total_guesses / total_solves, 2)

    async def get_avg_guesses_per_solve(self, player_id: int, session: Optional[AsyncSession] = None) -> float:
        total_guesses = await self.get_total_guesses(player_id, session)
        total_solves = await self.get_total_solves(player_id, session)
        return self.average_guesses(total_guesses, total_solves)

    async def has_solved(self, player_id: int, puzzle_id: int, session: Optional[AsyncSession] = None) -> bool:
        async with self.use_session(session) as s:
            result = await s.execute(
                select(Guess.id).where(
                    Guess.player_id == player_id,
                    Guess.puzzle_id == puzzle_id,
                    Guess.is_correct.is_(True),
                    weekly_guesses()
                ).limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def count_guesses_on_puzzle(self, player_id: int, puzzle_id: int,
                                      session: Optional[AsyncSession] = None) -> int:
        async with self.use_session(session) as s:
            result = await s.execute(
                select(func.count(Guess.id)).where(
                    Guess.player_id == player_id,
                    Guess.puzzle_id == puzzle_id,
                    weekly_guesses()
                )
            )
            return result.scalar() or 0

    async def get_player_stats(self, player_id: int, session: Optional[AsyncSession] = None) -> PlayerStats:
        """Full statistics snapshot for one player"""
        async with self.use_session(session) as s:
            player = await s.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)

            total_solves = await self.get_total_solves(player_id, s)
            total_guesses = await self.get_total_guesses(player_id, s)

            return PlayerStats(
                player_id=player_id,
                total_solves=total_solves,
                total_guesses=total_guesses,
                current_streak=await self.get_current_streak(player_id, s),
                best_streak=player.best_streak,
                first_place_finishes=await self.get_first_place_finishes(player_id, s),
                avg_guesses_per_solve=self.average_guesses(total_guesses, total_solves),
                mood_tier=player.mood_tier
            )
