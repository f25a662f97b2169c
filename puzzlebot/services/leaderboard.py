"""
Leaderboard service - weekly and all-time rankings.

Weekly rankings are computed live from the guess log until the week ends, when
the scheduler persists a snapshot. Persisting is idempotent per puzzle.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select, update, func, distinct
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from puzzlebot.data_models.leaderboard import (
    AllTimeLeaderboardRow, LeaderboardWeek, WeeklyLeaderboard, WeeklyLeaderboardRow
)
from puzzlebot.data_models.profile import UnlockedAchievementInfo
from puzzlebot.database.models import Guess, Player, Puzzle, WeeklyLeaderboardEntry
from puzzlebot.services.base import BaseService
from puzzlebot.services.stats import StatsService, weekly_guesses
from puzzlebot.utils.exceptions import (
    DatabaseError, NoActivePuzzleError, PlayerNotFoundError, PuzzleNotFoundError
)

logger = logging.getLogger(__name__)


class LeaderboardService(BaseService):
    """Service for leaderboard queries and weekly snapshots."""

    def __init__(self, session_factory, achievement_service=None):
        super().__init__(session_factory)
        self.achievements = achievement_service

    async def _resolve_puzzle(self, session: AsyncSession, puzzle_id: Optional[int]) -> Puzzle:
        if puzzle_id is None:
            result = await session.execute(select(Puzzle).where(Puzzle.is_active.is_(True)))
            puzzle = result.scalar_one_or_none()
            if puzzle is None:
                raise NoActivePuzzleError()
            return puzzle

        puzzle = await session.get(Puzzle, puzzle_id)
        if puzzle is None:
            raise PuzzleNotFoundError(puzzle_id)
        return puzzle

    async def _compute_weekly_rows(self, session: AsyncSession, puzzle_id: int) -> List[WeeklyLeaderboardRow]:
        result = await session.execute(
            select(Guess, Player.display_name)
            .join(Player, Player.id == Guess.player_id)
            .where(Guess.puzzle_id == puzzle_id, Guess.is_correct.is_(True), weekly_guesses())
            .order_by(Guess.timestamp, Guess.id)
        )

        rows = []
        seen = set()
        for guess, display_name in result.all():
            if guess.player_id in seen:
                continue
            seen.add(guess.player_id)
            rows.append(WeeklyLeaderboardRow(
                rank=len(rows) + 1,
                player_id=guess.player_id,
                display_name=display_name,
                solve_time=guess.timestamp,
                total_guesses=guess.guess_number
            ))
        return rows

    async def get_weekly_leaderboard(self, puzzle_id: Optional[int] = None) -> WeeklyLeaderboard:
        """
        Rank solvers of a puzzle by earliest correct guess.

        Args:
            puzzle_id: Puzzle to rank (defaults to the active puzzle)

        Returns:
            WeeklyLeaderboard; total_guesses is the ordinal of the solving guess
        """
        async with self.get_session() as session:
            puzzle = await self._resolve_puzzle(session, puzzle_id)
            rows = await self._compute_weekly_rows(session, puzzle.id)

        return WeeklyLeaderboard(
            puzzle_id=puzzle.id,
            puzzle_key=puzzle.puzzle_key,
            week_start_date=puzzle.week_start_date,
            entries=rows
        )

    async def persist_weekly_leaderboard(self, puzzle_id: int) -> bool:
        """
        Snapshot a puzzle's ranking, once.

        Returns:
            True if rows were written; False when a snapshot already exists
            (including one written concurrently) or nobody solved the puzzle

        Raises:
            DatabaseError: If the snapshot could not be read or written
        """
        try:
            async with self.get_session() as session:
                exists = await session.execute(
                    select(WeeklyLeaderboardEntry.id)
                    .where(WeeklyLeaderboardEntry.puzzle_id == puzzle_id)
                    .limit(1)
                )
                if exists.scalar_one_or_none() is not None:
                    logger.info(f"Leaderboard for puzzle {puzzle_id} already persisted")
                    return False

                puzzle = await self._resolve_puzzle(session, puzzle_id)
                rows = await self._compute_weekly_rows(session, puzzle.id)
                if not rows:
                    logger.info(f"No solvers for puzzle {puzzle.puzzle_key}, nothing to persist")
                    return False

                for row in rows:
                    session.add(WeeklyLeaderboardEntry(
                        week_start_date=puzzle.week_start_date,
                        puzzle_id=puzzle.id,
                        player_id=row.player_id,
                        solve_time=row.solve_time,
                        total_guesses=row.total_guesses,
                        rank=row.rank
                    ))
                await session.flush()
        except IntegrityError:
            logger.info(f"Leaderboard for puzzle {puzzle_id} persisted concurrently")
            return False
        except SQLAlchemyError as e:
            logger.error(f"Database error persisting leaderboard for puzzle {puzzle_id}: {e}")
            raise DatabaseError("leaderboard snapshot", str(e)) from e

        logger.info(f"Persisted leaderboard for puzzle {puzzle_id} with {len(rows)} entries")
        return True

    async def get_persisted_leaderboard(self, puzzle_id: int) -> WeeklyLeaderboard:
        async with self.get_session() as session:
            puzzle = await self._resolve_puzzle(session, puzzle_id)
            result = await session.execute(
                select(WeeklyLeaderboardEntry, Player.display_name)
                .join(Player, Player.id == WeeklyLeaderboardEntry.player_id)
                .where(WeeklyLeaderboardEntry.puzzle_id == puzzle_id)
                .order_by(WeeklyLeaderboardEntry.rank)
            )
            entries = [
                WeeklyLeaderboardRow(
                    rank=entry.rank,
                    player_id=entry.player_id,
                    display_name=display_name,
                    solve_time=entry.solve_time,
                    total_guesses=entry.total_guesses
                )
                for entry, display_name in result.all()
            ]

        return WeeklyLeaderboard(
            puzzle_id=puzzle.id,
            puzzle_key=puzzle.puzzle_key,
            week_start_date=puzzle.week_start_date,
            entries=entries,
            is_persisted=True
        )

    async def get_leaderboard_weeks(self) -> List[LeaderboardWeek]:
        """Weeks with a persisted snapshot, newest first"""
        async with self.get_session() as session:
            result = await session.execute(
                select(
                    Puzzle.id, Puzzle.puzzle_key,
                    WeeklyLeaderboardEntry.week_start_date,
                    func.count(WeeklyLeaderboardEntry.id)
                )
                .join(Puzzle, Puzzle.id == WeeklyLeaderboardEntry.puzzle_id)
                .group_by(Puzzle.id, Puzzle.puzzle_key, WeeklyLeaderboardEntry.week_start_date)
                .order_by(WeeklyLeaderboardEntry.week_start_date.desc(), Puzzle.id.desc())
            )
            return [
                LeaderboardWeek(puzzle_id, puzzle_key, week_start_date, participants)
                for puzzle_id, puzzle_key, week_start_date, participants in result.all()
            ]

    async def get_all_time_leaderboard(self, limit: Optional[int] = None) -> List[AllTimeLeaderboardRow]:
        """
        Rank every player by distinct puzzles solved, then by fewest
        average guesses per solve.
        """
        async with self.get_session() as session:
            players = (await session.execute(select(Player))).scalars().all()

            solves = await session.execute(
                select(Guess.player_id, func.count(distinct(Guess.puzzle_id)))
                .where(Guess.is_correct.is_(True), weekly_guesses())
                .group_by(Guess.player_id)
            )
            solves_by_player: Dict[int, int] = dict(solves.all())

            guesses = await session.execute(
                select(Guess.player_id, func.count(Guess.id))
                .where(weekly_guesses())
                .group_by(Guess.player_id)
            )
            guesses_by_player: Dict[int, int] = dict(guesses.all())

        ranked = sorted(
            (
                (
                    player,
                    solves_by_player.get(player.id, 0),
                    StatsService.average_guesses(
                        guesses_by_player.get(player.id, 0), solves_by_player.get(player.id, 0)
                    )
                )
                for player in players
            ),
            key=lambda item: (-item[1], item[2], item[0].id)
        )
        if limit is not None:
            ranked = ranked[:limit]

        return [
            AllTimeLeaderboardRow(
                rank=index,
                player_id=player.id,
                display_name=player.display_name,
                total_solves=total_solves,
                avg_guesses_per_solve=avg_guesses,
                mood_tier=player.mood_tier,
                best_streak=player.best_streak
            )
            for index, (player, total_solves, avg_guesses) in enumerate(ranked, start=1)
        ]

    async def record_leaderboard_view(self, player_id: int) -> List[UnlockedAchievementInfo]:
        """Count a leaderboard view and check view-based achievements"""
        async with self.get_session() as session:
            result = await session.execute(
                update(Player)
                .where(Player.id == player_id)
                .values(leaderboard_views=Player.leaderboard_views + 1)
            )
            if result.rowcount == 0:
                raise PlayerNotFoundError(player_id)

        if self.achievements is None:
            return []
        return await self.achievements.track_leaderboard_view(player_id)
