"""
Weekly scheduler entry points.

Called periodically (cron or a loop in puzzlebot.main). When the active
puzzle's week has ended it snapshots the leaderboard, breaks the streaks of
players who skipped the week and activates the next puzzle. Each step is
idempotent, so running a pass twice is harmless.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, func

from puzzlebot.constants import StreakConstants
from puzzlebot.database.models import Guess, Puzzle
from puzzlebot.services.base import BaseService
from puzzlebot.services.stats import StatsService, weekly_guesses
from puzzlebot.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class WeeklyScheduler(BaseService):
    """Drives puzzle rotation and the end-of-week bookkeeping."""

    def __init__(
        self,
        session_factory,
        puzzle_ops,
        leaderboard_service,
        mood_service,
        duel_ops=None,
        stats_service: Optional[StatsService] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        super().__init__(session_factory)
        self.puzzles = puzzle_ops
        self.leaderboard = leaderboard_service
        self.mood = mood_service
        self.duels = duel_ops
        self.stats = stats_service or StatsService(session_factory)
        self.clock = clock

    async def check_and_rotate(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Rotate the puzzle if its week is over.

        With no active puzzle the first catalogue entry is activated. A failed
        snapshot or streak pass is logged and does not block the rotation.

        Returns:
            Dict with keys rotated, persisted, streak_breaks and active_puzzle
        """
        now = now or self.clock()
        summary = {'rotated': False, 'persisted': False, 'streak_breaks': 0, 'active_puzzle': None}

        active = await self.puzzles.get_active_puzzle()
        if active is None:
            activated = await self.puzzles.rotate_to_next_puzzle(now)
            if activated is not None:
                logger.info(f"No active puzzle, activated {activated.puzzle_key}")
                summary['rotated'] = True
                summary['active_puzzle'] = activated.puzzle_key
            return summary

        summary['active_puzzle'] = active.puzzle_key
        if active.week_end_date is None or now < active.week_end_date:
            return summary

        logger.info(f"Week for puzzle {active.puzzle_key} ended at {active.week_end_date.isoformat()}")

        try:
            summary['persisted'] = await self.leaderboard.persist_weekly_leaderboard(active.id)
        except Exception as e:
            logger.error(f"Failed to persist leaderboard for puzzle {active.puzzle_key}: {e}", exc_info=True)

        try:
            summary['streak_breaks'] = len(await self.apply_streak_breaks(active))
        except Exception as e:
            logger.error(f"Streak break pass failed for puzzle {active.puzzle_key}: {e}", exc_info=True)

        activated = await self.puzzles.rotate_to_next_puzzle(now)
        if activated is not None:
            summary['rotated'] = True
            summary['active_puzzle'] = activated.puzzle_key
        return summary

    async def players_with_lapsing_streaks(self, ending_puzzle: Puzzle) -> List[int]:
        """
        Players whose streak the ending week would have extended but who did
        not solve it.

        Their latest solved week starts within the streak gap tolerance before
        the ending week; anyone older than that already lost the streak.
        """
        if ending_puzzle.week_start_date is None:
            return []

        async with self.get_session() as session:
            solvers = (
                select(Guess.player_id)
                .where(Guess.puzzle_id == ending_puzzle.id, Guess.is_correct.is_(True), weekly_guesses())
            )
            result = await session.execute(
                select(Guess.player_id, func.max(Puzzle.week_start_date))
                .join(Puzzle, Puzzle.id == Guess.puzzle_id)
                .where(
                    Guess.is_correct.is_(True),
                    weekly_guesses(),
                    Puzzle.id != ending_puzzle.id,
                    Puzzle.week_start_date.is_not(None),
                    Guess.player_id.not_in(solvers)
                )
                .group_by(Guess.player_id)
            )
            rows = result.all()

        ending_start = ending_puzzle.week_start_date.date()
        lapsing = []
        for player_id, last_week_start in rows:
            gap = (ending_start - last_week_start.date()).days
            if 0 < gap <= StreakConstants.MAX_WEEK_GAP_DAYS:
                lapsing.append(player_id)
        return sorted(lapsing)

    async def apply_streak_breaks(self, ending_puzzle: Puzzle) -> List[int]:
        """
        Drop the tier of every player whose streak lapses with this week.

        Returns:
            Ids of players whose tier actually changed
        """
        changed = []
        for player_id in await self.players_with_lapsing_streaks(ending_puzzle):
            try:
                lost_streak = await self.stats.get_current_streak(player_id)
                update = await self.mood.handle_streak_break(player_id, lost_streak=lost_streak)
            except Exception as e:
                logger.error(f"Streak break failed for player {player_id}: {e}", exc_info=True)
                continue
            if update.tier_changed:
                changed.append(player_id)

        if changed:
            logger.info(f"Applied streak breaks for puzzle {ending_puzzle.puzzle_key}: {len(changed)} player(s)")
        return changed

    async def rotate_puzzle(self, now: Optional[datetime] = None) -> Optional[Puzzle]:
        """Manual rotation: snapshot the current week, then advance"""
        now = now or self.clock()
        active = await self.puzzles.get_active_puzzle()
        if active is not None:
            try:
                await self.leaderboard.persist_weekly_leaderboard(active.id)
            except Exception as e:
                logger.error(f"Failed to persist leaderboard before manual rotation: {e}", exc_info=True)
        return await self.puzzles.rotate_to_next_puzzle(now)

    async def persist_weekly_leaderboard(self, puzzle_id: int) -> bool:
        return await self.leaderboard.persist_weekly_leaderboard(puzzle_id)

    async def handle_streak_break(self, player_id: int):
        return await self.mood.handle_streak_break(player_id)

    async def run_housekeeping(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        One maintenance pass: rotation check, duel expiry, wager settlement.

        A failing step is logged and the remaining steps still run.
        """
        now = now or self.clock()
        summary: Dict[str, Any] = {'rotation': None, 'duels': None, 'settled': 0}

        try:
            summary['rotation'] = await self.check_and_rotate(now)
        except Exception as e:
            logger.error(f"Rotation check failed: {e}", exc_info=True)

        if self.duels is not None:
            try:
                summary['duels'] = await self.duels.expire_stale_duels(now)
            except Exception as e:
                logger.error(f"Duel expiry failed: {e}", exc_info=True)

            try:
                summary['settled'] = await self.duels.settle_outstanding_wagers()
            except Exception as e:
                logger.error(f"Wager settlement retry failed: {e}", exc_info=True)

        logger.info(f"Housekeeping pass complete: {summary}")
        return summary
