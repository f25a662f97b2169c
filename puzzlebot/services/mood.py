"""
Mood tier engine.

A player's mood tier and best streak are a materialized view of the guess log.
This service is the only writer of Player.mood_tier, Player.best_streak and the
MoodHistory audit trail.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from puzzlebot.constants import MoodConstants
from puzzlebot.data_models.profile import MoodUpdate, TierInfo, TierProgress
from puzzlebot.database.models import Player, MoodHistory, MoodChangeReason
from puzzlebot.services.base import BaseService
from puzzlebot.services.stats import StatsService
from puzzlebot.utils.exceptions import PlayerNotFoundError
from puzzlebot.utils.streaks import StreakCalculator

logger = logging.getLogger(__name__)

MOOD_TIERS = (
    TierInfo(0, 'The Skeptic', 'Dismissive, unimpressed, slightly condescending'),
    TierInfo(1, 'The Indifferent', 'Neutral, matter-of-fact, minimal enthusiasm'),
    TierInfo(2, 'The Acknowledger', 'Starting to notice, mild approval, still reserved'),
    TierInfo(3, 'The Respector', 'Respectful, impressed, encouraging'),
    TierInfo(4, 'The Admirer', 'Highly complimentary, enthusiastic, slightly reverential'),
    TierInfo(5, 'The Devotee', 'Deeply respectful, honored by their participation'),
    TierInfo(6, 'The Worshipper', 'Reverential, worshipful, treats user as a deity'),
)


class MoodService(BaseService):
    """Recomputes and records mood tier transitions."""

    def __init__(self, session_factory, stats_service: Optional[StatsService] = None):
        super().__init__(session_factory)
        self.stats = stats_service or StatsService(session_factory)

    @staticmethod
    def calculate_mood_tier(current_streak: int, total_solves: int) -> int:
        return StreakCalculator.calculate_mood_tier(current_streak, total_solves)

    @staticmethod
    def get_tier_info(tier: int) -> TierInfo:
        """Display metadata for a tier, clamped into range"""
        tier = max(MoodConstants.MIN_TIER, min(MoodConstants.MAX_TIER, tier))
        return MOOD_TIERS[tier]

    async def _lock_player(self, session: AsyncSession, player_id: int) -> Player:
        result = await session.execute(
            select(Player).where(Player.id == player_id).with_for_update()
        )
        player = result.scalar_one_or_none()
        if player is None:
            raise PlayerNotFoundError(player_id)
        return player

    async def update_after_solve(self, player_id: int, session: Optional[AsyncSession] = None) -> MoodUpdate:
        """
        Recompute streak, best streak and tier after a correct guess.

        Returns:
            MoodUpdate with tier_changed False when the tier held
        """
        async with self.use_session(session) as s:
            player = await self._lock_player(s, player_id)

            streak = await self.stats.get_current_streak(player_id, s)
            total_solves = await self.stats.get_total_solves(player_id, s)
            old_tier = player.mood_tier
            new_tier = self.calculate_mood_tier(streak, total_solves)

            if streak > player.best_streak:
                player.best_streak = streak

            if new_tier == old_tier:
                await s.flush()
                return MoodUpdate(False, old_tier, new_tier, streak, total_solves)

            player.mood_tier = new_tier
            s.add(MoodHistory(
                player_id=player_id,
                old_tier=old_tier,
                new_tier=new_tier,
                reason=MoodChangeReason.TIER_UP if new_tier > old_tier else MoodChangeReason.SOLVE,
                streak_at_change=streak,
                total_solves_at_change=total_solves
            ))
            await s.flush()

        logger.info(f"Player {player_id} mood tier {old_tier} -> {new_tier} (streak {streak}, solves {total_solves})")
        return MoodUpdate(True, old_tier, new_tier, streak, total_solves)

    async def handle_streak_break(
        self,
        player_id: int,
        total_solves: Optional[int] = None,
        lost_streak: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> MoodUpdate:
        """
        Drop a player's tier to the band their solve volume earns.

        Args:
            player_id: Player whose streak ended
            total_solves: Solve count to band on (recomputed when omitted)
            lost_streak: Length of the streak that ended (recomputed when omitted);
                stored on the history entry for comeback achievements

        Returns:
            MoodUpdate; no history entry is written when the tier holds
        """
        async with self.use_session(session) as s:
            player = await self._lock_player(s, player_id)

            if total_solves is None:
                total_solves = await self.stats.get_total_solves(player_id, s)
            if lost_streak is None:
                lost_streak = await self.stats.get_current_streak(player_id, s)

            old_tier = player.mood_tier
            new_tier = StreakCalculator.streak_break_tier(total_solves)

            if new_tier == old_tier:
                return MoodUpdate(False, old_tier, new_tier, 0, total_solves)

            player.mood_tier = new_tier
            s.add(MoodHistory(
                player_id=player_id,
                old_tier=old_tier,
                new_tier=new_tier,
                reason=MoodChangeReason.STREAK_BREAK,
                streak_at_change=lost_streak,
                total_solves_at_change=total_solves
            ))
            await s.flush()

        logger.info(f"Player {player_id} streak of {lost_streak} broke, mood tier {old_tier} -> {new_tier}")
        return MoodUpdate(True, old_tier, new_tier, 0, total_solves)

    async def get_progress_to_next_tier(self, player_id: int) -> TierProgress:
        """Streak and solves still needed for the next tier"""
        async with self.get_session() as s:
            player = await s.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)

            streak = await self.stats.get_current_streak(player_id, s)
            total_solves = await self.stats.get_total_solves(player_id, s)

        if player.mood_tier >= MoodConstants.MAX_TIER:
            return TierProgress(player.mood_tier, None, streak, total_solves, 0, 0)

        next_tier = player.mood_tier + 1
        streak_target = next_tier * MoodConstants.STREAK_DIVISOR
        solves_target = next_tier * MoodConstants.SOLVES_DIVISOR

        return TierProgress(
            current_tier=player.mood_tier,
            next_tier=next_tier,
            current_streak=streak,
            total_solves=total_solves,
            streak_needed=max(0, streak_target - streak),
            solves_needed=max(0, solves_target - total_solves)
        )

    async def get_mood_history(self, player_id: int, limit: int = 50) -> List[MoodHistory]:
        """Tier transitions, newest first"""
        async with self.get_session() as s:
            result = await s.execute(
                select(MoodHistory)
                .where(MoodHistory.player_id == player_id)
                .order_by(MoodHistory.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def replay_mood_tier(self, player_id: int) -> int:
        """Derive the tier from the guess log alone, without writing"""
        async with self.get_session() as s:
            streak = await self.stats.get_current_streak(player_id, s)
            total_solves = await self.stats.get_total_solves(player_id, s)
        return self.calculate_mood_tier(streak, total_solves)
