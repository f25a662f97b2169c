from datetime import date, datetime
from typing import Iterable, List, Union

from puzzlebot.constants import MoodConstants, StreakConstants

class StreakCalculator:
    """Pure streak and tier arithmetic over solve history"""

    @staticmethod
    def distinct_weeks(week_starts: Iterable[Union[date, datetime]]) -> List[date]:
        """
        Reduce solved week starts to distinct calendar dates, most recent first

        Args:
            week_starts: week_start_date of every solved puzzle (duplicates allowed)

        Returns:
            Distinct dates sorted descending
        """
        weeks = {
            week.date() if isinstance(week, datetime) else week
            for week in week_starts
            if week is not None
        }
        return sorted(weeks, reverse=True)

    @staticmethod
    def current_streak(week_starts: Iterable[Union[date, datetime]]) -> int:
        """
        Count consecutive solved weeks, walking back from the most recent one

        A gap of up to MAX_WEEK_GAP_DAYS between consecutive week starts still
        counts as consecutive, which absorbs drift in puzzle rotation timing.

        Args:
            week_starts: week_start_date of every solved puzzle

        Returns:
            Streak length, 0 when nothing was solved
        """
        weeks = StreakCalculator.distinct_weeks(week_starts)
        if not weeks:
            return 0

        streak = 1
        for newer, older in zip(weeks, weeks[1:]):
            if (newer - older).days > StreakConstants.MAX_WEEK_GAP_DAYS:
                break
            streak += 1

        return streak

    @staticmethod
    def calculate_mood_tier(current_streak: int, total_solves: int) -> int:
        """
        Calculate mood tier from streak and total solves

        Both gates must justify the tier; the lower one wins.

        Returns:
            Tier clamped to [MIN_TIER, MAX_TIER]
        """
        streak_tier = current_streak // MoodConstants.STREAK_DIVISOR
        solves_tier = total_solves // MoodConstants.SOLVES_DIVISOR
        tier = min(streak_tier, solves_tier)
        return max(MoodConstants.MIN_TIER, min(MoodConstants.MAX_TIER, tier))

    @staticmethod
    def streak_break_tier(total_solves: int) -> int:
        """Coarse tier floor applied when a streak breaks, from solve volume alone"""
        if total_solves <= MoodConstants.BREAK_BAND_SKEPTIC_MAX_SOLVES:
            return 0
        if total_solves <= MoodConstants.BREAK_BAND_INDIFFERENT_MAX_SOLVES:
            return 1
        return MoodConstants.BREAK_BAND_FLOOR_TIER
