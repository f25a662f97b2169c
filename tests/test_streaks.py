import warnings
from datetime import date, datetime, timedelta

from sqlalchemy.exc import SAWarning

from puzzlebot.utils.streaks import StreakCalculator

MONDAY = date(2025, 1, 6)


def weeks(*offsets):
    return [MONDAY + timedelta(days=offset) for offset in offsets]


class TestCurrentStreak:
    def test_no_solves(self):
        assert StreakCalculator.current_streak([]) == 0

    def test_consecutive_weeks(self):
        assert StreakCalculator.current_streak(weeks(0, 7, 14)) == 3

    def test_gap_of_ten_days_still_consecutive(self):
        assert StreakCalculator.current_streak(weeks(0, 10)) == 2

    def test_gap_of_eleven_days_breaks(self):
        assert StreakCalculator.current_streak(weeks(0, 11)) == 1

    def test_counts_back_from_latest_solve(self):
        # Old run of three, then a break, then a run of two
        assert StreakCalculator.current_streak(weeks(0, 7, 14, 35, 42)) == 2

    def test_duplicates_and_datetimes_collapse(self):
        starts = [
            datetime(2025, 1, 6, 12, 0),
            datetime(2025, 1, 6, 18, 30),
            datetime(2025, 1, 13, 12, 0),
            None,
        ]
        assert StreakCalculator.current_streak(starts) == 2


class TestMoodTier:
    def test_lower_gate_wins(self):
        assert StreakCalculator.calculate_mood_tier(4, 20) == 2
        assert StreakCalculator.calculate_mood_tier(20, 5) == 0

    def test_clamped_to_max(self):
        assert StreakCalculator.calculate_mood_tier(14, 100) == 6

    def test_streak_break_bands(self):
        assert StreakCalculator.streak_break_tier(5) == 0
        assert StreakCalculator.streak_break_tier(6) == 1
        assert StreakCalculator.streak_break_tier(15) == 1
        assert StreakCalculator.streak_break_tier(16) == 2


class TestSolveLog:
    async def test_week_starts_collapse_per_week(self, make_player, start_week, guess_ops, stats, clock):
        ada = await make_player('Ada')
        await start_week()
        await guess_ops.submit_guess(ada.id, 'Falling Temperature')
        # A second puzzle activated in the same week
        await start_week(days_later=0)
        await guess_ops.submit_guess(ada.id, 'Falling Temperature')

        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            week_starts = await stats.get_solved_week_starts(ada.id)

        assert week_starts == [clock()]
        assert await stats.get_total_solves(ada.id) == 2
        assert await stats.get_current_streak(ada.id) == 1
