from dataclasses import replace
from datetime import datetime

import pytest

from puzzlebot.data_models.achievements import ACHIEVEMENT_CATALOG
from puzzlebot.services.achievements import AchievementContext, AchievementService, evaluate_rules

BASE = AchievementContext(
    total_solves=2,
    total_guesses=8,
    avg_guesses_per_solve=4.0,
    current_streak=2,
    best_streak=2,
    first_place_finishes=0,
    efficient_solves=0,
    max_lost_streak=0,
    mood_tier=0,
    guess_number=4,
    local_hour=12,
    minutes_since_start=600.0,
)


def unlocked(**changes):
    return evaluate_rules(replace(BASE, **changes))


class TestRules:
    def test_nothing_for_an_ordinary_solve(self):
        assert unlocked() == []

    def test_first_solve_on_first_guess(self):
        assert unlocked(total_solves=1, current_streak=1, guess_number=1) == [
            'streak_first_blood', 'efficiency_one_shot'
        ]

    def test_thresholds_fire_only_on_crossing(self):
        assert 'solve_rookie' in unlocked(total_solves=5)
        assert 'solve_rookie' not in unlocked(total_solves=6)
        assert 'streak_hat_trick' in unlocked(current_streak=3)

    def test_speed_windows(self):
        assert unlocked(minutes_since_start=0.5) == ['speed_flash', 'speed_speedrun']
        assert unlocked(minutes_since_start=3) == ['speed_speedrun']
        assert unlocked(minutes_since_start=None) == []

    @pytest.mark.parametrize('hour,expected', [
        (23, ['special_night_owl']),
        (2, ['special_night_owl']),
        (3, []),
        (5, ['special_early_bird']),
        (6, ['special_early_bird']),
        (7, []),
    ])
    def test_time_of_day(self, hour, expected):
        assert unlocked(local_hour=hour) == expected

    def test_sniper_needs_volume_and_accuracy(self):
        assert 'efficiency_sniper' in unlocked(total_solves=10, avg_guesses_per_solve=2.0)
        assert 'efficiency_sniper' not in unlocked(total_solves=10, avg_guesses_per_solve=2.1)
        assert 'efficiency_sniper' not in unlocked(total_solves=9, avg_guesses_per_solve=1.0)

    def test_comebacks(self):
        assert 'comeback_phoenix' in unlocked(current_streak=5, best_streak=8)
        assert 'comeback_phoenix' not in unlocked(current_streak=5, best_streak=5)
        assert 'comeback_redemption' in unlocked(current_streak=6, best_streak=6, max_lost_streak=6)
        assert 'comeback_redemption' not in unlocked(current_streak=6, best_streak=6, max_lost_streak=4)

    def test_guess_number_specials(self):
        assert 'special_lucky13' in unlocked(guess_number=13)
        assert 'special_comeback_kid' in unlocked(guess_number=10)
        assert 'special_century_club' in unlocked(total_guesses=100)

    def test_results_follow_catalog_order(self):
        ids = unlocked(total_solves=1, current_streak=1, guess_number=13, minutes_since_start=0.1, mood_tier=6)
        catalog_order = [d.id for d in ACHIEVEMENT_CATALOG]
        assert ids == sorted(ids, key=catalog_order.index)


class TestAwarding:
    async def test_first_solve_unlocks_once(self, make_player, solve_weeks, achievements, clock):
        player = await make_player()
        [result] = await solve_weeks(player.id, 1)

        ids = [a.achievement_id for a in result.new_achievements]
        assert 'streak_first_blood' in ids
        assert 'efficiency_one_shot' in ids

        again = await achievements.check_and_award(player.id, 1, 1, clock())
        assert again == []

        stored = [a.achievement_id for a in await achievements.get_player_achievements(player.id)]
        assert sorted(stored) == sorted(ids)

    async def test_unlock_is_idempotent(self, make_player, achievements):
        player = await make_player()
        first = await achievements.unlock(player.id, 'special_lucky13')
        second = await achievements.unlock(player.id, 'special_lucky13')

        assert first.name == 'Lucky 13'
        assert second is None
        assert len(await achievements.get_player_achievements(player.id)) == 1

    async def test_unknown_achievement(self, make_player, achievements):
        player = await make_player()
        with pytest.raises(ValueError):
            await achievements.unlock(player.id, 'made_up')

    async def test_local_hour_uses_configured_timezone(self, db, make_player, puzzle_ops, stats):
        player = await make_player()
        puzzle = await puzzle_ops.create_puzzle('night', 'Falling Temperature')
        service = AchievementService(db.session_factory, stats, timezone_name='America/New_York')

        # 04:30 UTC is 23:30 the previous evening in New York
        awarded = await service.check_and_award(player.id, puzzle.id, 2, datetime(2025, 1, 7, 4, 30))
        assert [a.achievement_id for a in awarded] == ['special_night_owl']

    async def test_catalog_hides_secrets(self, achievements):
        visible = await achievements.get_catalog()
        everything = await achievements.get_catalog(include_secret=True)

        assert len(everything) == len(ACHIEVEMENT_CATALOG)
        assert len(visible) == sum(1 for d in ACHIEVEMENT_CATALOG if not d.is_secret)
        assert [a.id for a in everything] == [d.id for d in ACHIEVEMENT_CATALOG]

    async def test_progress(self, make_player, achievements):
        player = await make_player()
        await achievements.unlock(player.id, 'streak_first_blood')

        progress = await achievements.get_progress(player.id)
        assert progress.unlocked == 1
        assert progress.total == len(ACHIEVEMENT_CATALOG)
        assert progress.by_category['streak'].unlocked == 1
        assert progress.by_category['streak'].total == 5
        assert progress.by_category['speed'].unlocked == 0

    async def test_social_butterfly_on_25th_view(self, make_player, leaderboard):
        player = await make_player()
        for _ in range(24):
            assert await leaderboard.record_leaderboard_view(player.id) == []

        awarded = await leaderboard.record_leaderboard_view(player.id)
        assert [a.achievement_id for a in awarded] == ['special_social_butterfly']
        assert await leaderboard.record_leaderboard_view(player.id) == []
