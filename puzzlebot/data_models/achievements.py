"""
Static achievement catalog.

Seeded into the achievements table on database initialization. Ids are stable
and double as the rule keys evaluated by AchievementService.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class AchievementDefinition:
    """One immutable catalog entry."""
    id: str
    key: str
    name: str
    description: str
    emoji: str
    category: str  # streak, solve, speed, efficiency, comeback, special
    tier: str      # bronze, silver, gold, platinum, legendary
    is_secret: bool = False


ACHIEVEMENT_CATALOG: Tuple[AchievementDefinition, ...] = (
    # Streak
    AchievementDefinition('streak_first_blood', 'FIRST_BLOOD', 'First Blood',
                          'Solve your first puzzle', '🎯', 'streak', 'bronze'),
    AchievementDefinition('streak_hat_trick', 'HAT_TRICK', 'Hat Trick',
                          'Solve 3 puzzles in a row', '🎩', 'streak', 'bronze'),
    AchievementDefinition('streak_week_warrior', 'WEEK_WARRIOR', 'Week Warrior',
                          'Maintain a 7-week streak', '⚔️', 'streak', 'silver'),
    AchievementDefinition('streak_unstoppable', 'UNSTOPPABLE', 'Unstoppable Force',
                          'Maintain a 15-week streak', '💪', 'streak', 'gold'),
    AchievementDefinition('streak_legendary', 'LEGENDARY_STREAK', 'Legendary Streak',
                          'Maintain a 25-week streak', '🔥', 'streak', 'legendary'),

    # Solve count
    AchievementDefinition('solve_rookie', 'ROOKIE', 'Rookie Riddler',
                          'Solve 5 total puzzles', '🌱', 'solve', 'bronze'),
    AchievementDefinition('solve_veteran', 'VETERAN', 'Veteran Solver',
                          'Solve 20 total puzzles', '🎖️', 'solve', 'silver'),
    AchievementDefinition('solve_master', 'MASTER', 'Puzzle Master',
                          'Solve 50 total puzzles', '👑', 'solve', 'gold'),
    AchievementDefinition('solve_legend', 'LEGEND', 'Living Legend',
                          'Solve 100 total puzzles', '🏆', 'solve', 'legendary'),

    # Speed
    AchievementDefinition('speed_flash', 'FLASH', 'The Flash',
                          'Solve a puzzle in under 1 minute', '⚡', 'speed', 'gold'),
    AchievementDefinition('speed_speedrun', 'SPEEDRUN', 'Speedrunner',
                          'Solve a puzzle in under 5 minutes', '🏃', 'speed', 'silver'),
    AchievementDefinition('speed_quick_draw', 'QUICK_DRAW', 'Quick Draw',
                          'Finish in 1st place 5 times', '🥇', 'speed', 'gold'),

    # Efficiency
    AchievementDefinition('efficiency_one_shot', 'ONE_SHOT', 'One-Shot Wonder',
                          'Solve a puzzle on your first guess', '🎯', 'efficiency', 'legendary'),
    AchievementDefinition('efficiency_sharp', 'SHARP_SHOOTER', 'Sharp Shooter',
                          'Solve 10 puzzles with 3 or fewer guesses', '🎪', 'efficiency', 'gold'),
    AchievementDefinition('efficiency_sniper', 'SNIPER', 'Sniper',
                          'Maintain an average of 2 guesses or less', '🎯', 'efficiency', 'platinum'),

    # Comeback
    AchievementDefinition('comeback_phoenix', 'PHOENIX', 'Phoenix Rising',
                          'Start a new 5-week streak after breaking one', '🔥', 'comeback', 'silver'),
    AchievementDefinition('comeback_redemption', 'REDEMPTION', 'Redemption Arc',
                          'Regain your best streak after losing it', '✨', 'comeback', 'gold'),

    # Special
    AchievementDefinition('special_night_owl', 'NIGHT_OWL', 'Night Owl',
                          'Solve a puzzle between 11pm and 3am', '🦉', 'special', 'bronze', True),
    AchievementDefinition('special_early_bird', 'EARLY_BIRD', 'Early Bird',
                          'Solve a puzzle between 5am and 7am', '🐦', 'special', 'bronze', True),
    AchievementDefinition('special_lucky13', 'LUCKY_13', 'Lucky 13',
                          'Solve a puzzle on your 13th guess', '🍀', 'special', 'silver', True),
    AchievementDefinition('special_perfectionist', 'PERFECTIONIST', 'The Perfectionist',
                          'Reach tier 6 (The Worshipper)', '💎', 'special', 'platinum'),
    AchievementDefinition('special_comeback_kid', 'COMEBACK_KID', 'Comeback Kid',
                          'Solve after 10+ incorrect guesses', '🎭', 'special', 'bronze', True),
    AchievementDefinition('special_century_club', 'CENTURY_CLUB', 'Century Club',
                          'Make 100 total guesses (correct or not)', '💯', 'special', 'silver'),
    AchievementDefinition('special_social_butterfly', 'SOCIAL_BUTTERFLY', 'Social Butterfly',
                          'Check the leaderboard 25 times', '🦋', 'special', 'bronze', True),
)

ACHIEVEMENTS_BY_ID = {definition.id: definition for definition in ACHIEVEMENT_CATALOG}
