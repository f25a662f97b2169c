"""
Engine-wide constants for the Puzzle Arc progression engine.

This module contains the magic numbers of the progression rules so the
services read as rules rather than as arithmetic.
"""

class MoodConstants:
    """Constants related to mood tier calculation."""

    MIN_TIER = 0
    MAX_TIER = 6

    # Tier formula: min(streak // STREAK_DIVISOR, solves // SOLVES_DIVISOR)
    STREAK_DIVISOR = 2
    SOLVES_DIVISOR = 10

    # Streak-break banding on total solves: <= 5 -> 0, <= 15 -> 1, else 2
    BREAK_BAND_SKEPTIC_MAX_SOLVES = 5
    BREAK_BAND_INDIFFERENT_MAX_SOLVES = 15
    BREAK_BAND_FLOOR_TIER = 2

class StreakConstants:
    """Constants for weekly streak derivation."""

    # Largest gap in days between consecutive solved week starts
    MAX_WEEK_GAP_DAYS = 10

class WordMatchConstants:
    """Constants for the significant-word pre-filter."""

    ARTICLES = frozenset({'a', 'an', 'the'})
    MAX_TYPO_DISTANCE = 2

class OracleConstants:
    """Constants for the correctness oracle adapters."""

    # Offline oracle whole-answer typo tolerance
    RULE_BASED_MAX_DISTANCE = 2
    RULE_BASED_MIN_GUESS_LENGTH = 3
    TYPO_CONFIDENCE = 0.9

class AchievementConstants:
    """Constants for achievement rule thresholds."""

    FLASH_MINUTES = 1
    SPEEDRUN_MINUTES = 5
    QUICK_DRAW_FIRST_PLACES = 5
    SHARP_SHOOTER_MAX_GUESSES = 3
    SHARP_SHOOTER_PUZZLES = 10
    SNIPER_MIN_SOLVES = 10
    SNIPER_MAX_AVERAGE = 2.0
    PHOENIX_STREAK = 5
    REDEMPTION_MIN_STREAK = 5
    LUCKY_GUESS_NUMBER = 13
    COMEBACK_KID_MIN_GUESS = 10
    CENTURY_CLUB_GUESSES = 100
    SOCIAL_BUTTERFLY_VIEWS = 25

    # Local-time hour windows, [start, end)
    NIGHT_OWL_START_HOUR = 23
    NIGHT_OWL_END_HOUR = 3
    EARLY_BIRD_START_HOUR = 5
    EARLY_BIRD_END_HOUR = 7

class LedgerReasons:
    """Reason strings written to the coin ledger."""

    STARTING_BALANCE = "STARTING_BALANCE"
    DUEL_WIN = "DUEL_WIN"
    DUEL_LOSS = "DUEL_LOSS"
    ADMIN_GRANT = "ADMIN_GRANT"

class CelebrationConstants:
    """Search terms and fallbacks for celebration assets."""

    GIPHY_RANDOM_URL = "https://api.giphy.com/v1/gifs/random"

    TIER_SEARCH_TERMS = {
        0: ('nice', 'ok', 'good job'),
        1: ('good', 'correct', 'nice work'),
        2: ('great', 'well done', 'nice'),
        3: ('excellent', 'impressive', 'amazing'),
        4: ('spectacular', 'incredible', 'outstanding'),
        5: ('legendary', 'epic', 'magnificent'),
        6: ('godlike', 'divine', 'supreme', 'ultimate'),
    }

    FALLBACK_GIFS = (
        'https://media.giphy.com/media/g9582DNuQppxC/giphy.gif',
        'https://media.giphy.com/media/kyLYXonQYYfwYDIeZl/giphy.gif',
        'https://media.giphy.com/media/3oz8xAFtqoOUUrsh7W/giphy.gif',
        'https://media.giphy.com/media/111ebonMs90YLu/giphy.gif',
        'https://media.giphy.com/media/artj92V8o75VPL7AeQ/giphy.gif',
        'https://media.giphy.com/media/xTiN0CNHgoRf1Ha7CM/giphy.gif',
    )

    DEFAULT_GIF = FALLBACK_GIFS[0]
