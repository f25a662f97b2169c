"""
Player progression data models.

Provides immutable data transfer objects returned by the guess, mood,
achievement and duel operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PlayerStats:
    """Statistics derived from a player's guess log."""
    player_id: int
    total_solves: int
    total_guesses: int
    current_streak: int
    best_streak: int
    first_place_finishes: int
    avg_guesses_per_solve: float
    mood_tier: int


@dataclass(frozen=True)
class TierInfo:
    """Display metadata for a mood tier."""
    tier: int
    name: str
    description: str


@dataclass(frozen=True)
class TierProgress:
    """What a player still needs for the next mood tier."""
    current_tier: int
    next_tier: Optional[int]  # None at the top tier
    current_streak: int
    total_solves: int
    streak_needed: int
    solves_needed: int


@dataclass(frozen=True)
class MoodUpdate:
    """Outcome of a tier recomputation."""
    tier_changed: bool
    old_tier: int
    new_tier: int
    current_streak: int = 0
    total_solves: int = 0


@dataclass(frozen=True)
class UnlockedAchievementInfo:
    """A newly or previously unlocked achievement."""
    achievement_id: str
    name: str
    description: str
    emoji: str
    category: str
    tier: str
    unlocked_at: datetime


@dataclass(frozen=True)
class CategoryProgress:
    unlocked: int
    total: int


@dataclass(frozen=True)
class AchievementProgress:
    """Unlocked counts overall and per category."""
    unlocked: int
    total: int
    percentage: float
    by_category: Dict[str, CategoryProgress]


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of the pre-filter / oracle / fallback pipeline."""
    is_correct: bool
    explanation: str
    confidence: float = 0.0
    corrected_spelling: Optional[str] = None
    used_fallback: bool = False
    rejected_by_prefilter: bool = False


@dataclass(frozen=True)
class GuessResult:
    """Everything the transport needs to answer a weekly guess."""
    is_correct: bool
    guess_number: int
    explanation: str
    confidence: float = 0.0
    corrected_spelling: Optional[str] = None
    used_fallback: bool = False
    tier_changed: bool = False
    old_tier: Optional[int] = None
    new_tier: Optional[int] = None
    new_achievements: List[UnlockedAchievementInfo] = field(default_factory=list)
    celebration_url: Optional[str] = None


@dataclass(frozen=True)
class DuelGuessResult:
    """Outcome of a guess inside a duel."""
    duel_id: int
    is_correct: bool
    explanation: str
    guess_number: int = 0
    duel_completed: bool = False
    waiting_for_opponent: bool = False
    already_solved: bool = False
    winner_id: Optional[int] = None
    is_draw: bool = False
    coins_transferred: int = 0
    used_fallback: bool = False


@dataclass(frozen=True)
class DuelStats:
    """Aggregate duel record for one player."""
    player_id: int
    total_duels: int
    wins: int
    losses: int
    draws: int
    win_rate: float
    active_duels: int
    pending_incoming: int
    consecutive_wins: int
