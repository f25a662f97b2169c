"""
Leaderboard data models.

Provides immutable data transfer objects for weekly and all-time rankings.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class WeeklyLeaderboardRow:
    """Single weekly ranking row."""
    rank: int
    player_id: int
    display_name: str
    solve_time: datetime
    total_guesses: int


@dataclass(frozen=True)
class WeeklyLeaderboard:
    """Ranking for one puzzle, live or persisted."""
    puzzle_id: int
    puzzle_key: str
    week_start_date: Optional[datetime]
    entries: List[WeeklyLeaderboardRow]
    is_persisted: bool = False


@dataclass(frozen=True)
class AllTimeLeaderboardRow:
    """Single all-time ranking row."""
    rank: int
    player_id: int
    display_name: str
    total_solves: int
    avg_guesses_per_solve: float
    mood_tier: int
    best_streak: int


@dataclass(frozen=True)
class LeaderboardWeek:
    """A week that has a persisted snapshot."""
    puzzle_id: int
    puzzle_key: str
    week_start_date: Optional[datetime]
    participants: int
