from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index, text
)
from sqlalchemy.orm import declarative_base, relationship
from enum import Enum

from puzzlebot.utils.time_utils import utcnow

Base = declarative_base()

class MoodChangeReason(Enum):
    SOLVE = "solve"
    TIER_UP = "tier_up"
    STREAK_BREAK = "streak_break"

class AchievementCategory(Enum):
    STREAK = "streak"
    SOLVE = "solve"
    SPEED = "speed"
    EFFICIENCY = "efficiency"
    COMEBACK = "comeback"
    SPECIAL = "special"

class DuelStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"

class Player(Base):
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    external_id = Column(String(100), unique=True, nullable=False, index=True)  # Opaque transport identity
    display_name = Column(String(100), nullable=False)

    # Materialized view of the guess log, written only by MoodService
    mood_tier = Column(Integer, nullable=False, default=0)
    best_streak = Column(Integer, nullable=False, default=0)

    # Economy
    hint_coins = Column(Integer, nullable=False, default=0)  # Cache of CoinLedger
    leaderboard_views = Column(Integer, nullable=False, default=0)

    # Metadata
    created_at = Column(DateTime, default=utcnow)
    last_active = Column(DateTime, default=utcnow)

    coin_history = relationship("CoinLedger", back_populates="player", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint('mood_tier >= 0 AND mood_tier <= 6', name='ck_player_mood_tier_range'),
        CheckConstraint('hint_coins >= 0', name='ck_player_hint_coins_non_negative'),
    )

    def __repr__(self):
        return f"<Player(id={self.id}, name='{self.display_name}', tier={self.mood_tier})>"

class Puzzle(Base):
    __tablename__ = 'puzzles'

    id = Column(Integer, primary_key=True)
    puzzle_key = Column(String(100), nullable=False, unique=True)
    answer = Column(String(255), nullable=False)
    image_path = Column(String(500), nullable=True)

    # Stamped when the puzzle is activated
    week_start_date = Column(DateTime, nullable=True)
    week_end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)

    # At most one active puzzle
    __table_args__ = (
        Index(
            'uq_puzzles_single_active', 'is_active', unique=True,
            sqlite_where=text('is_active = 1'),
            postgresql_where=text('is_active'),
        ),
    )

    def __repr__(self):
        return f"<Puzzle(id={self.id}, key='{self.puzzle_key}', active={self.is_active})>"

class Guess(Base):
    """Append-only guess log; never updated or deleted."""
    __tablename__ = 'guesses'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    puzzle_id = Column(Integer, ForeignKey('puzzles.id'), nullable=False)
    duel_id = Column(Integer, ForeignKey('duels.id'), nullable=True)  # Set only for duel guesses

    guess_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    guess_number = Column(Integer, nullable=False)
    mood_tier_at_time = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    player = relationship("Player")
    puzzle = relationship("Puzzle")

    __table_args__ = (
        Index('ix_guesses_player_puzzle', 'player_id', 'puzzle_id'),
        Index('ix_guesses_puzzle_correct', 'puzzle_id', 'is_correct'),
    )

    def __repr__(self):
        return (f"<Guess(player_id={self.player_id}, puzzle_id={self.puzzle_id}, "
                f"n={self.guess_number}, correct={self.is_correct})>")

class MoodHistory(Base):
    """Audit trail of tier transitions; the guess log stays the source of truth."""
    __tablename__ = 'mood_history'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    old_tier = Column(Integer, nullable=False)
    new_tier = Column(Integer, nullable=False)
    reason = Column(SQLEnum(MoodChangeReason), nullable=False)
    streak_at_change = Column(Integer, nullable=False, default=0)
    total_solves_at_change = Column(Integer, nullable=False, default=0)
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<MoodHistory(player_id={self.player_id}, {self.old_tier}->{self.new_tier}, {self.reason.value})>"

class Achievement(Base):
    """Static catalog row, seeded from puzzlebot.data_models.achievements."""
    __tablename__ = 'achievements'

    id = Column(String(50), primary_key=True)
    key = Column(String(50), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=False)
    emoji = Column(String(16), nullable=False)
    category = Column(SQLEnum(AchievementCategory), nullable=False)
    tier = Column(String(20), nullable=False)
    is_secret = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<Achievement(id='{self.id}', category={self.category.value})>"

class UnlockedAchievement(Base):
    __tablename__ = 'unlocked_achievements'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    achievement_id = Column(String(50), ForeignKey('achievements.id'), nullable=False)
    unlocked_at = Column(DateTime, nullable=False, default=utcnow)

    achievement = relationship("Achievement")

    # A player unlocks each achievement at most once, ever
    __table_args__ = (UniqueConstraint('player_id', 'achievement_id', name='uq_unlocked_player_achievement'),)

    def __repr__(self):
        return f"<UnlockedAchievement(player_id={self.player_id}, achievement='{self.achievement_id}')>"

class WeeklyLeaderboardEntry(Base):
    """Persisted snapshot row, written once per puzzle when its week ends."""
    __tablename__ = 'weekly_leaderboards'

    id = Column(Integer, primary_key=True)
    week_start_date = Column(DateTime, nullable=True, index=True)
    puzzle_id = Column(Integer, ForeignKey('puzzles.id'), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    solve_time = Column(DateTime, nullable=False)
    total_guesses = Column(Integer, nullable=False)
    rank = Column(Integer, nullable=False)

    player = relationship("Player")

    __table_args__ = (UniqueConstraint('puzzle_id', 'player_id', name='uq_weekly_leaderboard_puzzle_player'),)

    def __repr__(self):
        return f"<WeeklyLeaderboardEntry(puzzle_id={self.puzzle_id}, player_id={self.player_id}, rank={self.rank})>"

class Duel(Base):
    __tablename__ = 'duels'

    id = Column(Integer, primary_key=True)
    challenger_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    opponent_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    puzzle_id = Column(Integer, ForeignKey('puzzles.id'), nullable=False)
    status = Column(SQLEnum(DuelStatus), nullable=False, default=DuelStatus.PENDING)

    # Stakes
    coins_wagered = Column(Integer, nullable=False, default=0)
    coins_settled = Column(Boolean, nullable=False, default=False)

    # Race state
    challenger_solve_time = Column(DateTime, nullable=True)
    opponent_solve_time = Column(DateTime, nullable=True)
    winner_id = Column(Integer, ForeignKey('players.id'), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    challenger = relationship("Player", foreign_keys=[challenger_id])
    opponent = relationship("Player", foreign_keys=[opponent_id])
    winner = relationship("Player", foreign_keys=[winner_id])
    puzzle = relationship("Puzzle")

    # One pending incoming and one pending outgoing challenge per player
    __table_args__ = (
        CheckConstraint('challenger_id <> opponent_id', name='ck_duel_distinct_players'),
        CheckConstraint('coins_wagered >= 0', name='ck_duel_wager_non_negative'),
        Index(
            'uq_duels_pending_opponent', 'opponent_id', unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
        Index(
            'uq_duels_pending_challenger', 'challenger_id', unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    def is_participant(self, player_id: int) -> bool:
        return player_id in (self.challenger_id, self.opponent_id)

    def solve_time_for(self, player_id: int):
        if player_id == self.challenger_id:
            return self.challenger_solve_time
        if player_id == self.opponent_id:
            return self.opponent_solve_time
        return None

    def other_player_id(self, player_id: int) -> int:
        return self.opponent_id if player_id == self.challenger_id else self.challenger_id

    def __repr__(self):
        return f"<Duel(id={self.id}, {self.challenger_id} vs {self.opponent_id}, status={self.status.value})>"

class CoinLedger(Base):
    """
    Atomic hint-coin transaction ledger.

    Each transaction records the change amount, reason, and balance after transaction.
    """
    __tablename__ = 'coin_ledger'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)

    change_amount = Column(Integer, nullable=False)  # Can be positive or negative
    reason = Column(String(50), nullable=False)      # e.g., "DUEL_WIN", "STARTING_BALANCE"
    balance_after = Column(Integer, nullable=False)
    related_duel_id = Column(Integer, ForeignKey('duels.id'), nullable=True)

    timestamp = Column(DateTime, default=utcnow)

    player = relationship("Player", back_populates="coin_history")

    def __repr__(self):
        return f"<CoinLedger(player_id={self.player_id}, amount={self.change_amount}, balance_after={self.balance_after}, reason='{self.reason}')>"
