"""
Custom exceptions for the progression engine with user-friendly error messages.

Every exception carries a stable ``reason`` code so callers can branch on it
instead of parsing message text, plus a ``user_message`` ready for display.
"""

from enum import Enum


class ErrorReason(Enum):
    NO_ACTIVE_PUZZLE = "no_active_puzzle"
    ALREADY_SOLVED = "already_solved"
    PLAYER_NOT_FOUND = "player_not_found"
    PUZZLE_NOT_FOUND = "puzzle_not_found"
    DUEL_NOT_FOUND = "duel_not_found"
    SELF_CHALLENGE = "self_challenge"
    OPPONENT_HAS_PENDING = "opponent_has_pending"
    CHALLENGER_HAS_PENDING = "challenger_has_pending"
    CHALLENGER_IN_ACTIVE_DUEL = "challenger_in_active_duel"
    OPPONENT_IN_ACTIVE_DUEL = "opponent_in_active_duel"
    INVALID_WAGER = "invalid_wager"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NO_DUEL_PUZZLES = "no_duel_puzzles"
    NOT_A_PARTICIPANT = "not_a_participant"
    INVALID_DUEL_STATE = "invalid_duel_state"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    DATABASE_ERROR = "database_error"


class PuzzleArcError(Exception):
    """Base exception for progression engine errors."""
    reason = ErrorReason.DATABASE_ERROR

    def __init__(self, message: str, user_message: str = None, reason: ErrorReason = None):
        super().__init__(message)
        self.user_message = user_message or message
        if reason is not None:
            self.reason = reason


class NoActivePuzzleError(PuzzleArcError):
    """Raised when a guess arrives while no puzzle is active."""
    reason = ErrorReason.NO_ACTIVE_PUZZLE

    def __init__(self):
        super().__init__(
            "No active puzzle",
            "❌ There's no active puzzle right now. Check back soon!"
        )


class AlreadySolvedError(PuzzleArcError):
    """Raised when a player guesses on a puzzle they already solved."""
    reason = ErrorReason.ALREADY_SOLVED

    def __init__(self, player_id: int, puzzle_id: int):
        super().__init__(
            f"Player {player_id} already solved puzzle {puzzle_id}",
            "✅ You've already solved this puzzle! Wait for the next one."
        )
        self.player_id = player_id
        self.puzzle_id = puzzle_id


class PlayerNotFoundError(PuzzleArcError):
    """Raised when a player id does not resolve to a player."""
    reason = ErrorReason.PLAYER_NOT_FOUND

    def __init__(self, player_ref):
        super().__init__(
            f"Player '{player_ref}' not found",
            "❌ Player not found. They may need to play the game first!"
        )


class PuzzleNotFoundError(PuzzleArcError):
    """Raised when a puzzle id or key does not resolve to a puzzle."""
    reason = ErrorReason.PUZZLE_NOT_FOUND

    def __init__(self, puzzle_ref):
        super().__init__(
            f"Puzzle '{puzzle_ref}' not found",
            "❌ That puzzle doesn't exist."
        )


class DuelNotFoundError(PuzzleArcError):
    """Raised when a duel id does not resolve to a duel."""
    reason = ErrorReason.DUEL_NOT_FOUND

    def __init__(self, duel_ref):
        super().__init__(
            f"Duel '{duel_ref}' not found",
            "❌ Duel not found."
        )


class DuelPreconditionFailedError(PuzzleArcError):
    """Raised when a duel cannot be created or joined."""

    def __init__(self, reason: ErrorReason, user_message: str):
        super().__init__(
            f"Duel precondition failed: {reason.value}",
            f"❌ {user_message}",
            reason=reason
        )


class InvalidDuelStateError(PuzzleArcError):
    """Raised when an action is not legal for the duel's current status."""
    reason = ErrorReason.INVALID_DUEL_STATE

    def __init__(self, duel_id: int, status: str, action: str):
        super().__init__(
            f"Cannot {action} duel {duel_id} in status {status}",
            f"❌ This duel is {status}, you can't {action} it."
        )
        self.duel_id = duel_id
        self.status = status
        self.action = action


class OracleUnavailableError(PuzzleArcError):
    """Raised by oracle adapters; recovered locally with exact matching."""
    reason = ErrorReason.ORACLE_UNAVAILABLE

    def __init__(self, provider: str, details: str = None):
        super().__init__(
            f"Correctness oracle '{provider}' unavailable: {details}",
            "❌ Answer checking is degraded right now."
        )
        self.provider = provider


class DatabaseError(PuzzleArcError):
    """Raised when database operations fail."""
    reason = ErrorReason.DATABASE_ERROR

    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Database error during {operation}: {details}",
            "❌ Database error occurred. Please try again later."
        )
