"""
Duel Operations - head-to-head puzzle races

State machine:
    PENDING -> ACTIVE -> COMPLETED
    PENDING -> DECLINED
    PENDING -> CANCELLED
Terminal states never change.

Completion is serialized per duel: an in-process lock keyed by duel id, a row
lock on the duel, and a conditional UPDATE ... WHERE status = 'active' so
exactly one caller arbitrates and settles. The wager transfer runs in a
savepoint; if it fails the completion still commits with coins_settled False
and settle_outstanding_wagers() retries it later.
"""

import random
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from puzzlebot.config import Config
from puzzlebot.data_models.profile import DuelGuessResult, DuelStats
from puzzlebot.database.models import Duel, DuelStatus, Guess, Player, Puzzle
from puzzlebot.operations.player_operations import PlayerOperations
from puzzlebot.services.answer_validation import AnswerValidator
from puzzlebot.utils.exceptions import (
    DuelNotFoundError, DuelPreconditionFailedError, ErrorReason,
    InvalidDuelStateError, PlayerNotFoundError
)
from puzzlebot.utils.locks import KeyedLock
from puzzlebot.utils.logger import setup_logger
from puzzlebot.utils.time_utils import utcnow


class DuelOperations:
    """
    Service class for duel lifecycle and race arbitration.
    """

    def __init__(
        self,
        db,
        validator: AnswerValidator,
        player_ops: Optional[PlayerOperations] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None
    ):
        self.db = db
        self.validator = validator
        self.player_ops = player_ops or PlayerOperations(db)
        self.clock = clock
        self.rng = rng or random.Random()
        self._duel_locks = KeyedLock()
        self.logger = setup_logger(f"{__name__}.DuelOperations")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _involving(player_id: int):
        return or_(Duel.challenger_id == player_id, Duel.opponent_id == player_id)

    async def _has_duel(self, session: AsyncSession, *criteria) -> bool:
        result = await session.execute(select(Duel.id).where(*criteria).limit(1))
        return result.scalar_one_or_none() is not None

    async def _lock_duel(self, session: AsyncSession, duel_id: int) -> Duel:
        result = await session.execute(
            select(Duel).where(Duel.id == duel_id).with_for_update()
        )
        duel = result.scalar_one_or_none()
        if duel is None:
            raise DuelNotFoundError(duel_id)
        return duel

    async def get_duel(self, duel_id: int) -> Duel:
        async with self.db.get_session() as session:
            duel = await session.get(Duel, duel_id)
            if duel is None:
                raise DuelNotFoundError(duel_id)
            return duel

    async def get_active_duel_for_player(self, player_id: int) -> Optional[Duel]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Duel).where(self._involving(player_id), Duel.status == DuelStatus.ACTIVE)
            )
            return result.scalars().first()

    async def get_player_duels(self, player_id: int, limit: int = 10) -> List[Duel]:
        """Most recent duels a player took part in"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Duel)
                .where(self._involving(player_id))
                .order_by(Duel.created_at.desc(), Duel.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_duel_stats(self, player_id: int) -> DuelStats:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Duel).where(self._involving(player_id))
                .order_by(Duel.completed_at.desc(), Duel.id.desc())
            )
            duels = list(result.scalars().all())

        completed = [d for d in duels if d.status == DuelStatus.COMPLETED]
        wins = sum(1 for d in completed if d.winner_id == player_id)
        draws = sum(1 for d in completed if d.winner_id is None)
        losses = len(completed) - wins - draws

        consecutive_wins = 0
        for duel in completed:
            if duel.winner_id != player_id:
                break
            consecutive_wins += 1

        return DuelStats(
            player_id=player_id,
            total_duels=len(completed),
            wins=wins,
            losses=losses,
            draws=draws,
            win_rate=round(wins / len(completed) * 100, 1) if completed else 0.0,
            active_duels=sum(1 for d in duels if d.status == DuelStatus.ACTIVE),
            pending_incoming=sum(
                1 for d in duels if d.status == DuelStatus.PENDING and d.opponent_id == player_id
            ),
            consecutive_wins=consecutive_wins
        )

    # ------------------------------------------------------------------
    # Challenge lifecycle
    # ------------------------------------------------------------------

    async def _cancel_expired_pending(self, session: AsyncSession, now: datetime, player_ids=None) -> int:
        criteria = [Duel.status == DuelStatus.PENDING, Duel.expires_at <= now]
        if player_ids:
            criteria.append(or_(Duel.challenger_id.in_(player_ids), Duel.opponent_id.in_(player_ids)))
        result = await session.execute(
            update(Duel).where(*criteria)
            .values(status=DuelStatus.CANCELLED, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def create_duel(self, challenger_id: int, opponent_id: int, coins_wagered: int = 0) -> Duel:
        """
        Challenge another player to race on a random past puzzle.

        Args:
            challenger_id: Player issuing the challenge
            opponent_id: Player being challenged
            coins_wagered: Hint coins each side puts up (0 for a friendly duel)

        Returns:
            The PENDING duel

        Raises:
            DuelPreconditionFailedError: With a stable reason when any check fails
            PlayerNotFoundError: If either player does not exist
        """
        if coins_wagered is None or coins_wagered < 0:
            raise DuelPreconditionFailedError(ErrorReason.INVALID_WAGER, "Wager can't be negative.")
        if challenger_id == opponent_id:
            raise DuelPreconditionFailedError(
                ErrorReason.SELF_CHALLENGE, "You can't challenge yourself! Pick a worthy opponent."
            )

        now = self.clock()
        try:
            async with self.db.transaction() as session:
                challenger = await session.get(Player, challenger_id)
                if challenger is None:
                    raise PlayerNotFoundError(challenger_id)
                opponent = await session.get(Player, opponent_id)
                if opponent is None:
                    raise PlayerNotFoundError(opponent_id)

                await self._check_create_preconditions(session, challenger, opponent, coins_wagered, now)

                # Never the live weekly puzzle
                pool = select(Puzzle).where(Puzzle.is_active.is_(False)).order_by(Puzzle.id)
                puzzles = list((await session.execute(pool)).scalars().all())
                if not puzzles:
                    raise DuelPreconditionFailedError(
                        ErrorReason.NO_DUEL_PUZZLES, "No puzzles available for duels yet!"
                    )
                puzzle = self.rng.choice(puzzles)

                duel = Duel(
                    challenger_id=challenger_id,
                    opponent_id=opponent_id,
                    puzzle_id=puzzle.id,
                    status=DuelStatus.PENDING,
                    coins_wagered=coins_wagered,
                    created_at=now,
                    expires_at=now + timedelta(hours=Config.DUEL_CHALLENGE_EXPIRY_HOURS)
                )
                session.add(duel)
                await session.flush()
        except IntegrityError:
            # A concurrent challenge claimed one of the pending slots first
            raise DuelPreconditionFailedError(
                ErrorReason.OPPONENT_HAS_PENDING, "That player already has a pending challenge."
            )

        self.logger.info(
            f"Duel {duel.id} created: {challenger_id} challenged {opponent_id} "
            f"on puzzle {duel.puzzle_id} for {coins_wagered} coins"
        )
        return duel

    async def _check_create_preconditions(self, session, challenger, opponent, coins_wagered, now):
        await self._cancel_expired_pending(session, now, [challenger.id, opponent.id])

        if await self._has_duel(session, Duel.opponent_id == opponent.id, Duel.status == DuelStatus.PENDING):
            raise DuelPreconditionFailedError(
                ErrorReason.OPPONENT_HAS_PENDING,
                f"{opponent.display_name} already has a pending challenge. Let them respond first!"
            )
        if await self._has_duel(session, Duel.challenger_id == challenger.id, Duel.status == DuelStatus.PENDING):
            raise DuelPreconditionFailedError(
                ErrorReason.CHALLENGER_HAS_PENDING,
                "You already have a challenge waiting for an answer."
            )
        await self._check_not_active(session, challenger, opponent)
        self._check_balances(challenger, opponent, coins_wagered)

    async def _check_not_active(self, session, challenger, opponent):
        if await self._has_duel(session, self._involving(challenger.id), Duel.status == DuelStatus.ACTIVE):
            raise DuelPreconditionFailedError(
                ErrorReason.CHALLENGER_IN_ACTIVE_DUEL,
                f"{challenger.display_name} is already in an active duel! Finish it first."
            )
        if await self._has_duel(session, self._involving(opponent.id), Duel.status == DuelStatus.ACTIVE):
            raise DuelPreconditionFailedError(
                ErrorReason.OPPONENT_IN_ACTIVE_DUEL,
                f"{opponent.display_name} is already in an active duel. Challenge them later!"
            )

    @staticmethod
    def _check_balances(challenger, opponent, coins_wagered):
        if coins_wagered <= 0:
            return
        if challenger.hint_coins < coins_wagered:
            raise DuelPreconditionFailedError(
                ErrorReason.INSUFFICIENT_BALANCE,
                f"{challenger.display_name} doesn't have enough hint coins! "
                f"Has {challenger.hint_coins}, needs {coins_wagered}."
            )
        if opponent.hint_coins < coins_wagered:
            raise DuelPreconditionFailedError(
                ErrorReason.INSUFFICIENT_BALANCE,
                f"{opponent.display_name} doesn't have enough hint coins for that wager."
            )

    async def accept_duel(self, duel_id: int, player_id: int) -> Duel:
        """
        Opponent accepts a pending challenge; the race starts now.

        An expired challenge is cancelled instead and InvalidDuelStateError raised.
        """
        now = self.clock()
        expired = False

        async with self._duel_locks.acquire(duel_id):
            async with self.db.transaction() as session:
                duel = await self._lock_duel(session, duel_id)

                if player_id != duel.opponent_id:
                    raise DuelPreconditionFailedError(
                        ErrorReason.NOT_A_PARTICIPANT, "Only the challenged player can accept this duel."
                    )
                if duel.status != DuelStatus.PENDING:
                    raise InvalidDuelStateError(duel_id, duel.status.value, 'accept')

                if duel.expires_at is not None and now >= duel.expires_at:
                    duel.status = DuelStatus.CANCELLED
                    duel.completed_at = now
                    expired = True
                else:
                    challenger = await session.get(Player, duel.challenger_id)
                    opponent = await session.get(Player, duel.opponent_id)
                    await self._check_not_active(session, challenger, opponent)
                    self._check_balances(challenger, opponent, duel.coins_wagered)

                    duel.status = DuelStatus.ACTIVE
                    duel.started_at = now

        if expired:
            self.logger.info(f"Duel {duel_id} expired before acceptance, cancelled")
            raise InvalidDuelStateError(duel_id, 'expired', 'accept')

        self.logger.info(f"Duel {duel_id} accepted by {player_id}, race started")
        return duel

    async def _close_pending(self, duel_id: int, player_id: int, attr: str, status: DuelStatus, action: str) -> Duel:
        async with self._duel_locks.acquire(duel_id):
            async with self.db.transaction() as session:
                duel = await self._lock_duel(session, duel_id)

                if getattr(duel, attr) != player_id:
                    role = 'challenged player' if attr == 'opponent_id' else 'challenger'
                    raise DuelPreconditionFailedError(
                        ErrorReason.NOT_A_PARTICIPANT, f"Only the {role} can {action} this duel."
                    )
                if duel.status != DuelStatus.PENDING:
                    raise InvalidDuelStateError(duel_id, duel.status.value, action)

                duel.status = status
                duel.completed_at = self.clock()

        self.logger.info(f"Duel {duel_id} {status.value} by {player_id}")
        return duel

    async def decline_duel(self, duel_id: int, player_id: int) -> Duel:
        """Opponent turns down a pending challenge"""
        return await self._close_pending(duel_id, player_id, 'opponent_id', DuelStatus.DECLINED, 'decline')

    async def cancel_duel(self, duel_id: int, player_id: int) -> Duel:
        """Challenger withdraws a pending challenge"""
        return await self._close_pending(duel_id, player_id, 'challenger_id', DuelStatus.CANCELLED, 'cancel')

    # ------------------------------------------------------------------
    # Race
    # ------------------------------------------------------------------

    def _cached_result(self, duel: Duel, player_id: int) -> DuelGuessResult:
        solved = duel.solve_time_for(player_id) is not None
        if duel.status == DuelStatus.COMPLETED:
            if duel.winner_id is None:
                explanation = "This duel is over. It ended without a winner."
            elif duel.winner_id == player_id:
                explanation = "This duel is over. You won!"
            else:
                explanation = "This duel is over. Your opponent won."
            return DuelGuessResult(
                duel_id=duel.id,
                is_correct=solved,
                explanation=explanation,
                duel_completed=True,
                already_solved=solved,
                winner_id=duel.winner_id,
                is_draw=duel.winner_id is None
            )

        return DuelGuessResult(
            duel_id=duel.id,
            is_correct=True,
            explanation="You already solved it! Waiting for your opponent to solve...",
            waiting_for_opponent=True,
            already_solved=True
        )

    async def submit_guess(self, duel_id: int, player_id: int, raw_text: str) -> DuelGuessResult:
        """
        Submit a guess against a duel's puzzle.

        Returns:
            DuelGuessResult. Once the player's side has solved, or the duel
            completed, the recorded outcome is returned and nothing is written.

        Raises:
            DuelNotFoundError, DuelPreconditionFailedError (not a participant),
            InvalidDuelStateError (duel not active)
        """
        guess_text = (raw_text or '').strip()
        if not guess_text:
            raise ValueError("Guess cannot be empty")

        async with self.db.get_session() as session:
            duel = await session.get(Duel, duel_id)
            if duel is None:
                raise DuelNotFoundError(duel_id)
            if not duel.is_participant(player_id):
                raise DuelPreconditionFailedError(ErrorReason.NOT_A_PARTICIPANT, "You're not part of this duel.")
            if duel.status == DuelStatus.COMPLETED or (
                    duel.status == DuelStatus.ACTIVE and duel.solve_time_for(player_id) is not None):
                return self._cached_result(duel, player_id)
            if duel.status != DuelStatus.ACTIVE:
                raise InvalidDuelStateError(duel_id, duel.status.value, 'guess in')
            puzzle = await session.get(Puzzle, duel.puzzle_id)

        outcome = await self.validator.validate(puzzle.answer, guess_text)
        timestamp = self.clock()

        async with self._duel_locks.acquire(duel_id):
            async with self.db.transaction() as session:
                duel = await self._lock_duel(session, duel_id)

                if duel.status == DuelStatus.COMPLETED or (
                        duel.status == DuelStatus.ACTIVE and duel.solve_time_for(player_id) is not None):
                    return self._cached_result(duel, player_id)
                if duel.status != DuelStatus.ACTIVE:
                    raise InvalidDuelStateError(duel_id, duel.status.value, 'guess in')

                player = await session.get(Player, player_id)
                prior = await session.execute(
                    select(func.count(Guess.id)).where(Guess.duel_id == duel_id, Guess.player_id == player_id)
                )
                guess_number = (prior.scalar() or 0) + 1

                session.add(Guess(
                    player_id=player_id,
                    puzzle_id=duel.puzzle_id,
                    duel_id=duel_id,
                    guess_text=guess_text,
                    is_correct=outcome.is_correct,
                    guess_number=guess_number,
                    mood_tier_at_time=player.mood_tier,
                    timestamp=timestamp
                ))

                if not outcome.is_correct:
                    return DuelGuessResult(
                        duel_id=duel_id,
                        is_correct=False,
                        explanation=outcome.explanation,
                        guess_number=guess_number,
                        used_fallback=outcome.used_fallback
                    )

                if player_id == duel.challenger_id:
                    duel.challenger_solve_time = timestamp
                else:
                    duel.opponent_solve_time = timestamp

                other_time = duel.solve_time_for(duel.other_player_id(player_id))
                if other_time is None:
                    await session.flush()
                    self.logger.info(f"Duel {duel_id}: player {player_id} solved first, waiting for opponent")
                    return DuelGuessResult(
                        duel_id=duel_id,
                        is_correct=True,
                        explanation="Correct! Waiting for your opponent to solve...",
                        guess_number=guess_number,
                        waiting_for_opponent=True,
                        used_fallback=outcome.used_fallback
                    )

                winner_id = self.decide_winner(duel)
                completed, transferred = await self._complete(session, duel, winner_id, timestamp)
                if not completed:
                    return self._cached_result(duel, player_id)

                if winner_id is None:
                    explanation = "Correct! You both finished at the same moment. It's a draw."
                elif winner_id == player_id:
                    explanation = "Correct! You won the duel!"
                else:
                    explanation = "Correct! But your opponent got there first."

                return DuelGuessResult(
                    duel_id=duel_id,
                    is_correct=True,
                    explanation=explanation,
                    guess_number=guess_number,
                    duel_completed=True,
                    winner_id=winner_id,
                    is_draw=winner_id is None,
                    coins_transferred=transferred,
                    used_fallback=outcome.used_fallback
                )

    async def submit_guess_for_active_duel(self, player_id: int, raw_text: str) -> DuelGuessResult:
        """Route a guess to the player's ACTIVE duel"""
        duel = await self.get_active_duel_for_player(player_id)
        if duel is None:
            raise DuelNotFoundError(f"active duel for player {player_id}")
        return await self.submit_guess(duel.id, player_id, raw_text)

    @staticmethod
    def decide_winner(duel: Duel) -> Optional[int]:
        """Strictly earlier solve wins; identical timestamps draw; unsolved sides lose"""
        challenger_time = duel.challenger_solve_time
        opponent_time = duel.opponent_solve_time

        if challenger_time is None and opponent_time is None:
            return None
        if opponent_time is None:
            return duel.challenger_id
        if challenger_time is None:
            return duel.opponent_id
        if challenger_time < opponent_time:
            return duel.challenger_id
        if opponent_time < challenger_time:
            return duel.opponent_id
        return None

    async def _complete(self, session: AsyncSession, duel: Duel, winner_id: Optional[int],
                        completed_at: datetime) -> Tuple[bool, int]:
        """Compare-and-set ACTIVE -> COMPLETED, then settle. Returns (completed, coins moved)."""
        await session.flush()
        result = await session.execute(
            update(Duel)
            .where(Duel.id == duel.id, Duel.status == DuelStatus.ACTIVE)
            .values(status=DuelStatus.COMPLETED, winner_id=winner_id, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(duel)
        if result.rowcount != 1:
            return False, 0

        self.logger.info(
            f"Duel {duel.id} completed, "
            f"{'winner ' + str(winner_id) if winner_id is not None else 'no winner'}"
        )
        return True, await self._settle(session, duel)

    async def _settle(self, session: AsyncSession, duel: Duel) -> int:
        if duel.coins_wagered <= 0 or duel.winner_id is None:
            duel.coins_settled = True
            await session.flush()
            return 0

        loser_id = duel.other_player_id(duel.winner_id)
        try:
            async with session.begin_nested():
                transferred = await self.player_ops.transfer_coins(
                    loser_id, duel.winner_id, duel.coins_wagered, session, duel_id=duel.id
                )
        except Exception as e:
            self.logger.error(f"Wager settlement failed for duel {duel.id}, will retry: {e}", exc_info=True)
            await session.refresh(duel)
            return 0

        duel.coins_settled = True
        await session.flush()
        self.logger.info(f"Duel {duel.id}: moved {transferred} coins from {loser_id} to {duel.winner_id}")
        return transferred

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def expire_stale_duels(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Cancel unanswered challenges and close races past the time limit.

        A timed-out race is won by the only side that solved; if nobody
        solved there is no winner.

        Returns:
            Counts of 'cancelled' and 'timed_out' duels
        """
        now = now or self.clock()

        async with self.db.transaction() as session:
            cancelled = await self._cancel_expired_pending(session, now)

        deadline = now - timedelta(hours=Config.DUEL_TIME_LIMIT_HOURS)
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Duel.id).where(Duel.status == DuelStatus.ACTIVE, Duel.started_at <= deadline)
            )
            overdue_ids = list(result.scalars().all())

        timed_out = 0
        for duel_id in overdue_ids:
            async with self._duel_locks.acquire(duel_id):
                async with self.db.transaction() as session:
                    duel = await self._lock_duel(session, duel_id)
                    if duel.status != DuelStatus.ACTIVE:
                        continue
                    completed, _ = await self._complete(session, duel, self.decide_winner(duel), now)
                    if completed:
                        timed_out += 1

        if cancelled or timed_out:
            self.logger.info(f"Expired duels: {cancelled} cancelled, {timed_out} timed out")
        return {'cancelled': cancelled, 'timed_out': timed_out}

    async def settle_outstanding_wagers(self) -> int:
        """Retry settlement for completed duels whose transfer failed"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Duel.id).where(Duel.status == DuelStatus.COMPLETED, Duel.coins_settled.is_(False))
            )
            duel_ids = list(result.scalars().all())

        settled = 0
        for duel_id in duel_ids:
            async with self._duel_locks.acquire(duel_id):
                async with self.db.transaction() as session:
                    duel = await self._lock_duel(session, duel_id)
                    if duel.coins_settled or duel.status != DuelStatus.COMPLETED:
                        continue
                    await self._settle(session, duel)
                    if duel.coins_settled:
                        settled += 1

        return settled
