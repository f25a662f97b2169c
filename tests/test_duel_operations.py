import asyncio
import random
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from puzzlebot.config import Config
from puzzlebot.constants import LedgerReasons
from puzzlebot.database.models import CoinLedger, Duel, DuelStatus, Guess
from puzzlebot.operations.duel_operations import DuelOperations
from puzzlebot.utils.exceptions import (
    DuelPreconditionFailedError, ErrorReason, InvalidDuelStateError
)

DUEL_ANSWER = 'Piece of Cake'


@pytest.fixture
async def arena(puzzle_ops, make_player):
    """Two players, a live weekly puzzle and one past puzzle for duels."""
    weekly = await puzzle_ops.create_puzzle('weekly', 'Falling Temperature')
    past = await puzzle_ops.create_puzzle('past', DUEL_ANSWER)
    await puzzle_ops.activate_puzzle(weekly.id, now=datetime(2025, 1, 6, 12, 0))
    ada = await make_player('Ada')
    grace = await make_player('Grace')
    return {'ada': ada, 'grace': grace, 'past': past, 'weekly': weekly}


async def count_duel_guesses(db, duel_id, player_id):
    async with db.get_session() as session:
        result = await session.execute(
            select(func.count(Guess.id)).where(Guess.duel_id == duel_id, Guess.player_id == player_id)
        )
        return result.scalar()


class TestChallenge:
    async def test_create_uses_a_past_puzzle(self, arena, duel_ops):
        duel = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id, 5)

        assert duel.status == DuelStatus.PENDING
        assert duel.puzzle_id == arena['past'].id
        assert duel.coins_wagered == 5
        assert duel.expires_at is not None

    async def test_self_challenge(self, arena, duel_ops):
        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.create_duel(arena['ada'].id, arena['ada'].id)
        assert exc.value.reason == ErrorReason.SELF_CHALLENGE

    async def test_negative_wager(self, arena, duel_ops):
        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.create_duel(arena['ada'].id, arena['grace'].id, -1)
        assert exc.value.reason == ErrorReason.INVALID_WAGER

    async def test_wager_above_balance(self, arena, duel_ops):
        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.create_duel(arena['ada'].id, arena['grace'].id, Config.STARTING_HINT_COINS + 1)
        assert exc.value.reason == ErrorReason.INSUFFICIENT_BALANCE

    async def test_no_past_puzzles(self, puzzle_ops, make_player, duel_ops):
        only = await puzzle_ops.create_puzzle('only', 'Falling Temperature')
        await puzzle_ops.activate_puzzle(only.id)
        ada, grace = await make_player(), await make_player()

        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.create_duel(ada.id, grace.id)
        assert exc.value.reason == ErrorReason.NO_DUEL_PUZZLES

    async def test_one_pending_challenge_each_way(self, arena, make_player, duel_ops):
        carol = await make_player('Carol')
        await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)

        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.create_duel(carol.id, arena['grace'].id)
        assert exc.value.reason == ErrorReason.OPPONENT_HAS_PENDING

        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.create_duel(arena['ada'].id, carol.id)
        assert exc.value.reason == ErrorReason.CHALLENGER_HAS_PENDING

    async def test_pending_uniqueness_enforced_by_database(self, db, arena, make_player):
        carol = await make_player('Carol')
        with pytest.raises(IntegrityError):
            async with db.transaction() as session:
                for challenger in (arena['ada'], carol):
                    session.add(Duel(
                        challenger_id=challenger.id, opponent_id=arena['grace'].id,
                        puzzle_id=arena['past'].id, status=DuelStatus.PENDING
                    ))

    async def test_players_in_active_duel_cannot_be_challenged(self, arena, make_player, duel_ops):
        carol = await make_player('Carol')
        duel = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)
        await duel_ops.accept_duel(duel.id, arena['grace'].id)

        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.create_duel(carol.id, arena['ada'].id)
        assert exc.value.reason == ErrorReason.OPPONENT_IN_ACTIVE_DUEL

        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.create_duel(arena['grace'].id, carol.id)
        assert exc.value.reason == ErrorReason.CHALLENGER_IN_ACTIVE_DUEL


class TestResponses:
    async def test_only_opponent_accepts(self, arena, duel_ops):
        duel = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)

        with pytest.raises(DuelPreconditionFailedError) as exc:
            await duel_ops.accept_duel(duel.id, arena['ada'].id)
        assert exc.value.reason == ErrorReason.NOT_A_PARTICIPANT

        accepted = await duel_ops.accept_duel(duel.id, arena['grace'].id)
        assert accepted.status == DuelStatus.ACTIVE
        assert accepted.started_at is not None

        with pytest.raises(InvalidDuelStateError):
            await duel_ops.accept_duel(duel.id, arena['grace'].id)

    async def test_decline_and_cancel_are_terminal(self, arena, duel_ops):
        declined = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)
        assert (await duel_ops.decline_duel(declined.id, arena['grace'].id)).status == DuelStatus.DECLINED

        cancelled = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)
        with pytest.raises(DuelPreconditionFailedError):
            await duel_ops.cancel_duel(cancelled.id, arena['grace'].id)
        assert (await duel_ops.cancel_duel(cancelled.id, arena['ada'].id)).status == DuelStatus.CANCELLED

        with pytest.raises(InvalidDuelStateError):
            await duel_ops.accept_duel(declined.id, arena['grace'].id)
        with pytest.raises(InvalidDuelStateError):
            await duel_ops.decline_duel(cancelled.id, arena['grace'].id)

    async def test_expired_challenge_cannot_be_accepted(self, arena, duel_ops, clock):
        duel = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)
        clock.advance(hours=Config.DUEL_CHALLENGE_EXPIRY_HOURS + 1)

        with pytest.raises(InvalidDuelStateError) as exc:
            await duel_ops.accept_duel(duel.id, arena['grace'].id)
        assert exc.value.status == 'expired'
        assert (await duel_ops.get_duel(duel.id)).status == DuelStatus.CANCELLED

    async def test_expired_challenge_frees_the_slot(self, arena, duel_ops, clock):
        await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)
        clock.advance(hours=Config.DUEL_CHALLENGE_EXPIRY_HOURS + 1)

        fresh = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)
        assert fresh.status == DuelStatus.PENDING


async def start_duel(duel_ops, arena, wager=5):
    duel = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id, wager)
    return await duel_ops.accept_duel(duel.id, arena['grace'].id)


async def duel_win_rows(db, duel_id):
    async with db.get_session() as session:
        result = await session.execute(
            select(func.count(CoinLedger.id)).where(
                CoinLedger.related_duel_id == duel_id, CoinLedger.reason == LedgerReasons.DUEL_WIN
            )
        )
        return result.scalar()


class TickingClock:
    """Moves one second forward on every reading."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class TestRace:
    async def test_earlier_solve_wins_and_takes_the_wager(self, db, arena, duel_ops, player_ops, clock):
        ada, grace = arena['ada'], arena['grace']
        duel = await start_duel(duel_ops, arena)

        clock.advance(minutes=2)
        wrong = await duel_ops.submit_guess(duel.id, ada.id, 'piece of pie')
        assert not wrong.is_correct
        assert wrong.guess_number == 1

        clock.advance(minutes=1)
        first = await duel_ops.submit_guess(duel.id, ada.id, DUEL_ANSWER)
        assert first.is_correct and first.waiting_for_opponent
        assert first.guess_number == 2

        repeat = await duel_ops.submit_guess(duel.id, ada.id, 'whatever')
        assert repeat.already_solved and repeat.waiting_for_opponent
        assert await count_duel_guesses(db, duel.id, ada.id) == 2

        clock.advance(minutes=4)
        second = await duel_ops.submit_guess(duel.id, grace.id, DUEL_ANSWER)
        assert second.duel_completed
        assert second.winner_id == ada.id
        assert second.coins_transferred == 5

        finished = await duel_ops.get_duel(duel.id)
        assert finished.status == DuelStatus.COMPLETED
        assert finished.coins_settled
        assert await player_ops.get_coin_balance(ada.id) == Config.STARTING_HINT_COINS + 5
        assert await player_ops.get_coin_balance(grace.id) == Config.STARTING_HINT_COINS - 5

        [win] = [e for e in await player_ops.get_coin_history(ada.id) if e.reason == LedgerReasons.DUEL_WIN]
        assert win.related_duel_id == duel.id

        late = await duel_ops.submit_guess(duel.id, grace.id, DUEL_ANSWER)
        assert late.duel_completed and late.winner_id == ada.id

    async def test_simultaneous_finishes_complete_once(self, db, arena, validator, player_ops):
        duel_ops = DuelOperations(
            db, validator, player_ops=player_ops,
            clock=TickingClock(datetime(2025, 1, 7, 9, 0)), rng=random.Random(3)
        )
        duel = await start_duel(duel_ops, arena)

        results = await asyncio.gather(
            duel_ops.submit_guess(duel.id, arena['ada'].id, DUEL_ANSWER),
            duel_ops.submit_guess(duel.id, arena['grace'].id, DUEL_ANSWER)
        )

        [completing] = [r for r in results if r.coins_transferred]
        assert completing.duel_completed
        assert sum(1 for r in results if r.waiting_for_opponent) == 1

        finished = await duel_ops.get_duel(duel.id)
        assert finished.status == DuelStatus.COMPLETED
        assert finished.winner_id == completing.winner_id
        assert await duel_win_rows(db, duel.id) == 1
        assert await player_ops.get_coin_balance(finished.winner_id) == Config.STARTING_HINT_COINS + 5

    async def test_same_finish_through_two_instances_settles_once(self, db, arena, duel_ops, validator,
                                                                  player_ops, clock):
        ada, grace = arena['ada'], arena['grace']
        other_ops = DuelOperations(db, validator, player_ops=player_ops, clock=clock)
        duel = await start_duel(duel_ops, arena)

        clock.advance(minutes=1)
        await duel_ops.submit_guess(duel.id, ada.id, DUEL_ANSWER)
        clock.advance(minutes=1)

        results = await asyncio.gather(
            duel_ops.submit_guess(duel.id, grace.id, DUEL_ANSWER),
            other_ops.submit_guess(duel.id, grace.id, DUEL_ANSWER)
        )

        assert all(r.duel_completed and r.winner_id == ada.id for r in results)
        assert sorted(r.coins_transferred for r in results) == [0, 5]
        cached = next(r for r in results if r.coins_transferred == 0)
        assert cached.explanation.startswith("This duel is over")

        assert (await duel_ops.get_duel(duel.id)).status == DuelStatus.COMPLETED
        assert await duel_win_rows(db, duel.id) == 1
        assert await player_ops.get_coin_balance(ada.id) == Config.STARTING_HINT_COINS + 5
        assert await player_ops.get_coin_balance(grace.id) == Config.STARTING_HINT_COINS - 5

    async def test_identical_solve_times_draw(self, arena, duel_ops, player_ops, clock):
        duel = await start_duel(duel_ops, arena)
        clock.advance(minutes=3)

        await duel_ops.submit_guess(duel.id, arena['ada'].id, DUEL_ANSWER)
        result = await duel_ops.submit_guess(duel.id, arena['grace'].id, DUEL_ANSWER)

        assert result.duel_completed and result.is_draw
        assert result.winner_id is None
        assert result.coins_transferred == 0
        assert (await duel_ops.get_duel(duel.id)).coins_settled
        assert await player_ops.get_coin_balance(arena['ada'].id) == Config.STARTING_HINT_COINS

    async def test_duel_guesses_do_not_count_weekly(self, arena, duel_ops, stats, clock):
        duel = await start_duel(duel_ops, arena, wager=0)
        await duel_ops.submit_guess(duel.id, arena['ada'].id, DUEL_ANSWER)

        assert await stats.get_total_solves(arena['ada'].id) == 0
        assert await stats.get_total_guesses(arena['ada'].id) == 0

    async def test_guess_rules(self, arena, make_player, duel_ops):
        outsider = await make_player('Mallory')
        duel = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)

        with pytest.raises(InvalidDuelStateError):
            await duel_ops.submit_guess(duel.id, arena['ada'].id, DUEL_ANSWER)

        await duel_ops.accept_duel(duel.id, arena['grace'].id)
        with pytest.raises(DuelPreconditionFailedError):
            await duel_ops.submit_guess(duel.id, outsider.id, DUEL_ANSWER)

        routed = await duel_ops.submit_guess_for_active_duel(arena['grace'].id, 'cake')
        assert not routed.is_correct

    def test_decide_winner(self):
        early, late = datetime(2025, 1, 6, 12, 0), datetime(2025, 1, 6, 12, 5)

        def duel(challenger_time=None, opponent_time=None):
            return Duel(challenger_id=1, opponent_id=2,
                        challenger_solve_time=challenger_time, opponent_solve_time=opponent_time)

        assert DuelOperations.decide_winner(duel(early, late)) == 1
        assert DuelOperations.decide_winner(duel(late, early)) == 2
        assert DuelOperations.decide_winner(duel(opponent_time=late)) == 2
        assert DuelOperations.decide_winner(duel(early, early)) is None
        assert DuelOperations.decide_winner(duel()) is None


class TestSettlement:
    async def test_failed_transfer_is_retried(self, arena, duel_ops, player_ops, clock, monkeypatch):
        duel = await start_duel(duel_ops, arena)

        async def refuse(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(player_ops, 'transfer_coins', refuse)
        await duel_ops.submit_guess(duel.id, arena['ada'].id, DUEL_ANSWER)
        clock.advance(minutes=1)
        result = await duel_ops.submit_guess(duel.id, arena['grace'].id, DUEL_ANSWER)

        assert result.duel_completed and result.winner_id == arena['ada'].id
        assert result.coins_transferred == 0
        unsettled = await duel_ops.get_duel(duel.id)
        assert unsettled.status == DuelStatus.COMPLETED
        assert not unsettled.coins_settled
        assert await player_ops.get_coin_balance(arena['ada'].id) == Config.STARTING_HINT_COINS

        monkeypatch.undo()
        assert await duel_ops.settle_outstanding_wagers() == 1
        assert await duel_ops.settle_outstanding_wagers() == 0

        assert (await duel_ops.get_duel(duel.id)).coins_settled
        assert await player_ops.get_coin_balance(arena['ada'].id) == Config.STARTING_HINT_COINS + 5
        assert (await player_ops.verify_coin_balance_integrity(arena['grace'].id))['integrity_check']


class TestHousekeeping:
    async def test_unanswered_challenges_cancelled(self, arena, duel_ops, clock):
        duel = await duel_ops.create_duel(arena['ada'].id, arena['grace'].id)
        clock.advance(hours=Config.DUEL_CHALLENGE_EXPIRY_HOURS + 1)

        assert await duel_ops.expire_stale_duels() == {'cancelled': 1, 'timed_out': 0}
        assert (await duel_ops.get_duel(duel.id)).status == DuelStatus.CANCELLED

    async def test_timed_out_race_goes_to_the_only_solver(self, arena, duel_ops, player_ops, clock):
        duel = await start_duel(duel_ops, arena)
        clock.advance(minutes=10)
        await duel_ops.submit_guess(duel.id, arena['grace'].id, DUEL_ANSWER)

        clock.advance(hours=Config.DUEL_TIME_LIMIT_HOURS)
        assert await duel_ops.expire_stale_duels() == {'cancelled': 0, 'timed_out': 1}

        finished = await duel_ops.get_duel(duel.id)
        assert finished.winner_id == arena['grace'].id
        assert finished.coins_settled
        assert await player_ops.get_coin_balance(arena['grace'].id) == Config.STARTING_HINT_COINS + 5

    async def test_timed_out_race_without_solves_has_no_winner(self, arena, duel_ops, clock):
        duel = await start_duel(duel_ops, arena)
        clock.advance(hours=Config.DUEL_TIME_LIMIT_HOURS + 1)

        await duel_ops.expire_stale_duels()
        finished = await duel_ops.get_duel(duel.id)
        assert finished.status == DuelStatus.COMPLETED
        assert finished.winner_id is None

    async def test_stats(self, arena, duel_ops, clock):
        duel = await start_duel(duel_ops, arena, wager=0)
        await duel_ops.submit_guess(duel.id, arena['ada'].id, DUEL_ANSWER)
        clock.advance(minutes=1)
        await duel_ops.submit_guess(duel.id, arena['grace'].id, DUEL_ANSWER)

        ada = await duel_ops.get_duel_stats(arena['ada'].id)
        grace = await duel_ops.get_duel_stats(arena['grace'].id)

        assert (ada.total_duels, ada.wins, ada.losses, ada.win_rate, ada.consecutive_wins) == (1, 1, 0, 100.0, 1)
        assert (grace.wins, grace.losses, grace.win_rate) == (0, 1, 0.0)
        assert [d.id for d in await duel_ops.get_player_duels(arena['ada'].id)] == [duel.id]
