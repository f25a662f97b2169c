"""Shared fixtures: a fresh SQLite database per test and the wired-up engine pieces."""

import itertools
import os
import random
from datetime import datetime, timedelta

# Must be set before puzzlebot.config is imported
os.environ['LOG_TO_FILE'] = 'false'
os.environ['ORACLE_PROVIDER'] = 'mock'

import pytest

from puzzlebot.database.database import Database
from puzzlebot.operations.duel_operations import DuelOperations
from puzzlebot.operations.guess_operations import GuessOperations
from puzzlebot.operations.player_operations import PlayerOperations
from puzzlebot.operations.puzzle_operations import PuzzleOperations
from puzzlebot.services.achievements import AchievementService
from puzzlebot.services.answer_validation import AnswerValidator
from puzzlebot.services.celebration import StaticCelebrationProvider
from puzzlebot.services.leaderboard import LeaderboardService
from puzzlebot.services.mood import MoodService
from puzzlebot.services.oracle import RuleBasedOracle
from puzzlebot.services.stats import StatsService

WEEKLY_ANSWER = 'Falling Temperature'


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'puzzle_arc_test.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def clock():
    # Monday noon UTC
    return FakeClock(datetime(2025, 1, 6, 12, 0, 0))


@pytest.fixture
def player_ops(db):
    return PlayerOperations(db)


@pytest.fixture
def puzzle_ops(db):
    return PuzzleOperations(db)


@pytest.fixture
def stats(db):
    return StatsService(db.session_factory)


@pytest.fixture
def mood(db, stats):
    return MoodService(db.session_factory, stats)


@pytest.fixture
def achievements(db, stats):
    return AchievementService(db.session_factory, stats, timezone_name='UTC')


@pytest.fixture
def leaderboard(db, achievements):
    return LeaderboardService(db.session_factory, achievements)


@pytest.fixture
def validator():
    return AnswerValidator(RuleBasedOracle(), timeout=1.0)


@pytest.fixture
def guess_ops(db, validator, mood, achievements, stats, clock):
    return GuessOperations(
        db, validator, mood, achievements,
        celebration_provider=StaticCelebrationProvider(random.Random(7)),
        stats_service=stats,
        clock=clock
    )


@pytest.fixture
def duel_ops(db, validator, player_ops, clock):
    return DuelOperations(db, validator, player_ops=player_ops, clock=clock, rng=random.Random(3))


@pytest.fixture
def make_player(player_ops):
    counter = itertools.count(1)

    async def _make(name: str = None):
        n = next(counter)
        return await player_ops.get_or_create_player(f"ext-{n}", name or f"Player {n}")

    return _make


@pytest.fixture
def start_week(puzzle_ops, clock):
    """Create and activate the next weekly puzzle, one week after the previous one."""
    counter = itertools.count(1)

    async def _start(answer: str = WEEKLY_ANSWER, days_later: int = 7):
        n = next(counter)
        if n > 1:
            clock.advance(days=days_later)
        puzzle = await puzzle_ops.create_puzzle(f"week_{n:02d}", answer)
        return await puzzle_ops.activate_puzzle(puzzle.id, now=clock())

    return _start


@pytest.fixture
def solve_weeks(start_week, guess_ops, clock):
    """Play consecutive weeks in which the player solves on the first guess."""

    async def _solve(player_id: int, weeks: int):
        results = []
        for _ in range(weeks):
            await start_week()
            clock.advance(minutes=30)
            results.append(await guess_ops.submit_guess(player_id, WEEKLY_ANSWER))
        return results

    return _solve
