import argparse
import asyncio
import logging
import traceback
from typing import Optional

from puzzlebot.config import Config
from puzzlebot.database.database import Database
from puzzlebot.operations.duel_operations import DuelOperations
from puzzlebot.operations.guess_operations import GuessOperations
from puzzlebot.operations.player_operations import PlayerOperations
from puzzlebot.operations.puzzle_operations import PuzzleOperations
from puzzlebot.services.achievements import AchievementService
from puzzlebot.services.answer_validation import AnswerValidator
from puzzlebot.services.celebration import CelebrationProvider, create_celebration_provider
from puzzlebot.services.leaderboard import LeaderboardService
from puzzlebot.services.mood import MoodService
from puzzlebot.services.oracle import CorrectnessOracle, create_oracle
from puzzlebot.services.scheduler import WeeklyScheduler
from puzzlebot.services.stats import StatsService
from puzzlebot.utils.logger import setup_logger


class PuzzleEngine:
    """Wires the engine's services together; transports hold one of these."""

    def __init__(self, database_url: Optional[str] = None,
                 oracle: Optional[CorrectnessOracle] = None,
                 celebration_provider: Optional[CelebrationProvider] = None):
        self.database_url = database_url
        self.db: Optional[Database] = None
        self.oracle = oracle
        self.celebration = celebration_provider
        self.logger = setup_logger(__name__)

    async def setup(self):
        """Initialize the database and build every service"""
        self.logger.info("Setting up Puzzle Arc engine...")

        self.db = Database(self.database_url)
        await self.db.initialize()

        self.oracle = self.oracle or create_oracle()
        self.celebration = self.celebration or create_celebration_provider()
        self.logger.info(f"Using '{self.oracle.name}' correctness oracle")

        session_factory = self.db.session_factory
        self.stats = StatsService(session_factory)
        self.mood = MoodService(session_factory, self.stats)
        self.achievements = AchievementService(session_factory, self.stats)
        self.leaderboard = LeaderboardService(session_factory, self.achievements)
        self.validator = AnswerValidator(self.oracle)

        self.players = PlayerOperations(self.db)
        self.puzzles = PuzzleOperations(self.db)
        self.guesses = GuessOperations(
            self.db, self.validator, self.mood, self.achievements,
            celebration_provider=self.celebration, stats_service=self.stats
        )
        self.duels = DuelOperations(self.db, self.validator, player_ops=self.players)
        self.scheduler = WeeklyScheduler(
            session_factory, self.puzzles, self.leaderboard, self.mood,
            duel_ops=self.duels, stats_service=self.stats
        )

        self.logger.info("Puzzle Arc engine setup complete!")
        return self

    async def close(self):
        """Release HTTP clients and the database engine"""
        self.logger.info("Shutting down Puzzle Arc engine...")

        if self.oracle:
            await self.oracle.close()
        if self.celebration:
            await self.celebration.close()
        if self.db:
            await self.db.close()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Puzzle Arc housekeeping runner")
    parser.add_argument('--load-puzzles', metavar='PATH',
                        help="Import puzzles from a JSON file before the pass")
    parser.add_argument('--loop', action='store_true',
                        help="Keep running passes instead of exiting after one")
    parser.add_argument('--interval', type=int, default=3600,
                        help="Seconds between passes with --loop (default: 3600)")
    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    Config.validate()

    engine = PuzzleEngine()

    try:
        await engine.setup()

        if args.load_puzzles:
            await engine.puzzles.load_puzzles_from_file(args.load_puzzles)

        while True:
            await engine.scheduler.run_housekeeping()
            if not args.loop:
                break
            await asyncio.sleep(args.interval)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await engine.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
