"""
Puzzle Operations Module

Catalogue access, activation and weekly rotation of puzzles.

Exactly one puzzle is active at a time (backed by a partial unique index).
Activation stamps the puzzle's week window; rotation walks the catalogue in
insertion order and wraps around at the end.
"""

import json
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from puzzlebot.config import Config
from puzzlebot.database.models import Puzzle
from puzzlebot.utils.exceptions import PuzzleNotFoundError
from puzzlebot.utils.logger import setup_logger
from puzzlebot.utils.time_utils import utcnow

logger = setup_logger(__name__)

ANSWER_NUMBER_PREFIX = re.compile(r'^\d+\.\s*')


class PuzzleOperations:
    """Business logic for the puzzle catalogue"""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    async def get_active_puzzle(self, session: Optional[AsyncSession] = None) -> Optional[Puzzle]:
        """Get the currently active puzzle, if any"""
        if session:
            return await self._select_active(session)
        async with self.db.get_session() as s:
            return await self._select_active(s)

    @staticmethod
    async def _select_active(session: AsyncSession) -> Optional[Puzzle]:
        result = await session.execute(select(Puzzle).where(Puzzle.is_active.is_(True)))
        return result.scalar_one_or_none()

    async def get_puzzle(self, puzzle_id: int) -> Puzzle:
        async with self.db.get_session() as session:
            puzzle = await session.get(Puzzle, puzzle_id)
            if puzzle is None:
                raise PuzzleNotFoundError(puzzle_id)
            return puzzle

    async def get_puzzle_by_key(self, puzzle_key: str) -> Optional[Puzzle]:
        async with self.db.get_session() as session:
            result = await session.execute(select(Puzzle).where(Puzzle.puzzle_key == puzzle_key))
            return result.scalar_one_or_none()

    async def get_all_puzzles(self) -> List[Puzzle]:
        """All puzzles in catalogue (insertion) order"""
        async with self.db.get_session() as session:
            result = await session.execute(select(Puzzle).order_by(Puzzle.id))
            return list(result.scalars().all())

    async def create_puzzle(self, puzzle_key: str, answer: str, image_path: Optional[str] = None) -> Puzzle:
        """Add an inactive puzzle to the catalogue"""
        if not puzzle_key or not answer or not answer.strip():
            raise ValueError("puzzle_key and answer are required")

        async with self.db.transaction() as session:
            puzzle = Puzzle(
                puzzle_key=puzzle_key,
                answer=answer.strip(),
                image_path=image_path,
                is_active=False
            )
            session.add(puzzle)
            await session.flush()

        self.logger.info(f"Created puzzle {puzzle.id} ({puzzle_key})")
        return puzzle

    async def activate_puzzle(self, puzzle_ref: Union[int, str], now: Optional[datetime] = None) -> Puzzle:
        """
        Make a puzzle the active one and stamp its week window.

        Args:
            puzzle_ref: Puzzle id or puzzle_key
            now: Week start (defaults to the current UTC time)

        Returns:
            The activated puzzle

        Raises:
            PuzzleNotFoundError: If the reference does not resolve
        """
        now = now or utcnow()

        async with self.db.transaction() as session:
            if isinstance(puzzle_ref, int):
                puzzle = await session.get(Puzzle, puzzle_ref)
            else:
                result = await session.execute(select(Puzzle).where(Puzzle.puzzle_key == puzzle_ref))
                puzzle = result.scalar_one_or_none()

            if puzzle is None:
                raise PuzzleNotFoundError(puzzle_ref)

            # Clear the old active row first so the single-active index holds
            await session.execute(
                update(Puzzle)
                .where(Puzzle.is_active.is_(True), Puzzle.id != puzzle.id)
                .values(is_active=False)
            )
            await session.execute(
                update(Puzzle)
                .where(Puzzle.id == puzzle.id)
                .values(
                    is_active=True,
                    week_start_date=now,
                    week_end_date=now + timedelta(days=Config.PUZZLE_WEEK_DAYS)
                )
            )
            await session.refresh(puzzle)

        self.logger.info(
            f"Activated puzzle {puzzle.puzzle_key} for week "
            f"{puzzle.week_start_date.isoformat()} - {puzzle.week_end_date.isoformat()}"
        )
        return puzzle

    async def rotate_to_next_puzzle(self, now: Optional[datetime] = None) -> Optional[Puzzle]:
        """
        Activate the puzzle after the current one, wrapping around at the end.

        With no active puzzle the first catalogue entry is activated.

        Returns:
            The newly active puzzle, or None when the catalogue is empty
        """
        puzzles = await self.get_all_puzzles()
        if not puzzles:
            self.logger.warning("No puzzles in catalogue, nothing to rotate to")
            return None

        current = next((p for p in puzzles if p.is_active), None)
        if current is None:
            next_puzzle = puzzles[0]
        else:
            index = next(i for i, p in enumerate(puzzles) if p.id == current.id)
            next_puzzle = puzzles[(index + 1) % len(puzzles)]

        return await self.activate_puzzle(next_puzzle.id, now=now)

    async def load_puzzles_from_file(self, path: Union[str, Path]) -> int:
        """
        Import puzzles from a JSON file, skipping keys that already exist.

        Accepts either a list of {puzzle_key, answer, image_path} objects or
        the page export format ({puzzleImageName: [...], answers: [...]} per
        page, answers numbered like "1. Falling Temperature").

        Returns:
            Number of puzzles added
        """
        path = Path(path)
        if not path.exists():
            self.logger.warning(f"Puzzle data file not found: {path}")
            return 0

        with path.open('r', encoding='utf-8') as f:
            data = json.load(f)

        records = list(self._iter_puzzle_records(data))

        added = 0
        async with self.db.transaction() as session:
            result = await session.execute(select(Puzzle.puzzle_key))
            existing_keys = set(result.scalars().all())

            for record in records:
                if record['puzzle_key'] in existing_keys:
                    continue
                session.add(Puzzle(
                    puzzle_key=record['puzzle_key'],
                    answer=record['answer'],
                    image_path=record.get('image_path'),
                    is_active=False
                ))
                existing_keys.add(record['puzzle_key'])
                added += 1

        self.logger.info(f"Loaded {added} puzzles from {path} ({len(records) - added} already present)")
        return added

    @staticmethod
    def _iter_puzzle_records(data):
        for item in data:
            if 'puzzleImageName' in item:
                for image_name, answer_text in zip(item['puzzleImageName'], item['answers']):
                    yield {
                        'puzzle_key': Path(image_name).stem,
                        'answer': ANSWER_NUMBER_PREFIX.sub('', answer_text).strip(),
                        'image_path': image_name,
                    }
            else:
                if not item.get('puzzle_key') or not item.get('answer'):
                    raise ValueError(f"Puzzle record missing puzzle_key or answer: {item}")
                yield {
                    'puzzle_key': item['puzzle_key'],
                    'answer': item['answer'].strip(),
                    'image_path': item.get('image_path'),
                }
