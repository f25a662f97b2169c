"""
Base service class for the Puzzle Arc engine.

Provides async database session management for the service layer.
Services either open their own transaction or join the caller's.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession


class BaseService:
    """Base class for all services with async database session management."""

    def __init__(self, session_factory):
        """
        Initialize base service with session factory.

        Args:
            session_factory: Async session factory from Database class
        """
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for async database operations."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def use_session(self, session: Optional[AsyncSession] = None) -> AsyncGenerator[AsyncSession, None]:
        """Reuse the caller's session when given, otherwise open a transactional one."""
        if session is not None:
            yield session
        else:
            async with self.get_session() as new_session:
                yield new_session

