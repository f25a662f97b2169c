from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from puzzlebot.config import Config
from puzzlebot.data_models.achievements import ACHIEVEMENT_CATALOG
from puzzlebot.database.models import Base, Achievement, AchievementCategory
from puzzlebot.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = Config.get_async_database_url(self.database_url)

        connect_args = {}
        if database_url.startswith('sqlite'):
            connect_args['timeout'] = 30

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True,
            connect_args=connect_args
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

        # Initialize default data
        await self.initialize_default_data()

    async def initialize_default_data(self):
        """Seed the achievement catalog, adding any entries not yet present"""
        async with self.transaction() as session:
            result = await session.execute(select(Achievement.id))
            existing_ids = set(result.scalars().all())

            missing = [
                definition for definition in ACHIEVEMENT_CATALOG
                if definition.id not in existing_ids
            ]

            for definition in missing:
                session.add(Achievement(
                    id=definition.id,
                    key=definition.key,
                    name=definition.name,
                    description=definition.description,
                    emoji=definition.emoji,
                    category=AchievementCategory(definition.category),
                    tier=definition.tier,
                    is_secret=definition.is_secret
                ))

        if missing:
            self.logger.info(f"Seeded {len(missing)} achievements")

    @property
    def session_factory(self):
        """Session factory handed to services"""
        return self.async_session

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Session that commits on clean exit and rolls back on any exception.

        Helpers that accept a ``session`` argument (coin transfers, mood
        updates) join this transaction instead of opening their own:

            async with db.transaction() as session:
                await player_ops.transfer_coins(loser_id, winner_id, 10, session)
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")
