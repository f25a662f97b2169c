import logging

import pytest
from sqlalchemy import select

from puzzlebot.database.models import Player
from puzzlebot.services.base import BaseService


async def player_names(db):
    async with db.get_session() as session:
        result = await session.execute(select(Player.display_name).order_by(Player.id))
        return list(result.scalars().all())


class TestSessions:
    async def test_get_session_commits(self, db):
        service = BaseService(db.session_factory)
        async with service.get_session() as session:
            session.add(Player(external_id='ext-ada', display_name='Ada'))

        assert await player_names(db) == ['Ada']

    async def test_get_session_rolls_back_and_reraises(self, db):
        service = BaseService(db.session_factory)
        with pytest.raises(RuntimeError):
            async with service.get_session() as session:
                session.add(Player(external_id='ext-ada', display_name='Ada'))
                await session.flush()
                raise RuntimeError("boom")

        assert await player_names(db) == []

    async def test_use_session_joins_the_callers_transaction(self, db):
        service = BaseService(db.session_factory)
        with pytest.raises(RuntimeError):
            async with db.transaction() as outer:
                async with service.use_session(outer) as inner:
                    assert inner is outer
                    inner.add(Player(external_id='ext-ada', display_name='Ada'))
                    await inner.flush()
                raise RuntimeError("caller failed")

        # Nothing committed on its own when joining
        assert await player_names(db) == []


class TestOperationLoggers:
    def test_each_line_is_emitted_once(self, guess_ops, duel_ops):
        for ops in (guess_ops, duel_ops):
            handlers = []
            log = ops.logger
            while log is not None and log is not logging.getLogger():
                handlers.extend(log.handlers)
                log = log.parent if log.propagate else None
            assert len(handlers) == 1, ops.logger.name
