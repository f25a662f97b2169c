import pytest

from puzzlebot.config import Config
from puzzlebot.constants import LedgerReasons
from puzzlebot.operations.player_operations import InsufficientCoinsError, PlayerValidationError
from puzzlebot.utils.exceptions import PlayerNotFoundError


class TestPlayerLifecycle:
    async def test_new_player_gets_starting_balance(self, player_ops):
        player = await player_ops.get_or_create_player('u-1', 'Ada')

        assert player.mood_tier == 0
        assert player.best_streak == 0
        assert player.hint_coins == Config.STARTING_HINT_COINS

        history = await player_ops.get_coin_history(player.id)
        assert [entry.reason for entry in history] == [LedgerReasons.STARTING_BALANCE]
        assert history[0].balance_after == Config.STARTING_HINT_COINS

    async def test_get_or_create_is_idempotent(self, player_ops):
        first = await player_ops.get_or_create_player('u-1', 'Ada')
        second = await player_ops.get_or_create_player('u-1', 'Ada Lovelace')

        assert first.id == second.id
        assert len(await player_ops.get_coin_history(first.id)) == 1
        reloaded = await player_ops.get_player(first.id)
        assert reloaded.display_name == 'Ada Lovelace'

    async def test_lookup_by_external_id(self, player_ops):
        player = await player_ops.get_or_create_player('u-9', 'Grace')
        found = await player_ops.get_player_by_external_id('u-9')
        assert found.id == player.id
        assert await player_ops.get_player_by_external_id('nobody') is None

    async def test_blank_display_name_rejected(self, player_ops):
        with pytest.raises(PlayerValidationError):
            await player_ops.get_or_create_player('u-1', '   ')

    async def test_unknown_player(self, player_ops):
        with pytest.raises(PlayerNotFoundError):
            await player_ops.get_player(404)


class TestCoinLedger:
    async def test_grant_and_integrity(self, player_ops):
        player = await player_ops.get_or_create_player('u-1', 'Ada')
        entry = await player_ops.grant_coins(player.id, 5)

        assert entry.balance_after == Config.STARTING_HINT_COINS + 5
        assert await player_ops.get_coin_balance(player.id) == Config.STARTING_HINT_COINS + 5

        integrity = await player_ops.verify_coin_balance_integrity(player.id)
        assert integrity['integrity_check']

    async def test_overspend_rejected_and_rolled_back(self, player_ops):
        player = await player_ops.get_or_create_player('u-1', 'Ada')

        with pytest.raises(InsufficientCoinsError):
            await player_ops.grant_coins(player.id, -(Config.STARTING_HINT_COINS + 1))

        assert await player_ops.get_coin_balance(player.id) == Config.STARTING_HINT_COINS
        assert len(await player_ops.get_coin_history(player.id)) == 1

    async def test_transfer_clamped_to_payer_balance(self, db, player_ops):
        payer = await player_ops.get_or_create_player('u-1', 'Ada')
        payee = await player_ops.get_or_create_player('u-2', 'Grace')

        async with db.transaction() as session:
            moved = await player_ops.transfer_coins(
                payer.id, payee.id, Config.STARTING_HINT_COINS + 50, session
            )

        assert moved == Config.STARTING_HINT_COINS
        assert await player_ops.get_coin_balance(payer.id) == 0
        assert await player_ops.get_coin_balance(payee.id) == 2 * Config.STARTING_HINT_COINS

        payer_history = await player_ops.get_coin_history(payer.id)
        assert payer_history[0].reason == LedgerReasons.DUEL_LOSS
        assert (await player_ops.verify_coin_balance_integrity(payee.id))['integrity_check']

    async def test_transfer_of_nothing(self, db, player_ops):
        payer = await player_ops.get_or_create_player('u-1', 'Ada')
        payee = await player_ops.get_or_create_player('u-2', 'Grace')

        async with db.transaction() as session:
            assert await player_ops.transfer_coins(payer.id, payee.id, 0, session) == 0
