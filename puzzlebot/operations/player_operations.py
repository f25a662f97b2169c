"""
Player Operations Module

Business logic for the Player lifecycle and the hint-coin ledger.

Key functionality:
- get_or_create_player(): Atomic external identity -> Player conversion
- add_coin_transaction_atomic(): Row-locked balance change with ledger entry
- Balance integrity checks between the cached balance and the ledger

The transport layer owns identity; everything downstream of it works with
the internal player id returned here.
"""

from typing import List, Optional
from contextlib import asynccontextmanager

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from puzzlebot.config import Config
from puzzlebot.constants import LedgerReasons
from puzzlebot.database.models import Player, CoinLedger
from puzzlebot.utils.exceptions import PlayerNotFoundError
from puzzlebot.utils.logger import setup_logger
from puzzlebot.utils.time_utils import utcnow

logger = setup_logger(__name__)


class PlayerOperationError(Exception):
    """Base exception for player operation errors"""
    pass


class PlayerValidationError(PlayerOperationError):
    """Raised when player data validation fails"""
    pass


class InsufficientCoinsError(PlayerOperationError):
    """Raised when a spend would take a balance below zero"""
    pass


class PlayerOperations:
    """
    Business logic operations for Player management and the coin economy.
    """

    def __init__(self, database):
        """Initialize with database instance"""
        self.db = database
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new session.
        """
        if session:
            # If a session is provided, we do not manage its lifecycle
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    def _validate_identity(self, external_id: str, display_name: str):
        if not external_id or not str(external_id).strip():
            raise PlayerValidationError("external_id is required")
        if not display_name or not display_name.strip():
            raise PlayerValidationError("display_name is required")
        if len(display_name) > 100:
            raise PlayerValidationError("display_name must be at most 100 characters")

    async def get_or_create_player(
        self,
        external_id: str,
        display_name: str,
        update_activity: bool = True,
        session: Optional[AsyncSession] = None
    ) -> Player:
        """
        Get existing Player or create new one from a transport identity (atomic operation).

        Idempotent: safe to call for every incoming interaction. New players get
        the configured starting hint-coin balance, recorded in the ledger.

        Args:
            external_id: Opaque identifier owned by the transport
            display_name: Name to show on leaderboards
            update_activity: Whether to update last_active timestamp

        Returns:
            Player: Existing or newly created Player record

        Raises:
            PlayerValidationError: If identity data is invalid
            PlayerOperationError: If database operation fails
        """
        self._validate_identity(external_id, display_name)
        external_id = str(external_id)

        async with self._get_session_context(session) as s:
            try:
                result = await s.execute(
                    select(Player).where(Player.external_id == external_id)
                )
                existing_player = result.scalar_one_or_none()

                if existing_player:
                    if update_activity:
                        await s.execute(
                            update(Player)
                            .where(Player.id == existing_player.id)
                            .values(last_active=utcnow(), display_name=display_name)
                        )
                        if not session:
                            await s.commit()
                        self.logger.debug(f"Updated activity for Player {existing_player.id}")
                    return existing_player

                new_player = Player(
                    external_id=external_id,
                    display_name=display_name,
                    mood_tier=0,
                    best_streak=0,
                    hint_coins=0
                )
                s.add(new_player)
                await s.flush()

                if Config.STARTING_HINT_COINS > 0:
                    await self.add_coin_transaction_atomic(
                        new_player.id, Config.STARTING_HINT_COINS,
                        LedgerReasons.STARTING_BALANCE, session=s
                    )

                if not session:
                    await s.commit()
                await s.refresh(new_player)

                self.logger.info(
                    f"Created new Player {new_player.id} for external id {external_id} ({display_name})"
                )
                return new_player

            except IntegrityError:
                # Concurrent first interaction created the row first
                await s.rollback()
                if session:
                    raise
                result = await s.execute(
                    select(Player).where(Player.external_id == external_id)
                )
                player = result.scalar_one_or_none()
                if player is None:
                    raise PlayerOperationError(f"Could not create Player for {external_id}")
                return player
            except PlayerOperationError:
                raise
            except Exception as e:
                self.logger.error(f"Failed to get/create Player for external id {external_id}: {e}")
                raise PlayerOperationError(f"Database error in get_or_create_player: {e}")

    async def get_player(self, player_id: int, session: Optional[AsyncSession] = None) -> Player:
        """Load a player by internal id, raising PlayerNotFoundError if absent"""
        async with self._get_session_context(session) as s:
            player = await s.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)
            return player

    async def get_player_by_external_id(self, external_id: str) -> Optional[Player]:
        async with self.db.get_session() as s:
            result = await s.execute(
                select(Player).where(Player.external_id == str(external_id))
            )
            return result.scalar_one_or_none()

    async def add_coin_transaction_atomic(
        self,
        player_id: int,
        amount: int,
        reason: str,
        session: AsyncSession,
        duel_id: Optional[int] = None
    ) -> CoinLedger:
        """
        Add a coin transaction with atomic balance tracking (session-aware).

        Locks the player row with SELECT FOR UPDATE so concurrent balance
        changes serialize. The caller owns the commit.
        """
        player_result = await session.execute(
            select(Player).where(Player.id == player_id).with_for_update()
        )
        player = player_result.scalar_one_or_none()
        if player is None:
            raise PlayerNotFoundError(player_id)

        new_balance = player.hint_coins + amount

        if new_balance < 0 and amount < 0:
            raise InsufficientCoinsError(
                f"Insufficient coins. Current: {player.hint_coins}, Attempted: {amount}"
            )

        player.hint_coins = new_balance

        ledger_entry = CoinLedger(
            player_id=player_id,
            change_amount=amount,
            reason=reason,
            balance_after=new_balance,
            related_duel_id=duel_id
        )

        session.add(ledger_entry)
        await session.flush()

        return ledger_entry

    async def transfer_coins(
        self,
        from_player_id: int,
        to_player_id: int,
        amount: int,
        session: AsyncSession,
        duel_id: Optional[int] = None
    ) -> int:
        """
        Move coins between players, clamped to the payer's balance.

        Returns:
            The amount actually transferred (0 when the payer is empty)
        """
        if amount <= 0:
            return 0

        payer = await session.execute(
            select(Player.hint_coins).where(Player.id == from_player_id).with_for_update()
        )
        available = payer.scalar_one_or_none()
        if available is None:
            raise PlayerNotFoundError(from_player_id)

        transferable = min(amount, available)
        if transferable <= 0:
            return 0

        await self.add_coin_transaction_atomic(
            from_player_id, -transferable, LedgerReasons.DUEL_LOSS, session, duel_id=duel_id
        )
        await self.add_coin_transaction_atomic(
            to_player_id, transferable, LedgerReasons.DUEL_WIN, session, duel_id=duel_id
        )
        return transferable

    async def grant_coins(self, player_id: int, amount: int) -> CoinLedger:
        """Admin balance adjustment in its own transaction"""
        async with self.db.transaction() as session:
            entry = await self.add_coin_transaction_atomic(
                player_id, amount, LedgerReasons.ADMIN_GRANT, session
            )
        self.logger.info(f"Granted {amount} coins to Player {player_id} (balance {entry.balance_after})")
        return entry

    async def get_coin_balance(self, player_id: int) -> int:
        """Get current coin balance for a player"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Player.hint_coins).where(Player.id == player_id)
            )
            balance = result.scalar_one_or_none()
            return balance if balance is not None else 0

    async def get_coin_history(self, player_id: int, limit: int = 20) -> List[CoinLedger]:
        """Get coin transaction history for a player, newest first"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(CoinLedger)
                .where(CoinLedger.player_id == player_id)
                .order_by(CoinLedger.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def verify_coin_balance_integrity(self, player_id: int) -> dict:
        """Verify coin balance integrity by comparing cache with ledger"""
        async with self.db.get_session() as session:
            player_result = await session.execute(
                select(Player.hint_coins).where(Player.id == player_id)
            )
            cached_balance = player_result.scalar_one_or_none() or 0

            ledger_result = await session.execute(
                select(func.sum(CoinLedger.change_amount)).where(CoinLedger.player_id == player_id)
            )
            calculated_balance = ledger_result.scalar_one_or_none() or 0

            return {
                'player_id': player_id,
                'cached_balance': cached_balance,
                'calculated_balance': calculated_balance,
                'integrity_check': cached_balance == calculated_balance
            }
