"""
Account resolution and session lifecycle.

Maps a verified Telegram handle to a users row, creating it on first login.
"""

import logging
from decimal import Decimal
from typing import Optional

from ghostbank.errors import NotAuthenticated
from ghostbank.models import Transaction, User
from ghostbank.services.store import WalletRepository
from ghostbank.telegram_bot.context import SessionContext

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, repository: WalletRepository):
        self.repository = repository

    async def login(self, handle: str) -> User:
        """Find or create the user for a verified handle."""
        user = await self.repository.get_user(handle)
        if user:
            logger.info(f"Found existing user {handle}")
            return user

        logger.info(f"User not found, creating {handle}")
        return await self.repository.insert_user(handle)

    async def restore(self, session: SessionContext) -> Optional[User]:
        """Silent session restoration from the last saved handle."""
        handle = await session.load()
        if not handle:
            return None

        try:
            user = await self.repository.get_user(handle)
        except Exception as e:
            logger.warning(f"Session restore for {handle} failed: {e}")
            return None

        if not user:
            await session.clear()
        return user

    async def logout(self, session: SessionContext) -> None:
        await session.clear()

    async def balance(self, handle: Optional[str]) -> Decimal:
        if not handle:
            raise NotAuthenticated()
        user = await self.repository.get_user(handle)
        return user.balance if user else Decimal("0")

    async def transactions(self, handle: Optional[str]) -> list[Transaction]:
        if not handle:
            raise NotAuthenticated()
        return await self.repository.list_transactions(handle)
