"""
Persistence boundary on Supabase.

RetryingStore retries transient transport failures only; WalletRepository is
the keyed select/insert/update surface the flows use for users and ledger rows.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

import httpx
from supabase import Client

from ghostbank.errors import PersistenceError
from ghostbank.models import Transaction, TransactionStatus, User

logger = logging.getLogger(__name__)

MISSING_TABLE_CODES = frozenset({"42P01", "PGRST205"})


def is_transient(error: BaseException) -> bool:
    """Network-class failure worth another attempt."""
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return True
    message = str(error)
    return "Load failed" in message or "fetch" in message


class RetryingStore:
    """Runs a persistence call with bounded retry on transient failures."""

    def __init__(self, max_attempts: int = 3, retry_delay: float = 1.0):
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    async def run(self, op: Callable[[], Any]) -> Any:
        attempt = 1
        while True:
            try:
                result = op()
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                if attempt >= self.max_attempts or not is_transient(e):
                    raise
                logger.warning(f"Transient store failure (attempt {attempt}/{self.max_attempts}): {e}")
                attempt += 1
                await asyncio.sleep(self.retry_delay)


class WalletRepository:
    """Users and transactions tables, every call wrapped by RetryingStore."""

    def __init__(self, supabase: Client, store: Optional[RetryingStore] = None):
        self.supabase = supabase
        self.store = store or RetryingStore()

    async def _execute(self, op: Callable[[], Any]) -> Any:
        try:
            return await self.store.run(op)
        except Exception as e:
            if getattr(e, "code", None) in MISSING_TABLE_CODES:
                raise PersistenceError("Configuration error: tables not found in Supabase") from e
            raise

    async def get_user(self, handle: str) -> Optional[User]:
        result = await self._execute(
            lambda: self.supabase.table("users").select("*").eq("nickname", handle).limit(1).execute()
        )
        if not result.data:
            return None
        return User.from_row(result.data[0])

    async def insert_user(self, handle: str) -> User:
        result = await self._execute(
            lambda: self.supabase.table("users").insert({"nickname": handle, "balance": 0}).execute()
        )
        if not result.data:
            raise PersistenceError("Could not create your account")
        return User.from_row(result.data[0])

    async def update_balance(self, handle: str, balance) -> None:
        await self._execute(
            lambda: self.supabase.table("users").update(
                {"balance": str(balance)}
            ).eq("nickname", handle).execute()
        )

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        result = await self._execute(
            lambda: self.supabase.table("transactions").select("*").eq("id", transaction_id).limit(1).execute()
        )
        if not result.data:
            return None
        return Transaction.from_row(result.data[0])

    async def insert_transaction(self, transaction: Transaction) -> None:
        row = transaction.to_row()
        await self._execute(lambda: self.supabase.table("transactions").insert(row).execute())

    async def mark_completed(self, transaction_id: str) -> bool:
        """
        Move a PENDING row to COMPLETED.

        Returns:
            True only if this call changed the row
        """
        result = await self._execute(
            lambda: self.supabase.table("transactions").update(
                {"status": TransactionStatus.COMPLETED.value}
            ).eq("id", transaction_id).eq("status", TransactionStatus.PENDING.value).execute()
        )
        return bool(result.data)

    async def list_transactions(self, handle: str) -> list[Transaction]:
        result = await self._execute(
            lambda: self.supabase.table("transactions").select("*").eq(
                "user_nickname", handle
            ).order("created_at", desc=True).execute()
        )
        return [Transaction.from_row(row) for row in result.data or []]
