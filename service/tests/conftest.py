import asyncio
import os
from decimal import Decimal
from typing import Callable, Optional

import httpx
import pytest

os.environ.setdefault("SUPABASE_URL", "https://project.supabase.test")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN-ABCDEFGHIJKLMNOP")

from ghostbank.models import Transaction, TransactionStatus, User  # noqa: E402


class FakeRepository:
    """In-memory stand-in for WalletRepository."""

    def __init__(self):
        self.users: dict[str, Decimal] = {}
        self.transactions: dict[str, Transaction] = {}
        self.writes: list[tuple] = []

    async def get_user(self, handle: str) -> Optional[User]:
        if handle not in self.users:
            return None
        return User(handle=handle, balance=self.users[handle])

    async def insert_user(self, handle: str) -> User:
        self.writes.append(("insert_user", handle))
        self.users[handle] = Decimal("0")
        return User(handle=handle, balance=Decimal("0"))

    async def update_balance(self, handle: str, balance) -> None:
        self.writes.append(("update_balance", handle, balance))
        self.users[handle] = Decimal(balance)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self.transactions.get(transaction_id)

    async def insert_transaction(self, transaction: Transaction) -> None:
        self.writes.append(("insert_transaction", transaction.id))
        self.transactions[transaction.id] = transaction

    async def mark_completed(self, transaction_id: str) -> bool:
        self.writes.append(("mark_completed", transaction_id))
        transaction = self.transactions.get(transaction_id)
        if transaction is None or transaction.status is not TransactionStatus.PENDING:
            return False
        transaction.status = TransactionStatus.COMPLETED
        return True

    async def list_transactions(self, handle: str) -> list[Transaction]:
        rows = [tx for tx in self.transactions.values() if tx.handle == handle]
        return sorted(rows, key=lambda tx: tx.created_at, reverse=True)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, step: float = 0.005) -> bool:
    """Yield to the loop until predicate() holds or timeout elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(step)
    return True


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()
