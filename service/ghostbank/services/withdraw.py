"""
PIX withdrawals.

A withdrawal debits amount + fee and writes two COMPLETED ledger rows
(WITHDRAW and FEE). Every check happens before the first write.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from ghostbank.errors import InsufficientFunds, NotAuthenticated, ValidationError
from ghostbank.models import Transaction, TransactionKind, TransactionStatus
from ghostbank.services.store import WalletRepository
from ghostbank.utils.documents import is_valid_cpf
from ghostbank.utils.money import CENTS, parse_amount

logger = logging.getLogger(__name__)

PIX_KEY_TYPES = ("cpf", "email", "tel", "aleat")


@dataclass
class WithdrawQuote:
    amount: Decimal
    fee: Decimal
    total: Decimal


@dataclass
class WithdrawReceipt:
    quote: WithdrawQuote
    balance_after: Decimal
    withdraw_id: str
    fee_id: str


class WithdrawService:
    def __init__(self, repository: WalletRepository, fee_rate: Decimal = Decimal("0.12")):
        self.repository = repository
        self.fee_rate = Decimal(fee_rate)

    def quote(self, amount: Decimal) -> WithdrawQuote:
        fee = (amount * self.fee_rate).quantize(CENTS, rounding=ROUND_HALF_UP)
        return WithdrawQuote(amount=amount, fee=fee, total=amount + fee)

    async def request_withdraw(
        self,
        handle: Optional[str],
        amount: Any,
        pix_key: str,
        key_type: str = "cpf",
    ) -> WithdrawReceipt:
        """
        Send amount to pix_key, charging the service fee.

        Raises:
            NotAuthenticated: no signed-in user
            ValidationError: bad amount, missing key, unknown key type or invalid CPF
            InsufficientFunds: balance below amount + fee
        """
        if not handle:
            raise NotAuthenticated()

        value = parse_amount(amount)
        pix_key = (pix_key or "").strip()
        if not pix_key:
            raise ValidationError("Enter the destination PIX key.")
        if key_type not in PIX_KEY_TYPES:
            raise ValidationError(f"Unknown PIX key type: {key_type}")
        if key_type == "cpf" and not is_valid_cpf(pix_key):
            raise ValidationError("Invalid CPF key.")

        quote = self.quote(value)

        user = await self.repository.get_user(handle)
        balance = user.balance if user else Decimal("0")
        if balance < quote.total:
            raise InsufficientFunds(quote.total)

        new_balance = balance - quote.total
        await self.repository.update_balance(handle, new_balance)

        stamp = int(time.time() * 1000)
        now = datetime.now(timezone.utc)
        withdraw = Transaction(
            id=f"wd_{stamp}",
            kind=TransactionKind.WITHDRAW,
            amount=quote.amount,
            status=TransactionStatus.COMPLETED,
            created_at=now,
            description=f"PIX to {pix_key}",
            handle=handle,
        )
        fee = Transaction(
            id=f"fee_{stamp}",
            kind=TransactionKind.FEE,
            amount=quote.fee,
            status=TransactionStatus.COMPLETED,
            created_at=now,
            description="Transaction fee",
            handle=handle,
        )
        await self.repository.insert_transaction(withdraw)
        if fee.amount > 0:
            await self.repository.insert_transaction(fee)

        logger.info(f"Withdrawal {withdraw.id} for {handle}: {quote.amount} + fee {quote.fee}")
        return WithdrawReceipt(
            quote=quote,
            balance_after=new_balance,
            withdraw_id=withdraw.id,
            fee_id=fee.id,
        )
