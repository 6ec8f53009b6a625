"""
Wallet API.

Balance, statement and PIX withdrawals for the signed-in user.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ghostbank.deps import Services, get_services, require_handle, to_http_exception
from ghostbank.errors import GhostBankError

router = APIRouter(prefix="/wallet", tags=["wallet"])


class BalanceResponse(BaseModel):
    handle: str
    balance: Decimal


class TransactionItem(BaseModel):
    id: str
    type: str
    amount: Decimal
    status: str
    date: datetime
    description: str
    pix_code: Optional[str] = None
    pix_qr_image: Optional[str] = None


class WithdrawRequest(BaseModel):
    amount: str
    pix_key: str
    key_type: str = "cpf"


class WithdrawResponse(BaseModel):
    amount: Decimal
    fee: Decimal
    total: Decimal
    balance: Decimal
    withdraw_id: str
    fee_id: str


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    balance = await services.accounts.balance(handle)
    return BalanceResponse(handle=handle, balance=balance)


@router.get("/transactions", response_model=list[TransactionItem])
async def list_transactions(
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    """Ledger rows, newest first."""
    transactions = await services.accounts.transactions(handle)
    return [
        TransactionItem(
            id=tx.id,
            type=tx.kind.value,
            amount=tx.amount,
            status=tx.status.value,
            date=tx.created_at,
            description=tx.description,
            pix_code=tx.payment_code,
            pix_qr_image=tx.payment_image,
        )
        for tx in transactions
    ]


@router.post("/withdraw", response_model=WithdrawResponse)
async def withdraw(
    request: WithdrawRequest,
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    """Send a PIX transfer; a 12% service fee is added on top."""
    try:
        receipt = await services.withdrawals.request_withdraw(
            handle, request.amount, request.pix_key, request.key_type
        )
    except GhostBankError as e:
        raise to_http_exception(e)

    return WithdrawResponse(
        amount=receipt.quote.amount,
        fee=receipt.quote.fee,
        total=receipt.quote.total,
        balance=receipt.balance_after,
        withdraw_id=receipt.withdraw_id,
        fee_id=receipt.fee_id,
    )
