"""
Deposit API.

One deposit flow at a time for the signed-in user: create a PIX charge (or
resume a pending one), then poll /deposits/current until it reaches
success or expired.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ghostbank.deps import Services, get_services, require_handle, to_http_exception
from ghostbank.errors import GhostBankError
from ghostbank.models import TransactionKind, TransactionStatus
from ghostbank.services.deposit_flow import DepositFlowController

router = APIRouter(prefix="/deposits", tags=["deposits"])


class DepositRequest(BaseModel):
    amount: str


class DepositResponse(BaseModel):
    stage: str
    transaction_id: Optional[str] = None
    amount: Optional[str] = None
    remaining_seconds: int
    countdown: str
    payment_code: Optional[str] = None
    qr_source: str
    qr_image: Optional[str] = None
    polling: bool
    copied: bool
    error: Optional[str] = None


class CopyResponse(BaseModel):
    payment_code: str
    copied: bool


def _current_flow(services: Services, handle: str) -> DepositFlowController:
    flow = services.deposit_flow
    if flow is None or flow.handle != handle:
        raise HTTPException(status_code=404, detail="No open deposit")
    return flow


@router.post("", response_model=DepositResponse)
async def create_deposit(
    request: DepositRequest,
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    """Generate a PIX charge for the amount."""
    await services.close_deposit_flow()
    flow = services.new_deposit_flow(handle)
    services.deposit_flow = flow

    try:
        await flow.submit_amount(request.amount)
    except GhostBankError as e:
        raise to_http_exception(e)
    return DepositResponse(**flow.snapshot())


@router.post("/resume/{transaction_id}", response_model=DepositResponse)
async def resume_deposit(
    transaction_id: str,
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    """Reopen a pending deposit; an old one lands directly on expired."""
    transaction = await services.repository.get_transaction(transaction_id)
    if transaction is None or transaction.handle != handle:
        raise HTTPException(status_code=404, detail="Transaction not found")
    if transaction.kind is not TransactionKind.DEPOSIT or transaction.status is not TransactionStatus.PENDING:
        raise HTTPException(status_code=400, detail="Only pending deposits can be resumed")

    await services.close_deposit_flow()
    flow = services.new_deposit_flow(handle)
    services.deposit_flow = flow
    flow.resume(transaction)
    return DepositResponse(**flow.snapshot())


@router.get("/current", response_model=DepositResponse)
async def get_current(
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    return DepositResponse(**_current_flow(services, handle).snapshot())


@router.post("/current/restart", response_model=DepositResponse)
async def restart_current(
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    flow = _current_flow(services, handle)
    try:
        flow.restart()
    except GhostBankError as e:
        raise to_http_exception(e)
    return DepositResponse(**flow.snapshot())


@router.post("/current/copy", response_model=CopyResponse)
async def copy_code(
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    """
    Copy-and-paste code. The HTTP client is the clipboard here: the code is
    handed back in the response and the flow shows its "copied" state.
    """
    flow = _current_flow(services, handle)
    copied_codes: list[str] = []
    if not await flow.copy_code(copied_codes.append):
        raise HTTPException(status_code=404, detail="Code unavailable")
    return CopyResponse(payment_code=copied_codes[0], copied=flow.copied)


@router.post("/current/close")
async def close_current(
    handle: str = Depends(require_handle),
    services: Services = Depends(get_services),
):
    flow = _current_flow(services, handle)
    await flow.close()
    return {"ok": True}
