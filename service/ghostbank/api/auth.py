"""
Login API.

Drives the Telegram OTP flow for this device: start with a handle, poll the
flow until a code was sent, submit the code.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ghostbank.deps import Services, get_services, to_http_exception
from ghostbank.errors import GhostBankError

router = APIRouter(prefix="/auth", tags=["auth"])


class StartRequest(BaseModel):
    handle: str


class OtpRequest(BaseModel):
    code: str


class BotInfoResponse(BaseModel):
    id: int
    display_name: str
    handle: str


class AuthFlowResponse(BaseModel):
    stage: str
    handle: Optional[str] = None
    error: Optional[str] = None
    bot_handle: Optional[str] = None


class UserResponse(BaseModel):
    handle: str
    balance: Decimal


@router.get("/bot", response_model=BotInfoResponse)
async def get_bot(services: Services = Depends(get_services)):
    """Bot the user must write to."""
    flow = services.auth_flow
    identity = flow.bot_identity or await flow.initialize()
    if identity is None:
        raise HTTPException(status_code=503, detail=flow.error or "Telegram bot unavailable")
    return BotInfoResponse(id=identity.id, display_name=identity.display_name, handle=identity.handle)


@router.post("/start", response_model=AuthFlowResponse)
async def start_login(request: StartRequest, services: Services = Depends(get_services)):
    """Begin chat discovery for the typed Telegram handle."""
    try:
        await services.auth_flow.submit_handle(request.handle)
    except GhostBankError as e:
        raise to_http_exception(e)
    return AuthFlowResponse(**services.auth_flow.snapshot())


@router.get("/flow", response_model=AuthFlowResponse)
async def get_flow(services: Services = Depends(get_services)):
    return AuthFlowResponse(**services.auth_flow.snapshot())


@router.post("/otp", response_model=UserResponse)
async def submit_otp(request: OtpRequest, services: Services = Depends(get_services)):
    """Check the code received in Telegram and sign in."""
    flow = services.auth_flow
    try:
        user = await flow.submit_code(request.code)
    except GhostBankError as e:
        raise to_http_exception(e)

    if user is None:
        raise HTTPException(status_code=400, detail=flow.error or "Incorrect code.")
    return UserResponse(handle=user.handle, balance=user.balance)


@router.post("/cancel", response_model=AuthFlowResponse)
async def cancel_login(services: Services = Depends(get_services)):
    services.auth_flow.cancel()
    return AuthFlowResponse(**services.auth_flow.snapshot())


@router.get("/session", response_model=UserResponse)
async def get_session(services: Services = Depends(get_services)):
    """Currently signed-in user, restored from the last session if needed."""
    user = None
    if services.session.handle:
        user = await services.repository.get_user(services.session.handle)
    else:
        user = await services.accounts.restore(services.session)

    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return UserResponse(handle=user.handle, balance=user.balance)


@router.post("/logout")
async def logout(services: Services = Depends(get_services)):
    services.auth_flow.cancel()
    await services.close_deposit_flow()
    await services.accounts.logout(services.session)
    return {"ok": True}
