"""
Composition root.

Builds every service once per process and hands them to the routers through
app.state. The session context and both flow controllers live here, not in
module globals.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, HTTPException, Request
from supabase import Client

from ghostbank.config import Settings
from ghostbank.errors import (
    ConnectivityError,
    GatewayError,
    GhostBankError,
    InsufficientFunds,
    NotAuthenticated,
    ServiceUnavailable,
    TokenInvalid,
    ValidationError,
)
from ghostbank.services.accounts import AccountService
from ghostbank.services.auth_flow import AuthFlowController
from ghostbank.services.deposit_flow import DepositFlowController
from ghostbank.services.payment_gateway import PaymentGatewayClient
from ghostbank.services.store import RetryingStore, WalletRepository
from ghostbank.services.transport import TransportFallbackClient, build_strategies
from ghostbank.services.withdraw import WithdrawService
from ghostbank.telegram_bot.context import SessionContext
from ghostbank.telegram_bot.telegram_api import TelegramBotApi
from ghostbank.telegram_bot.verification import BotVerificationService


@dataclass
class Services:
    settings: Settings
    transport: TransportFallbackClient
    repository: WalletRepository
    accounts: AccountService
    bot: BotVerificationService
    gateway: PaymentGatewayClient
    withdrawals: WithdrawService
    session: SessionContext
    auth_flow: AuthFlowController
    deposit_flow: Optional[DepositFlowController] = None

    def new_deposit_flow(self, handle: str) -> DepositFlowController:
        settings = self.settings
        flow = DepositFlowController(
            self.gateway,
            self.repository,
            handle,
            poll_interval=settings.deposit_poll_interval,
            charge_ttl_seconds=settings.deposit_ttl_seconds,
            success_delay=settings.success_display_delay,
            copied_feedback_seconds=settings.copied_feedback_seconds,
            payer_email=settings.payer_email,
            qr_render_url=settings.qr_render_url,
        )
        flow.on_close = lambda: self._forget_deposit_flow(flow)
        return flow

    def _forget_deposit_flow(self, flow: DepositFlowController) -> None:
        if self.deposit_flow is flow:
            self.deposit_flow = None

    async def close_deposit_flow(self) -> None:
        flow, self.deposit_flow = self.deposit_flow, None
        if flow is not None:
            await flow.aclose()

    async def shutdown(self) -> None:
        await self.auth_flow.aclose()
        await self.close_deposit_flow()
        await self.transport.close()


def build_services(
    settings: Settings,
    supabase: Optional[Client] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    repository: Optional[WalletRepository] = None,
) -> Services:
    transport = TransportFallbackClient(http_client, timeout=settings.http_timeout)

    if repository is None:
        if supabase is None:
            from ghostbank.supabase_client import get_supabase_client
            supabase = get_supabase_client(settings)
        repository = WalletRepository(
            supabase,
            RetryingStore(settings.store_max_attempts, settings.store_retry_delay),
        )

    api = TelegramBotApi(
        transport,
        settings.telegram_bot_token,
        build_strategies(settings.telegram_relays, settings.relay_templates),
        api_base=settings.telegram_api_base,
    )
    bot = BotVerificationService(api, code_validity_minutes=settings.otp_validity_seconds // 60)
    gateway = PaymentGatewayClient(
        transport,
        settings.lxpay_base_url,
        settings.lxpay_public_key,
        settings.lxpay_secret_key,
        build_strategies(settings.gateway_relays, settings.relay_templates),
    )
    accounts = AccountService(repository)
    session = SessionContext(settings.session_state_path)

    return Services(
        settings=settings,
        transport=transport,
        repository=repository,
        accounts=accounts,
        bot=bot,
        gateway=gateway,
        withdrawals=WithdrawService(repository, settings.withdraw_fee_rate),
        session=session,
        auth_flow=AuthFlowController(
            bot,
            accounts,
            session,
            poll_interval=settings.chat_poll_interval,
            otp_validity_seconds=settings.otp_validity_seconds,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_handle(services: Services = Depends(get_services)) -> str:
    """Handle of the signed-in user, 401 otherwise."""
    if not services.session.handle:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return services.session.handle


def to_http_exception(error: GhostBankError) -> HTTPException:
    """Translate a domain error into an actionable HTTP answer."""
    if isinstance(error, InsufficientFunds):
        return HTTPException(status_code=402, detail=error.message)
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, NotAuthenticated):
        return HTTPException(status_code=401, detail=error.message)
    if isinstance(error, (TokenInvalid, GatewayError)):
        return HTTPException(status_code=502, detail=error.message)
    if isinstance(error, (ConnectivityError, ServiceUnavailable)):
        return HTTPException(status_code=503, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)
