"""
PIX deposit flow.

FORM -> PAYMENT -> SUCCESS | EXPIRED  (EXPIRED -> FORM on restart)

While in PAYMENT one task runs two loops side by side: a 1 s countdown to
created_at + TTL and a confirmation poll every 10 s. The countdown never waits
on the poll. A pending deposit from an earlier session can be resumed; its
remaining time is derived from the stored created_at alone.
"""

import asyncio
import inspect
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import urlencode

from ghostbank.errors import GhostBankError, ValidationError
from ghostbank.models import (
    ChargeStatus,
    Payer,
    PixCharge,
    Transaction,
    TransactionKind,
    TransactionStatus,
)
from ghostbank.services.payment_gateway import PaymentGatewayClient
from ghostbank.services.scheduler import ScheduledTask
from ghostbank.services.store import WalletRepository
from ghostbank.utils.documents import generate_cpf
from ghostbank.utils.money import parse_amount

logger = logging.getLogger(__name__)

DEFAULT_QR_RENDER_URL = "https://api.qrserver.com/v1/create-qr-code/"


class DepositStage(str, Enum):
    FORM = "form"
    PAYMENT = "payment"
    SUCCESS = "success"
    EXPIRED = "expired"


@dataclass
class QrImage:
    source: str  # embedded | hosted | generated | unavailable
    src: Optional[str] = None


def resolve_qr_image(charge: Optional[PixCharge], render_url: str = DEFAULT_QR_RENDER_URL) -> QrImage:
    """
    Pick the QR image to show, in strict order:
    gateway base64, gateway hosted URL, rendered from the text code, none.
    """
    if charge is None:
        return QrImage("unavailable")

    embedded = charge.payment_base64
    if embedded and len(embedded) > 20:
        if not embedded.startswith("data:"):
            embedded = f"data:image/png;base64,{embedded}"
        return QrImage("embedded", embedded)

    if charge.payment_image and charge.payment_image.startswith("http"):
        return QrImage("hosted", charge.payment_image)

    if charge.payment_code:
        query = urlencode({"size": "300x300", "margin": "10", "data": charge.payment_code})
        return QrImage("generated", f"{render_url}?{query}")

    return QrImage("unavailable")


def format_countdown(seconds: int) -> str:
    seconds = max(seconds, 0)
    return f"{seconds // 60}:{seconds % 60:02d}"


async def _invoke(callback: Optional[Callable], *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DepositFlowController:
    """State machine for one deposit (new or resumed)."""

    def __init__(
        self,
        gateway: PaymentGatewayClient,
        repository: WalletRepository,
        handle: str,
        on_success: Optional[Callable[[], Any]] = None,
        on_close: Optional[Callable[[], Any]] = None,
        poll_interval: float = 10.0,
        tick_interval: float = 1.0,
        charge_ttl_seconds: int = 600,
        success_delay: float = 3.5,
        copied_feedback_seconds: float = 2.0,
        payer_email: str = "cliente@ghostbank.com",
        qr_render_url: str = DEFAULT_QR_RENDER_URL,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.gateway = gateway
        self.repository = repository
        self.handle = handle
        self.on_success = on_success
        self.on_close = on_close
        self.poll_interval = poll_interval
        self.tick_interval = tick_interval
        self.charge_ttl_seconds = charge_ttl_seconds
        self.success_delay = success_delay
        self.copied_feedback_seconds = copied_feedback_seconds
        self.payer_email = payer_email
        self.qr_render_url = qr_render_url
        self.now = now

        self.stage = DepositStage.FORM
        self.charge: Optional[PixCharge] = None
        self.amount: Optional[Decimal] = None
        self.remaining_seconds = 0
        self.error: Optional[str] = None
        self.copied = False
        self.closed = False

        self._task: Optional[ScheduledTask] = None
        self._copied_timer: Optional[ScheduledTask] = None
        self._settling = False

    # -- transitions ---------------------------------------------------------

    def _enter(self, stage: DepositStage, task: Optional[ScheduledTask] = None) -> None:
        if self._task is not None:
            self._task.cancel()
        self._task = task
        logger.info(f"Deposit flow for {self.handle}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def _enter_payment(self, remaining_seconds: int) -> None:
        self.remaining_seconds = remaining_seconds
        self._settling = False
        self._enter(
            DepositStage.PAYMENT,
            ScheduledTask.start(self._run_payment(), name=f"deposit {self.charge.transaction_id}"),
        )

    def _enter_success(self) -> None:
        self._enter(DepositStage.SUCCESS, ScheduledTask.start(self._finish_after_delay()))

    # -- operations ----------------------------------------------------------

    def build_payer(self) -> Payer:
        return Payer(
            name=self.handle.lstrip("@"),
            email=self.payer_email,
            document=generate_cpf(),
        )

    async def submit_amount(self, amount: Any) -> PixCharge:
        """Create a charge for amount and start waiting for payment."""
        if self.stage is not DepositStage.FORM:
            raise ValidationError("A PIX charge is already open.")

        self.error = None
        try:
            value = parse_amount(amount)
            charge = await self.gateway.create_charge(value, self.build_payer())
        except GhostBankError as e:
            self.error = e.message
            raise

        self.amount = value
        self.charge = charge
        await self._record_pending(charge, value)
        self._enter_payment(self.charge_ttl_seconds)
        return charge

    async def _record_pending(self, charge: PixCharge, amount: Decimal) -> None:
        transaction = Transaction(
            id=charge.transaction_id,
            kind=TransactionKind.DEPOSIT,
            amount=amount,
            status=TransactionStatus.PENDING,
            created_at=self.now(),
            description="PIX deposit",
            handle=self.handle,
            payment_code=charge.payment_code,
            payment_image=charge.stored_image,
        )
        try:
            await self.repository.insert_transaction(transaction)
        except Exception as e:
            logger.error(f"Could not store pending deposit {charge.transaction_id}: {e}")

    def resume(self, transaction: Transaction) -> None:
        """Reopen a pending deposit from an earlier session."""
        if transaction.kind is not TransactionKind.DEPOSIT or transaction.status is not TransactionStatus.PENDING:
            raise ValidationError("Only pending deposits can be resumed.")

        self.error = None
        self.charge = PixCharge.from_transaction(transaction)
        self.amount = transaction.amount

        expires_at = transaction.created_at + timedelta(seconds=self.charge_ttl_seconds)
        remaining = math.floor((expires_at - self.now()).total_seconds())

        if remaining <= 0:
            self.remaining_seconds = 0
            self._enter(DepositStage.EXPIRED)
            return

        self._enter_payment(remaining)

    def restart(self) -> None:
        """EXPIRED -> FORM for a new charge."""
        if self.stage is not DepositStage.EXPIRED:
            raise ValidationError("Only an expired charge can be restarted.")
        self.charge = None
        self.amount = None
        self.remaining_seconds = 0
        self.error = None
        self.copied = False
        self._enter(DepositStage.FORM)

    async def copy_code(self, clipboard: Callable[[str], Any], fallback: Optional[Callable[[str], Any]] = None) -> bool:
        """
        Copy the PIX text code, falling back to the legacy writer when the
        clipboard is unavailable. Shows "copied" for a short while either way.
        """
        code = self.charge.payment_code if self.charge else ""
        if not code:
            return False

        try:
            await _invoke(clipboard, code)
        except Exception as e:
            if fallback is None:
                raise
            logger.info(f"Clipboard unavailable ({e}), using fallback copy")
            await _invoke(fallback, code)

        self.copied = True
        if self._copied_timer is not None:
            self._copied_timer.cancel()
        self._copied_timer = ScheduledTask.start(self._reset_copied())
        return True

    async def close(self) -> None:
        """User closed the flow."""
        await self.aclose()
        await _invoke(self.on_close)

    async def aclose(self) -> None:
        """Cancel every task this controller owns."""
        self.closed = True
        for attr in ("_task", "_copied_timer"):
            task = getattr(self, attr)
            setattr(self, attr, None)
            if task is not None:
                await task.aclose()

    @property
    def qr_image(self) -> QrImage:
        return resolve_qr_image(self.charge, self.qr_render_url)

    def snapshot(self) -> dict:
        qr = self.qr_image
        return {
            "stage": self.stage.value,
            "transaction_id": self.charge.transaction_id if self.charge else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "remaining_seconds": self.remaining_seconds,
            "countdown": format_countdown(self.remaining_seconds),
            "payment_code": self.charge.payment_code if self.charge else None,
            "qr_source": qr.source,
            "qr_image": qr.src,
            "polling": self.stage is DepositStage.PAYMENT,
            "copied": self.copied,
            "error": self.error,
        }

    # -- background work -----------------------------------------------------

    async def _run_payment(self) -> None:
        await asyncio.gather(self._countdown(), self._confirmation_loop())

    async def _countdown(self) -> None:
        while self.remaining_seconds > 0:
            await asyncio.sleep(self.tick_interval)
            self.remaining_seconds -= 1

        if self._settling:
            return
        logger.info(f"Charge {self.charge.transaction_id} expired")
        self._enter(DepositStage.EXPIRED)

    async def _confirmation_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                paid = await self.check_payment()
            except Exception as e:
                logger.error(f"Automatic payment check failed, retrying next tick: {e}")
                continue

            logger.debug(f"Checked TX {self.charge.transaction_id}: {'PAID' if paid else 'PENDING'}")
            if paid:
                self._enter_success()
                return

    async def check_payment(self) -> bool:
        """
        One confirmation check.

        A locally COMPLETED row short-circuits without calling the gateway,
        so overlapping resumptions never credit twice.
        """
        transaction_id = self.charge.transaction_id
        local = await self.repository.get_transaction(transaction_id)
        if local is None:
            logger.warning(f"No local record for {transaction_id}")
            return False
        if local.status is TransactionStatus.COMPLETED:
            return True

        status = await self.gateway.query_status(transaction_id)
        if status is not ChargeStatus.PAID:
            return False

        self._settling = True
        try:
            await asyncio.shield(self._settle(local))
        except asyncio.CancelledError:
            raise
        except Exception:
            self._settling = False
            # The countdown stood down for this settlement; expire on its behalf
            if self.stage is DepositStage.PAYMENT and self.remaining_seconds <= 0:
                logger.info(f"Charge {transaction_id} expired after a failed settlement")
                self._enter(DepositStage.EXPIRED)
            raise
        return True

    async def _settle(self, transaction: Transaction) -> None:
        """Mark the deposit COMPLETED and credit the balance once."""
        if not await self.repository.mark_completed(transaction.id):
            logger.info(f"Deposit {transaction.id} already settled, not crediting again")
            return

        user = await self.repository.get_user(self.handle)
        current = user.balance if user else Decimal("0")
        await self.repository.update_balance(self.handle, current + transaction.amount)
        logger.info(f"Credited {transaction.amount} to {self.handle} for {transaction.id}")

    async def _finish_after_delay(self) -> None:
        await asyncio.sleep(self.success_delay)
        await _invoke(self.on_success)
        await self.close()

    async def _reset_copied(self) -> None:
        await asyncio.sleep(self.copied_feedback_seconds)
        self.copied = False
