"""
Tests for the PIX deposit state machine: countdown, confirmation polling,
resumption and exactly-once crediting.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import FakeRepository, wait_until
from ghostbank.errors import ConnectivityError, GatewayError, ValidationError
from ghostbank.models import (
    ChargeStatus,
    PixCharge,
    Transaction,
    TransactionKind,
    TransactionStatus,
)
from ghostbank.services.deposit_flow import (
    DepositFlowController,
    DepositStage,
    format_countdown,
    resolve_qr_image,
)

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
TX_ID = "dep_1700000000000"
PIX_CODE = "00020126580014br.gov.bcb.pix0136a1b2c3d45204000053039865802BR"


class FakeGateway:
    """Scripted PaymentGatewayClient."""

    def __init__(self, statuses=(ChargeStatus.PENDING,), delay=0.0, create_error=None):
        self.statuses = list(statuses)
        self.delay = delay
        self.create_error = create_error
        self.charges = []
        self.queries = []

    async def create_charge(self, amount, payer):
        if self.create_error:
            raise self.create_error
        self.charges.append((amount, payer))
        return PixCharge(
            transaction_id=TX_ID,
            status="PENDING",
            payment_code=PIX_CODE,
            payment_image="https://gateway.test/qr/dep.png",
            amount=amount,
        )

    async def query_status(self, transaction_id):
        self.queries.append(transaction_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status


def pending_deposit(created_at=NOW, amount="10.00", handle="@alice") -> Transaction:
    return Transaction(
        id=TX_ID,
        kind=TransactionKind.DEPOSIT,
        amount=Decimal(amount),
        status=TransactionStatus.PENDING,
        created_at=created_at,
        description="PIX deposit",
        handle=handle,
        payment_code=PIX_CODE,
    )


class FailingSettlementRepository(FakeRepository):
    """Completion keeps failing after a short delay, like an unreachable database."""

    def __init__(self, delay=0.05):
        super().__init__()
        self.delay = delay
        self.completion_attempts = 0

    async def mark_completed(self, transaction_id):
        self.completion_attempts += 1
        await asyncio.sleep(self.delay)
        raise RuntimeError("db down")


def make_flow(gateway, repository, **overrides):
    options = dict(
        poll_interval=0.01,
        tick_interval=0.01,
        charge_ttl_seconds=600,
        success_delay=0.01,
        copied_feedback_seconds=0.02,
        now=lambda: NOW,
    )
    options.update(overrides)
    return DepositFlowController(gateway, repository, "@alice", **options)


class TestQrImage:

    def test_embedded_base64_first(self):
        charge = PixCharge(TX_ID, "PENDING", PIX_CODE, payment_base64="A" * 40, payment_image="https://x.test/q.png")
        qr = resolve_qr_image(charge)
        assert qr.source == "embedded"
        assert qr.src == "data:image/png;base64," + "A" * 40

    def test_data_uri_kept(self):
        uri = "data:image/png;base64," + "B" * 40
        assert resolve_qr_image(PixCharge(TX_ID, "PENDING", payment_base64=uri)).src == uri

    def test_short_base64_ignored_for_hosted(self):
        charge = PixCharge(TX_ID, "PENDING", PIX_CODE, payment_base64="abc", payment_image="https://x.test/q.png")
        qr = resolve_qr_image(charge)
        assert (qr.source, qr.src) == ("hosted", "https://x.test/q.png")

    def test_generated_from_code(self):
        qr = resolve_qr_image(PixCharge(TX_ID, "PENDING", PIX_CODE), "https://qr.test/render")
        assert qr.source == "generated"
        assert qr.src.startswith("https://qr.test/render?size=300x300&margin=10&data=")

    def test_nothing_to_show(self):
        assert resolve_qr_image(PixCharge(TX_ID, "PENDING")).source == "unavailable"
        assert resolve_qr_image(None).source == "unavailable"


class TestFormatCountdown:

    def test_minutes_and_seconds(self):
        assert format_countdown(600) == "10:00"
        assert format_countdown(474) == "7:54"
        assert format_countdown(-3) == "0:00"


class TestNewDeposit:

    async def test_confirmation_after_two_pending_credits_balance(self, repository):
        repository.users["@alice"] = Decimal("5.00")
        gateway = FakeGateway([ChargeStatus.PENDING, ChargeStatus.PENDING, ChargeStatus.PAID])
        successes, closes = [], []
        flow = make_flow(
            gateway,
            repository,
            on_success=lambda: successes.append(True),
            on_close=lambda: closes.append(True),
        )

        charge = await flow.submit_amount("10.00")
        assert charge.transaction_id == TX_ID
        assert flow.stage is DepositStage.PAYMENT

        assert await wait_until(lambda: closes)
        assert successes == [True]
        assert flow.closed
        assert len(gateway.queries) == 3
        assert repository.users["@alice"] == Decimal("15.00")
        assert repository.transactions[TX_ID].status is TransactionStatus.COMPLETED

    async def test_pending_row_recorded(self, repository):
        gateway = FakeGateway()
        flow = make_flow(gateway, repository, poll_interval=100)

        await flow.submit_amount("10")

        row = repository.transactions[TX_ID]
        assert row.status is TransactionStatus.PENDING
        assert row.kind is TransactionKind.DEPOSIT
        assert row.amount == Decimal("10.00")
        assert row.payment_code == PIX_CODE
        assert row.payment_image == "https://gateway.test/qr/dep.png"
        assert row.created_at == NOW
        assert flow.remaining_seconds <= 600
        assert gateway.charges[0][1].name == "alice"
        await flow.aclose()

    async def test_invalid_amount_stays_in_form(self, repository):
        gateway = FakeGateway()
        flow = make_flow(gateway, repository)

        with pytest.raises(ValidationError):
            await flow.submit_amount("abc")

        assert flow.stage is DepositStage.FORM
        assert flow.error == "Please enter a valid amount (e.g. 10.00)."
        assert gateway.charges == []
        assert repository.writes == []

    @pytest.mark.parametrize("amount", ["-10", "-0.01", "R$ -5.00"])
    async def test_negative_amount_never_reaches_gateway(self, repository, amount):
        gateway = FakeGateway()
        flow = make_flow(gateway, repository)

        with pytest.raises(ValidationError):
            await flow.submit_amount(amount)

        assert flow.stage is DepositStage.FORM
        assert gateway.charges == []
        assert repository.writes == []

    async def test_gateway_refusal_stays_in_form(self, repository):
        flow = make_flow(FakeGateway(create_error=GatewayError("Gateway refused: Invalid document")), repository)

        with pytest.raises(GatewayError):
            await flow.submit_amount("10")

        assert flow.stage is DepositStage.FORM
        assert flow.error == "Gateway refused: Invalid document"
        assert repository.transactions == {}

    async def test_second_charge_rejected_while_open(self, repository):
        flow = make_flow(FakeGateway(), repository, poll_interval=100)
        await flow.submit_amount("10")
        with pytest.raises(ValidationError):
            await flow.submit_amount("20")
        await flow.aclose()

    async def test_check_errors_do_not_stop_polling(self, repository):
        repository.users["@alice"] = Decimal("0")
        gateway = FakeGateway([ConnectivityError("down"), ChargeStatus.PAID])
        flow = make_flow(gateway, repository, success_delay=100)

        await flow.submit_amount("10")

        assert await wait_until(lambda: flow.stage is DepositStage.SUCCESS)
        assert repository.users["@alice"] == Decimal("10.00")
        await flow.aclose()


class TestResume:

    async def test_remaining_time_from_created_at(self, repository):
        transaction = pending_deposit(created_at=NOW - timedelta(seconds=125.5))
        repository.transactions[TX_ID] = transaction
        flow = make_flow(FakeGateway(), repository, poll_interval=100, tick_interval=100)

        flow.resume(transaction)

        assert flow.stage is DepositStage.PAYMENT
        assert flow.remaining_seconds == 474
        assert flow.snapshot()["countdown"] == "7:54"
        assert flow.snapshot()["polling"] is True
        await flow.aclose()

    async def test_past_deadline_opens_expired_without_polling(self, repository):
        transaction = pending_deposit(created_at=NOW - timedelta(seconds=601))
        repository.transactions[TX_ID] = transaction
        gateway = FakeGateway([ChargeStatus.PAID])
        flow = make_flow(gateway, repository)

        flow.resume(transaction)
        await asyncio.sleep(0.05)

        assert flow.stage is DepositStage.EXPIRED
        assert flow.remaining_seconds == 0
        assert flow._task is None
        assert gateway.queries == []

    async def test_only_pending_deposits(self, repository):
        transaction = pending_deposit()
        transaction.status = TransactionStatus.COMPLETED
        with pytest.raises(ValidationError):
            make_flow(FakeGateway(), repository).resume(transaction)

    async def test_countdown_not_blocked_by_slow_status_query(self, repository):
        repository.users["@alice"] = Decimal("3.00")
        transaction = pending_deposit(created_at=NOW - timedelta(seconds=598))
        repository.transactions[TX_ID] = transaction
        gateway = FakeGateway([ChargeStatus.PAID], delay=10)
        flow = make_flow(gateway, repository, poll_interval=0.001)

        flow.resume(transaction)

        assert await wait_until(lambda: flow.stage is DepositStage.EXPIRED, timeout=1.0)
        assert gateway.queries
        assert repository.users["@alice"] == Decimal("3.00")
        assert transaction.status is TransactionStatus.PENDING

    async def test_failed_settlement_at_zero_still_expires(self):
        repository = FailingSettlementRepository(delay=0.05)
        repository.users["@alice"] = Decimal("3.00")
        transaction = pending_deposit(created_at=NOW - timedelta(seconds=599))
        repository.transactions[TX_ID] = transaction
        gateway = FakeGateway([ChargeStatus.PAID])
        flow = make_flow(gateway, repository, poll_interval=0.001)

        flow.resume(transaction)
        assert flow.remaining_seconds == 1

        assert await wait_until(lambda: flow.stage is DepositStage.EXPIRED, timeout=1.0)
        assert flow.remaining_seconds == 0
        assert repository.completion_attempts >= 1
        assert repository.users["@alice"] == Decimal("3.00")

        attempts = repository.completion_attempts
        await asyncio.sleep(0.1)
        assert repository.completion_attempts == attempts

    async def test_restart_after_expiry(self, repository):
        transaction = pending_deposit(created_at=NOW - timedelta(seconds=700))
        flow = make_flow(FakeGateway(), repository)
        flow.resume(transaction)

        flow.restart()

        assert flow.stage is DepositStage.FORM
        assert flow.charge is None
        with pytest.raises(ValidationError):
            flow.restart()


class TestExactlyOnceCredit:

    async def test_repeated_confirmations_credit_once(self, repository):
        repository.users["@alice"] = Decimal("1.00")
        transaction = pending_deposit()
        repository.transactions[TX_ID] = transaction
        gateway = FakeGateway([ChargeStatus.PAID])
        flow = make_flow(gateway, repository, poll_interval=100, tick_interval=100)
        flow.resume(transaction)

        results = [await flow.check_payment() for _ in range(4)]

        assert results == [True] * 4
        assert repository.users["@alice"] == Decimal("11.00")
        assert len(gateway.queries) == 1
        await flow.aclose()

    async def test_two_resumed_controllers_credit_once(self, repository):
        repository.users["@alice"] = Decimal("0")
        transaction = pending_deposit()
        repository.transactions[TX_ID] = transaction
        gateway = FakeGateway([ChargeStatus.PAID])
        first = make_flow(gateway, repository, success_delay=100)
        second = make_flow(gateway, repository, success_delay=100)

        first.resume(transaction)
        second.resume(transaction)

        assert await wait_until(
            lambda: first.stage is DepositStage.SUCCESS and second.stage is DepositStage.SUCCESS
        )
        assert repository.users["@alice"] == Decimal("10.00")
        assert [w for w in repository.writes if w[0] == "update_balance"] == [
            ("update_balance", "@alice", Decimal("10.00")),
        ]
        await first.aclose()
        await second.aclose()

    async def test_missing_local_row_is_not_paid(self, repository):
        gateway = FakeGateway([ChargeStatus.PAID])
        flow = make_flow(gateway, repository, poll_interval=100, tick_interval=100)
        flow.resume(pending_deposit())

        assert await flow.check_payment() is False
        assert gateway.queries == []
        await flow.aclose()


class TestCopyAndClose:

    async def test_copy_falls_back_when_clipboard_fails(self, repository):
        flow = make_flow(FakeGateway(), repository, poll_interval=100)
        await flow.submit_amount("10")
        copied = []

        def broken_clipboard(text):
            raise RuntimeError("clipboard unavailable")

        assert await flow.copy_code(broken_clipboard, copied.append) is True
        assert copied == [PIX_CODE]
        assert flow.copied is True

        assert await wait_until(lambda: not flow.copied)
        await flow.aclose()

    async def test_copy_without_code(self, repository):
        flow = make_flow(FakeGateway(), repository)
        assert await flow.copy_code(lambda text: None) is False

    async def test_close_stops_polling(self, repository):
        repository.users["@alice"] = Decimal("0")
        gateway = FakeGateway()
        closes = []
        flow = make_flow(gateway, repository, on_close=lambda: closes.append(True))
        await flow.submit_amount("10")
        assert await wait_until(lambda: len(gateway.queries) >= 1)

        await flow.close()
        queries = len(gateway.queries)
        await asyncio.sleep(0.05)

        assert closes == [True]
        assert len(gateway.queries) == queries
        assert repository.users["@alice"] == Decimal("0")
