"""
Tests for the Telegram login state machine.
"""

import asyncio
from decimal import Decimal

import pytest

from conftest import wait_until
from ghostbank.errors import OtpExpired, ServiceUnavailable, ValidationError
from ghostbank.models import BotIdentity
from ghostbank.services.accounts import AccountService
from ghostbank.services.auth_flow import AuthFlowController, AuthStage, generate_otp
from ghostbank.telegram_bot.context import SessionContext


class FakeBot:
    """Scripted BotVerificationService."""

    def __init__(self, chat_after=0, chat_id=555, deliver=True, identity=True):
        self.chat_after = chat_after
        self.chat_id = chat_id
        self.deliver = deliver
        self.identity = identity
        self.locate_calls = 0
        self.clear_calls = 0
        self.sent = []

    async def clear_pending_updates(self):
        self.clear_calls += 1

    async def get_identity(self):
        if not self.identity:
            raise ServiceUnavailable("Could not reach the Telegram bot: Network Error")
        return BotIdentity(id=42, display_name="GhostBank", handle="ghostbank_bot")

    async def locate_chat_by_handle(self, handle):
        self.locate_calls += 1
        if self.locate_calls > self.chat_after:
            return self.chat_id
        return None

    async def deliver_code(self, chat_id, code):
        self.sent.append((chat_id, code))
        return self.deliver


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def session(tmp_path):
    return SessionContext(tmp_path / "session.json")


def make_flow(bot, repository, session, clock=None):
    return AuthFlowController(
        bot,
        AccountService(repository),
        session,
        poll_interval=0.01,
        otp_validity_seconds=300,
        code_factory=lambda: "482913",
        clock=clock or FakeClock(),
    )


async def reach_otp(flow):
    await flow.initialize()
    await flow.submit_handle("alice")
    assert await wait_until(lambda: flow.stage is AuthStage.OTP)


class TestGenerateOtp:

    def test_six_digits(self):
        for _ in range(50):
            code = generate_otp()
            assert len(code) == 6
            assert code.isdigit()


class TestHandleSubmission:

    async def test_empty_handle_rejected(self, repository, session):
        flow = make_flow(FakeBot(), repository, session)
        await flow.initialize()
        with pytest.raises(ValidationError):
            await flow.submit_handle("  @ ")
        assert flow.stage is AuthStage.USERNAME

    async def test_handle_gets_at_prefix(self, repository, session):
        bot = FakeBot(chat_after=1000)
        flow = make_flow(bot, repository, session)
        await flow.initialize()

        await flow.submit_handle("alice")

        assert flow.handle == "@alice"
        assert flow.stage is AuthStage.CONNECTING
        await flow.aclose()

    async def test_unreachable_bot_blocks_login(self, repository, session):
        flow = make_flow(FakeBot(identity=False), repository, session)
        assert await flow.initialize() is None
        assert flow.error

        with pytest.raises(ServiceUnavailable):
            await flow.submit_handle("alice")
        assert flow.stage is AuthStage.USERNAME


class TestChatDiscovery:

    async def test_polls_until_found_then_sends_code_once(self, repository, session):
        bot = FakeBot(chat_after=3)
        flow = make_flow(bot, repository, session)

        await reach_otp(flow)
        await asyncio.sleep(0.05)

        assert bot.locate_calls == 4
        assert bot.sent == [(555, "482913")]
        assert flow.snapshot()["bot_handle"] == "ghostbank_bot"

    async def test_failed_delivery_returns_to_username(self, repository, session):
        bot = FakeBot(deliver=False)
        flow = make_flow(bot, repository, session)
        await flow.initialize()
        await flow.submit_handle("@alice")

        assert await wait_until(lambda: flow.stage is AuthStage.USERNAME)
        assert "blocked the bot" in flow.error
        assert len(bot.sent) == 1

    async def test_cancel_stops_polling(self, repository, session):
        bot = FakeBot(chat_after=1000)
        flow = make_flow(bot, repository, session)
        await flow.initialize()
        await flow.submit_handle("@alice")
        assert await wait_until(lambda: bot.locate_calls >= 2)

        flow.cancel()
        await asyncio.sleep(0.02)
        calls = bot.locate_calls
        await asyncio.sleep(0.05)

        assert flow.stage is AuthStage.USERNAME
        assert bot.locate_calls == calls
        assert bot.sent == []


class TestCodeVerification:

    async def test_wrong_code_keeps_challenge(self, repository, session):
        flow = make_flow(FakeBot(), repository, session)
        await reach_otp(flow)

        assert await flow.submit_code("000000") is None
        assert flow.error == "Incorrect code."
        assert flow.stage is AuthStage.OTP

        user = await flow.submit_code("482913")
        assert user.handle == "@alice"

    async def test_match_creates_user_and_saves_session(self, repository, session):
        flow = make_flow(FakeBot(), repository, session)
        await reach_otp(flow)

        user = await flow.submit_code("482913")

        assert flow.stage is AuthStage.AUTHENTICATED
        assert repository.users == {"@alice": user.balance}
        assert session.handle == "@alice"
        assert await SessionContext(session.state_path).load() == "@alice"

    async def test_existing_user_not_recreated(self, repository, session):
        repository.users["@alice"] = Decimal("25.00")
        flow = make_flow(FakeBot(), repository, session)
        await reach_otp(flow)

        user = await flow.submit_code("482913")

        assert str(user.balance) == "25.00"
        assert ("insert_user", "@alice") not in repository.writes

    async def test_code_is_single_use(self, repository, session):
        flow = make_flow(FakeBot(), repository, session)
        await reach_otp(flow)
        await flow.submit_code("482913")

        with pytest.raises(ValidationError):
            await flow.submit_code("482913")

    async def test_expired_code_rejected(self, repository, session):
        clock = FakeClock()
        flow = make_flow(FakeBot(), repository, session, clock=clock)
        await reach_otp(flow)

        clock.now += 301
        with pytest.raises(OtpExpired):
            await flow.submit_code("482913")

        assert flow.stage is AuthStage.USERNAME
        assert repository.users == {}

    async def test_code_without_challenge(self, repository, session):
        flow = make_flow(FakeBot(), repository, session)
        with pytest.raises(ValidationError):
            await flow.submit_code("482913")

    async def test_cancel_from_otp_drops_code(self, repository, session):
        flow = make_flow(FakeBot(), repository, session)
        await reach_otp(flow)

        flow.cancel()

        assert flow.stage is AuthStage.USERNAME
        with pytest.raises(ValidationError):
            await flow.submit_code("482913")
