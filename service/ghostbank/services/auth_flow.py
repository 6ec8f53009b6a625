"""
Telegram login flow.

USERNAME -> CONNECTING -> OTP -> AUTHENTICATED

While CONNECTING the controller polls the bot for a message from the typed
handle. Once found, a fresh 6-digit code is sent to that chat exactly once.
Cancel from CONNECTING or OTP goes back to USERNAME; nothing is persisted
before the code is accepted.
"""

import logging
import secrets
import time
from enum import Enum
from typing import Callable, Optional

from ghostbank.errors import OtpExpired, ServiceUnavailable, ValidationError
from ghostbank.models import BotIdentity, OtpChallenge, User
from ghostbank.services.accounts import AccountService
from ghostbank.services.scheduler import ScheduledTask
from ghostbank.telegram_bot.context import SessionContext
from ghostbank.telegram_bot.verification import BotVerificationService

logger = logging.getLogger(__name__)


class AuthStage(str, Enum):
    USERNAME = "username"
    CONNECTING = "connecting"
    OTP = "otp"
    AUTHENTICATED = "authenticated"


def generate_otp() -> str:
    """Random 6-digit numeric code."""
    return str(100000 + secrets.randbelow(900000))


class AuthFlowController:
    """State machine for one device's login attempt."""

    def __init__(
        self,
        bot: BotVerificationService,
        accounts: AccountService,
        session: SessionContext,
        poll_interval: float = 3.0,
        otp_validity_seconds: float = 300,
        code_factory: Callable[[], str] = generate_otp,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bot = bot
        self.accounts = accounts
        self.session = session
        self.poll_interval = poll_interval
        self.otp_validity_seconds = otp_validity_seconds
        self.code_factory = code_factory
        self.clock = clock

        self.stage = AuthStage.USERNAME
        self.handle: Optional[str] = None
        self.error: Optional[str] = None
        self.bot_identity: Optional[BotIdentity] = None
        self.user: Optional[User] = None

        self._challenge: Optional[OtpChallenge] = None
        self._poll: Optional[ScheduledTask] = None

    def _enter(self, stage: AuthStage, task: Optional[ScheduledTask] = None) -> None:
        if self._poll is not None:
            self._poll.cancel()
        self._poll = task
        logger.info(f"Login flow for {self.handle}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    async def initialize(self) -> Optional[BotIdentity]:
        """Clear stale updates and fetch the bot identity shown to the user."""
        await self.bot.clear_pending_updates()
        try:
            self.bot_identity = await self.bot.get_identity()
        except ServiceUnavailable as e:
            logger.error(f"Bot identity unavailable: {e}")
            self.error = "Could not connect to the Telegram bot. Check your connection."
            self.bot_identity = None
        return self.bot_identity

    async def submit_handle(self, handle: str) -> None:
        """Start chat discovery for handle."""
        handle = (handle or "").strip()
        if not handle.lstrip("@"):
            raise ValidationError("Enter your Telegram username.")

        if self.bot_identity is None and await self.initialize() is None:
            raise ServiceUnavailable()

        if not handle.startswith("@"):
            handle = "@" + handle

        self._challenge = None
        self.error = None
        self.handle = handle

        await self.bot.clear_pending_updates()
        self._enter(
            AuthStage.CONNECTING,
            ScheduledTask.every(self.poll_interval, self._discover_chat, name=f"chat-discovery {handle}", immediate=True),
        )

    async def _discover_chat(self) -> bool:
        """One discovery attempt. Returns True once polling should stop."""
        if self.stage is not AuthStage.CONNECTING:
            return True

        chat_id = await self.bot.locate_chat_by_handle(self.handle)
        if chat_id is None:
            return False

        code = self.code_factory()
        delivered = await self.bot.deliver_code(chat_id, code)

        if delivered:
            self._challenge = OtpChallenge(
                handle=self.handle,
                code=code,
                chat_id=chat_id,
                generated_at=self.clock(),
            )
            self._enter(AuthStage.OTP)
        else:
            self._challenge = None
            self.error = (
                "The bot found you but could not send the code. "
                "Make sure you have not blocked the bot."
            )
            self._enter(AuthStage.USERNAME)
        return True

    async def submit_code(self, code: str) -> Optional[User]:
        """
        Check the typed code against the one sent.

        Returns:
            The resolved user on match, None on mismatch (the same code stays valid)

        Raises:
            OtpExpired: the code outlived its validity window
        """
        challenge = self._challenge
        if self.stage is not AuthStage.OTP or challenge is None:
            raise ValidationError("No code is pending. Start the login again.")

        if self.clock() - challenge.generated_at > self.otp_validity_seconds:
            self._challenge = None
            expired = OtpExpired()
            self.error = expired.message
            self._enter(AuthStage.USERNAME)
            raise expired

        if code != challenge.code:
            self.error = "Incorrect code."
            return None

        try:
            user = await self.accounts.login(challenge.handle)
        except Exception:
            self.error = "Authentication failed."
            raise

        # Single use
        self._challenge = None
        await self.session.save(user.handle)
        self.user = user
        self.error = None
        self._enter(AuthStage.AUTHENTICATED)
        return user

    def cancel(self) -> None:
        """Back to USERNAME, dropping the code and stopping the poll."""
        self._challenge = None
        self.error = None
        self._enter(AuthStage.USERNAME)

    async def aclose(self) -> None:
        poll, self._poll = self._poll, None
        if poll is not None:
            await poll.aclose()

    def snapshot(self) -> dict:
        return {
            "stage": self.stage.value,
            "handle": self.handle,
            "error": self.error,
            "bot_handle": self.bot_identity.handle if self.bot_identity else None,
        }
