"""
Bot-side identity checks for the login flow.

The bot never receives webhooks: the user writes to it, and we pull the last
window of updates to find the chat whose sender matches the typed handle.
"""

import logging
from typing import Optional

from ghostbank.errors import ServiceUnavailable
from ghostbank.models import BotIdentity, normalize_handle
from .telegram_api import TelegramBotApi

logger = logging.getLogger(__name__)

UPDATES_WINDOW = 100

CODE_MESSAGE = (
    "🔐 *GhostBank Auth*\n\n"
    "Your access code: `{code}`\n\n"
    "_Valid for {minutes} minutes._"
)


class BotVerificationService:
    """Chat discovery and code delivery on top of the Bot API."""

    def __init__(self, api: TelegramBotApi, code_validity_minutes: int = 5):
        self.api = api
        self.code_validity_minutes = code_validity_minutes

    async def clear_pending_updates(self) -> None:
        """
        Best-effort: drop queued updates so an old message cannot satisfy
        a new discovery. Never raises.
        """
        try:
            await self.api.call("deleteWebhook", drop_pending_updates=False)

            latest = await self.api.call("getUpdates", offset=-1, limit=1)
            updates = latest.get("result") if latest.get("ok") else None
            if updates:
                # Confirming offset N discards every update with a lower id
                await self.api.call("getUpdates", offset=updates[-1]["update_id"] + 1, limit=1)
        except Exception as e:
            logger.debug(f"Clearing pending updates failed: {e}")

    async def get_identity(self) -> BotIdentity:
        response = await self.api.call("getMe")
        result = response.get("result") if response.get("ok") else None
        if not result:
            raise ServiceUnavailable(
                f"Could not reach the Telegram bot: {response.get('description', 'unknown error')}"
            )
        return BotIdentity(
            id=result["id"],
            display_name=result.get("first_name", ""),
            handle=result.get("username", ""),
        )

    async def locate_chat_by_handle(self, handle: str) -> Optional[int]:
        """
        Find the chat of the newest message sent by handle.

        Returns:
            Chat id, or None when the user has not written yet (or the bot
            API could not be reached); the caller polls again.
        """
        response = await self.api.call(
            "getUpdates",
            offset=-UPDATES_WINDOW,
            limit=UPDATES_WINDOW,
            allowed_updates=["message"],
        )
        if not response.get("ok") or not response.get("result"):
            return None

        target = normalize_handle(handle)
        if not target:
            return None

        for update in reversed(response["result"]):
            message = update.get("message") or {}
            sender = (message.get("from") or {}).get("username")
            if sender and sender.lower() == target:
                return message["chat"]["id"]

        return None

    async def deliver_code(self, chat_id: int, code: str) -> bool:
        """Send the code once. Returns whether Telegram accepted the message."""
        response = await self.api.call(
            "sendMessage",
            chat_id=chat_id,
            text=CODE_MESSAGE.format(code=code, minutes=self.code_validity_minutes),
            parse_mode="Markdown",
        )
        delivered = bool(response.get("ok"))
        if not delivered:
            logger.warning(f"Code delivery to chat {chat_id} failed: {response.get('description')}")
        return delivered
