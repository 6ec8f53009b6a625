"""
Telegram side of GhostBank login.

ARCHITECTURE: pull-only bot, no webhook.
- telegram_api: Bot API calls through the relay chain
- verification: chat discovery by handle + one-time code delivery
- context: session context (last authenticated handle on this device)

The login state machine itself lives in services/auth_flow.py.
"""

from .telegram_api import TelegramBotApi
from .verification import BotVerificationService
from .context import SessionContext

__all__ = [
    "TelegramBotApi",
    "BotVerificationService",
    "SessionContext",
]
