"""
Telegram Bot API client.

Pull-only wrapper: every method is a GET with query parameters, relayed through
the configured transport strategies. Failures never raise; callers get a
Bot API shaped dict with ok=False instead.
"""

import json
import logging
import time
from typing import Any, Optional, Sequence

import httpx

from ghostbank.errors import ConnectivityError
from ghostbank.services.transport import TransportFallbackClient, TransportStrategy

logger = logging.getLogger(__name__)


def encode_params(params: dict[str, Any]) -> dict[str, str]:
    """Bot API query encoding: objects as JSON, booleans lowercase."""
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (dict, list, bool)):
            encoded[key] = json.dumps(value)
        else:
            encoded[key] = str(value)
    return encoded


def parse_bot_response(response: httpx.Response) -> dict:
    """
    Decode a Bot API answer that may have passed through a relay.

    Some relays wrap the upstream body in a "contents" string.
    """
    try:
        data = response.json()
    except ValueError:
        return {"ok": False, "description": f"Unreadable response (HTTP {response.status_code})"}

    if isinstance(data, dict) and isinstance(data.get("contents"), str):
        try:
            data = json.loads(data["contents"])
        except ValueError:
            return {"ok": False, "description": "Unreadable relay contents"}

    if not isinstance(data, dict):
        return {"ok": False, "description": "Unexpected response shape"}

    if not data.get("ok") and data.get("error_code") == 401:
        return {"ok": False, "description": "Invalid Token", "error_code": 401}

    return data


class TelegramBotApi:
    """Calls Bot API methods through the relay chain."""

    def __init__(
        self,
        transport: TransportFallbackClient,
        token: str,
        strategies: Sequence[TransportStrategy],
        api_base: str = "https://api.telegram.org",
    ):
        self.transport = transport
        self.token = (token or "").strip()
        self.strategies = list(strategies)
        self.api_base = api_base.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.token) and self.token != "YOUR_BOT_TOKEN_HERE"

    def method_url(self, method: str, params: Optional[dict[str, Any]] = None) -> str:
        query = encode_params(params or {})
        # Cache buster, relays cache GET responses
        query["_t"] = str(int(time.time() * 1000))
        url = httpx.URL(f"{self.api_base}/bot{self.token}/{method}", params=query)
        return str(url)

    async def call(self, method: str, **params) -> dict:
        """
        Invoke a Bot API method.

        Args:
            method: Bot API method name, e.g. "getUpdates"
            **params: Method parameters

        Returns:
            Bot API response dict; ok=False on any failure
        """
        if not self.configured:
            return {"ok": False, "description": "Token not configured", "error_code": 404}

        try:
            response = await self.transport.send(
                self.method_url(method, params),
                self.strategies,
                method="GET",
                headers={"Accept": "application/json"},
            )
        except ConnectivityError as e:
            logger.warning(f"Telegram {method} unreachable: {e.cause!r}")
            return {"ok": False, "description": "Network Error"}

        result = parse_bot_response(response)
        if not result.get("ok"):
            logger.info(f"Telegram {method} answered not ok: {result.get('description')}")
        return result
