"""
Outbound HTTP through an ordered chain of relay strategies.

Every call here may have a real-world side effect (a Telegram message, a PIX
charge), so strategies are tried one after another and never in parallel.
"""

import logging
from typing import Optional, Sequence
from urllib.parse import quote

import httpx

from ghostbank.errors import ConnectivityError

logger = logging.getLogger(__name__)


class TransportStrategy:
    """One network path to the target URL."""

    name: str = "strategy"

    def build_url(self, target_url: str) -> str:
        raise NotImplementedError

    async def fetch(
        self,
        client: httpx.AsyncClient,
        method: str,
        target_url: str,
        **request_options,
    ) -> httpx.Response:
        return await client.request(method, self.build_url(target_url), **request_options)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class DirectStrategy(TransportStrategy):
    name = "direct"

    def build_url(self, target_url: str) -> str:
        return target_url


class RelayStrategy(TransportStrategy):
    """Public relay that takes the percent-encoded target in its URL."""

    def __init__(self, name: str, url_template: str):
        self.name = name
        self.url_template = url_template

    def build_url(self, target_url: str) -> str:
        return self.url_template.format(url=quote(target_url, safe=""))


def build_strategies(names: Sequence[str], templates: dict[str, str]) -> list[TransportStrategy]:
    """
    Turn configured strategy names into strategy objects, keeping order.

    Args:
        names: Ordered names, e.g. ["allorigins", "corsproxy", "direct"]
        templates: Relay name -> URL template with a {url} placeholder

    Raises:
        ValueError: for a name that is neither "direct" nor a known relay
    """
    strategies: list[TransportStrategy] = []
    for name in names:
        if name == DirectStrategy.name:
            strategies.append(DirectStrategy())
        elif name in templates:
            strategies.append(RelayStrategy(name, templates[name]))
        else:
            raise ValueError(f"Unknown transport strategy: {name}")
    return strategies


class TransportFallbackClient:
    """
    Issues one HTTP call through the first strategy that reaches a server.

    Any response that arrives, including 4xx/5xx, is returned as is because
    callers need the error payload. Only transport failures (DNS, refused
    connection, timeout) move on to the next strategy.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 20.0):
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def send(
        self,
        target_url: str,
        strategies: Sequence[TransportStrategy],
        method: str = "GET",
        **request_options,
    ) -> httpx.Response:
        if not strategies:
            raise ConnectivityError("No transport strategy configured")

        last_error: Optional[BaseException] = None

        for strategy in strategies:
            try:
                response = await strategy.fetch(self.client, method, target_url, **request_options)
            except httpx.TransportError as e:
                logger.warning(f"Transport via {strategy.name} failed: {e!r}")
                last_error = e
                continue

            logger.debug(f"{method} via {strategy.name} -> {response.status_code}")
            return response

        raise ConnectivityError(
            f"Connection error: {last_error or 'check your internet connection'}",
            cause=last_error,
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
