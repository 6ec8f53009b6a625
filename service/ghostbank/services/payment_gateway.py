"""
LxPay PIX gateway client.

Two calls, both authenticated with the x-public-key / x-secret-key pair:
- POST {base}/pix/receive      create a charge
- GET  {base}/transactions/{id} read its free-text status
"""

import logging
import time
from decimal import Decimal
from typing import Sequence

from ghostbank.errors import GatewayError, TokenInvalid, ValidationError
from ghostbank.models import ChargeStatus, Payer, PixCharge
from ghostbank.services.transport import TransportFallbackClient, TransportStrategy

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"paid", "completed", "approved"})
PENDING_STATUSES = frozenset({
    "pending",
    "waiting_payment",
    "waiting",
    "processing",
    "created",
    "active",
    "in_analysis",
})


def map_charge_status(raw_status) -> ChargeStatus:
    """Case-insensitive mapping of the gateway's status string."""
    status = str(raw_status or "").strip().lower()
    if status in PAID_STATUSES:
        return ChargeStatus.PAID
    if status in PENDING_STATUSES:
        return ChargeStatus.PENDING
    return ChargeStatus.UNKNOWN


class PaymentGatewayClient:
    """Charge creation and status queries against LxPay."""

    def __init__(
        self,
        transport: TransportFallbackClient,
        base_url: str,
        public_key: str,
        secret_key: str,
        strategies: Sequence[TransportStrategy],
    ):
        self.transport = transport
        self.base_url = base_url.rstrip("/")
        self.public_key = public_key
        self.secret_key = secret_key
        self.strategies = list(strategies)

    def _headers(self) -> dict[str, str]:
        if not self.public_key or not self.secret_key:
            raise TokenInvalid("Configuration error: LxPay keys are not set.")
        return {
            "x-public-key": self.public_key,
            "x-secret-key": self.secret_key,
            "Accept": "application/json",
        }

    async def create_charge(self, amount: Decimal, payer: Payer) -> PixCharge:
        """
        Create a PIX charge.

        Args:
            amount: Positive amount in BRL
            payer: Client block required by the gateway

        Raises:
            ValidationError: non-positive amount
            TokenInvalid: the gateway rejected our credentials
            GatewayError: any other rejection
            ConnectivityError: no strategy reached the gateway
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero.")

        headers = self._headers()
        identifier = f"dep_{int(time.time() * 1000)}"
        body = {
            "identifier": identifier,
            "amount": float(amount),
            "client": {
                "name": payer.name,
                "email": payer.email,
                "document": payer.document,
            },
        }

        logger.info(f"Creating PIX charge {identifier} for {amount}")
        response = await self.transport.send(
            f"{self.base_url}/pix/receive",
            self.strategies,
            method="POST",
            headers={**headers, "Content-Type": "application/json"},
            json=body,
        )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success:
            logger.error(f"LxPay rejected charge {identifier}: HTTP {response.status_code} {data}")
            if response.status_code == 401 or data.get("errorCode") == "MISSING_HEADERS":
                raise TokenInvalid()
            if data.get("message"):
                raise GatewayError(f"Gateway refused: {data['message']}")
            raise GatewayError()

        if not data:
            raise GatewayError("The gateway did not return valid charge data.")

        return PixCharge.from_gateway(data, fallback_id=identifier, amount=amount)

    async def query_status(self, transaction_id: str) -> ChargeStatus:
        """
        Read the remote state of a charge.

        Transport failures propagate (ConnectivityError); the caller decides
        whether to try again.
        """
        response = await self.transport.send(
            f"{self.base_url}/transactions/{transaction_id}",
            self.strategies,
            method="GET",
            headers=self._headers(),
        )

        if not response.is_success:
            logger.warning(f"LxPay status for {transaction_id}: HTTP {response.status_code}")
            return ChargeStatus.UNKNOWN

        try:
            data = response.json()
        except ValueError:
            return ChargeStatus.UNKNOWN

        raw_status = data.get("status") if isinstance(data, dict) else None
        status = map_charge_status(raw_status)
        logger.info(f"[LxPay Status] TX: {transaction_id} | Status: {raw_status} -> {status.value}")
        return status
