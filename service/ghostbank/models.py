"""
Domain records for accounts, ledger rows and PIX charges.

Rows map to the Supabase tables:
- users(nickname, balance)
- transactions(id, user_nickname, type, amount, status, created_at,
  description, pix_code, pix_qr_image)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class TransactionKind(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    PAYMENT = "PAYMENT"
    FEE = "FEE"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ChargeStatus(str, Enum):
    """Remote charge state as reported by the gateway."""
    PAID = "paid"
    PENDING = "pending"
    UNKNOWN = "unknown"


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_handle(handle: str) -> str:
    """Comparison form of a Telegram handle: no leading '@', lowercase."""
    return handle.strip().lstrip("@").strip().lower()


@dataclass
class User:
    handle: str
    balance: Decimal

    @classmethod
    def from_row(cls, row: dict) -> "User":
        return cls(handle=row["nickname"], balance=to_decimal(row.get("balance")))


@dataclass
class Transaction:
    id: str
    kind: TransactionKind
    amount: Decimal
    status: TransactionStatus
    created_at: datetime
    description: str
    handle: Optional[str] = None
    payment_code: Optional[str] = None
    payment_image: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "Transaction":
        return cls(
            id=row["id"],
            kind=TransactionKind(row["type"]),
            amount=to_decimal(row["amount"]),
            status=TransactionStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            description=row.get("description") or "",
            handle=row.get("user_nickname"),
            payment_code=row.get("pix_code"),
            payment_image=row.get("pix_qr_image"),
        )

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "user_nickname": self.handle,
            "type": self.kind.value,
            "amount": str(self.amount),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "description": self.description,
            "pix_code": self.payment_code,
            "pix_qr_image": self.payment_image,
        }


@dataclass
class OtpChallenge:
    """One login attempt's code. Lives only in the login flow's memory."""
    handle: str
    code: str
    chat_id: int
    generated_at: float


@dataclass
class Payer:
    name: str
    email: str
    document: str


@dataclass
class PixCharge:
    transaction_id: str
    status: str
    payment_code: str = ""
    payment_base64: Optional[str] = None
    payment_image: Optional[str] = None
    order_id: str = ""
    order_url: str = ""
    amount: Decimal = field(default_factory=lambda: Decimal("0"))

    @classmethod
    def from_gateway(cls, data: dict, fallback_id: str, amount: Decimal) -> "PixCharge":
        pix = data.get("pix") or {}
        order = data.get("order") or {}
        return cls(
            transaction_id=data.get("transactionId") or fallback_id,
            status=data.get("status") or "PENDING",
            payment_code=pix.get("code") or "",
            payment_base64=pix.get("base64"),
            payment_image=pix.get("image"),
            order_id=order.get("id") or "",
            order_url=order.get("url") or "",
            amount=amount,
        )

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "PixCharge":
        """Rebuild a charge from a stored pending deposit."""
        return cls(
            transaction_id=transaction.id,
            status="PENDING",
            payment_code=transaction.payment_code or "",
            payment_base64=transaction.payment_image,
            payment_image=transaction.payment_image,
            amount=transaction.amount,
        )

    @property
    def stored_image(self) -> Optional[str]:
        return self.payment_base64 or self.payment_image


@dataclass
class BotIdentity:
    id: int
    display_name: str
    handle: str
