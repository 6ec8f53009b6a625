from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase
    supabase_url: str
    supabase_key: str

    # Telegram
    telegram_bot_token: str
    telegram_api_base: str = "https://api.telegram.org"
    telegram_relays: list[str] = ["allorigins", "corsproxy", "direct"]

    # LxPay (PIX gateway)
    lxpay_base_url: str = "https://api.lxpay.com.br/api/v1/gateway"
    lxpay_public_key: str = ""
    lxpay_secret_key: str = ""
    gateway_relays: list[str] = ["corsproxy", "direct"]

    # Relay URL templates, {url} is the percent-encoded target
    relay_templates: dict[str, str] = {
        "allorigins": "https://api.allorigins.win/raw?url={url}",
        "corsproxy": "https://corsproxy.io/?{url}",
    }
    http_timeout: float = 20.0

    # Login flow
    chat_poll_interval: float = 3.0
    otp_validity_seconds: int = 300

    # Deposit flow
    deposit_poll_interval: float = 10.0
    deposit_ttl_seconds: int = 600
    success_display_delay: float = 3.5
    copied_feedback_seconds: float = 2.0
    payer_email: str = "cliente@ghostbank.com"
    qr_render_url: str = "https://api.qrserver.com/v1/create-qr-code/"

    # Withdrawals
    withdraw_fee_rate: Decimal = Decimal("0.12")

    # Persistence retries
    store_max_attempts: int = 3
    store_retry_delay: float = 1.0

    # Local device state (last authenticated handle)
    session_state_path: str = ".ghostbank_session.json"

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
