# backend/stockledger/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Mercado Pago in-store QR integration
    MERCADO_PAGO_API_URL = os.environ.get("MERCADO_PAGO_API_URL", "https://api.mercadopago.com")
    MERCADO_PAGO_ACCESS_TOKEN = os.environ.get("MERCADO_PAGO_ACCESS_TOKEN", "")
    MERCADO_PAGO_USER_ID = os.environ.get("MERCADO_PAGO_USER_ID", "")
    MERCADO_PAGO_POS_ID = os.environ.get("MERCADO_PAGO_POS_ID", "")
    WEBHOOK_SECRET = os.environ.get("WEBHOOK_SECRET", "")
    QR_EXPIRATION_HOURS = int(os.environ.get("QR_EXPIRATION_HOURS", "24"))
    PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT", "10"))


@dataclass(frozen=True)
class GatewayConfig:
    """
    Payment gateway settings, resolved once at startup.

    Built from the Flask config in create_app() and handed to the
    PaymentCoordinator; services never read the environment themselves.
    """
    api_url: str
    access_token: str
    user_id: str
    pos_id: str
    webhook_secret: str = ""
    qr_expiration_hours: int = 24
    timeout: float = 10.0

    @classmethod
    def from_mapping(cls, config: Mapping) -> "GatewayConfig":
        return cls(
            api_url=str(config.get("MERCADO_PAGO_API_URL") or "https://api.mercadopago.com").rstrip("/"),
            access_token=config.get("MERCADO_PAGO_ACCESS_TOKEN") or "",
            user_id=config.get("MERCADO_PAGO_USER_ID") or "",
            pos_id=config.get("MERCADO_PAGO_POS_ID") or "",
            webhook_secret=config.get("WEBHOOK_SECRET") or "",
            qr_expiration_hours=int(config.get("QR_EXPIRATION_HOURS") or 24),
            timeout=float(config.get("PAYMENT_GATEWAY_TIMEOUT") or 10),
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.access_token and self.user_id and self.pos_id)
