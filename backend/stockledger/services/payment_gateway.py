# Overview: Mercado Pago REST client and webhook signature verification.

"""
Payment Gateway Adapter

Thin wrapper over the Mercado Pago in-store QR API. Every transport or
upstream failure surfaces as PaymentGatewayError so callers can treat it as
retryable; nothing here touches the database.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Mapping, Optional

import httpx
from flask import current_app

from ..config import GatewayConfig
from ..errors import PaymentGatewayError


class MercadoPagoClient:
    """
    HTTP client for the gateway, authenticated with the seller access token.

    `client` may be any httpx.Client; tests pass one built on MockTransport.
    """

    def __init__(self, config: GatewayConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.base_url = config.api_url.rstrip("/")
        self.client = client or httpx.Client(timeout=config.timeout)

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.access_token}",
        }

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        try:
            response = self.client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                json=json,
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            current_app.logger.error("Mercado Pago connection error: %s", e)
            raise PaymentGatewayError("Unable to connect to payment provider")

        if not response.is_success:
            current_app.logger.error(
                "Mercado Pago %s %s failed. Status: %s, Body: %s",
                method, path, response.status_code, response.text,
            )
            raise PaymentGatewayError(
                "Payment provider request failed",
                details={"gateway_status": response.status_code},
            )

        try:
            return response.json()
        except ValueError:
            current_app.logger.error("Mercado Pago returned invalid JSON for %s %s", method, path)
            raise PaymentGatewayError("Invalid response from payment provider")

    def create_qr_order(self, order: dict) -> dict:
        """Create an in-store order; the response carries `qr_data`."""
        path = (
            f"/instore/orders/qr/seller/collectors/{self.config.user_id}"
            f"/pos/{self.config.pos_id}/qrs"
        )
        return self._request("POST", path, json=order)

    def get_payment(self, payment_id: str) -> dict:
        return self._request("GET", f"/v1/payments/{payment_id}")


def parse_signature_header(value: str) -> dict:
    """'ts=1700000000,v1=abc...' -> {'ts': '1700000000', 'v1': 'abc...'}"""
    parts = {}
    for chunk in (value or "").split(","):
        key, sep, val = chunk.strip().partition("=")
        if sep and key:
            parts[key] = val
    return parts


def verify_webhook_signature(
    secret: str,
    headers: Mapping[str, str],
    data_id: str,
) -> bool:
    """
    Validate Mercado Pago's `x-signature` header.

    The signed manifest is `id:{data.id};request-id:{x-request-id};ts:{ts};`
    and `v1` is its hex HMAC-SHA256 under the webhook secret.
    """
    parts = parse_signature_header(headers.get("x-signature", ""))
    ts = parts.get("ts")
    received = parts.get("v1")
    if not ts or not received:
        return False

    manifest = f"id:{data_id};request-id:{headers.get('x-request-id', '')};ts:{ts};"
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)
