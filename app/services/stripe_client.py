"""
Stripe client wrapper (async, httpx) implementing the payment collaborator.

Talks to the Stripe REST API with the server-side secret key:
- create_payment_intent: converts the major-unit amount to minor units
- confirm_card_payment: server-side confirmation with a PaymentMethod id
- get_payment_status: polling path for asynchronous methods (PIX)

Intent ids starting with MOCK_PREFIX never reach Stripe and always report
`succeeded`. They are only minted when PAYMENT_MOCK_MODE is on outside
production; a missing secret key is a configuration error, not a mock.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from app.core.config import get_settings
from app.core.errors import PaymentConfigError, PaymentDeclined
from app.core.logger import get_logger
from app.schemas.payment import (
    CardConfirmation,
    PaymentIntent,
    PaymentMethod,
    PaymentStatus,
    parse_next_action,
)

log = get_logger(__name__)

MOCK_PREFIX = "mock_"


class PaymentCollaborator(Protocol):
    async def create_payment_intent(
        self, amount: float, method: PaymentMethod = PaymentMethod.CARD
    ) -> PaymentIntent: ...

    async def confirm_card_payment(self, client_secret: str, payment_method: str) -> CardConfirmation: ...

    async def get_payment_status(self, intent_id: str) -> PaymentStatus: ...


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def intent_id_from_secret(client_secret: str) -> str:
    return client_secret.split("_secret_", 1)[0]


def parse_status(body: Dict[str, Any]) -> PaymentStatus:
    """Status field of a gateway body; anything unrecognised is a decline."""
    try:
        return PaymentStatus(body["status"])
    except (KeyError, ValueError) as e:
        log.error("Unexpected payment status in gateway response: %r", body.get("status"))
        raise PaymentDeclined("Unexpected response from payment gateway") from e


class StripeClient:
    def __init__(self, secret_key: Optional[str] = None, timeout: float = 20.0) -> None:
        self._settings = get_settings()
        self.secret_key = secret_key if secret_key is not None else self._settings.STRIPE_SECRET_KEY
        self.api_base = self._settings.STRIPE_API_BASE.rstrip("/")
        self._timeout = timeout
        self._aclient: Optional[httpx.AsyncClient] = None

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._aclient is None:
            self._aclient = httpx.AsyncClient(timeout=self._timeout)
        return self._aclient

    async def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.secret_key:
            log.error("STRIPE_SECRET_KEY is not configured")
            raise PaymentConfigError("Stripe secret key missing")

        try:
            client = self._get_async_client()
            resp = await client.request(
                method,
                f"{self.api_base}{path}",
                data=data,
                auth=(self.secret_key, ""),
            )
        except httpx.HTTPError as e:
            log.exception("Stripe request failed: %s", e)
            raise PaymentDeclined("Payment gateway unreachable") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if resp.status_code in (401, 403):
            log.error("Stripe rejected credentials (HTTP %s)", resp.status_code)
            raise PaymentConfigError("Stripe rejected the configured secret key")
        if resp.is_error:
            message = (body.get("error") or {}).get("message") or f"HTTP {resp.status_code}"
            log.warning("Stripe error on %s %s: %s", method, path, message)
            raise PaymentDeclined(message)
        return body

    async def create_payment_intent(
        self, amount: float, method: PaymentMethod = PaymentMethod.CARD
    ) -> PaymentIntent:
        """Create a PaymentIntent for `amount` in major units of the configured currency."""
        if self._settings.mock_payments:
            intent_id = f"{MOCK_PREFIX}{uuid.uuid4().hex[:12]}"
            log.info("Mock payment intent %s created", intent_id)
            return PaymentIntent(
                id=intent_id,
                client_secret=f"{intent_id}_secret_mock",
                status=PaymentStatus.REQUIRES_PAYMENT_METHOD,
                amount=to_minor_units(amount),
                currency=self._settings.CURRENCY,
            )

        data = {
            "amount": to_minor_units(amount),
            "currency": self._settings.CURRENCY,
            "payment_method_types[]": method.value,
            "metadata[service]": "CheckLance Analysis",
        }
        if method is PaymentMethod.PIX:
            # PIX intents are confirmed immediately so Stripe returns the QR code
            data["confirm"] = "true"
            data["payment_method_data[type]"] = "pix"

        body = await self._request("POST", "/payment_intents", data)
        try:
            intent = PaymentIntent.from_gateway(body)
        except (KeyError, ValidationError) as e:
            log.error("Unexpected payment intent body from Stripe: %s", e)
            raise PaymentDeclined("Unexpected response from payment gateway") from e
        log.info("Payment intent %s created (%s, %s)", intent.id, method.value, intent.status.value)
        return intent

    async def confirm_card_payment(self, client_secret: str, payment_method: str) -> CardConfirmation:
        intent_id = intent_id_from_secret(client_secret)
        if intent_id.startswith(MOCK_PREFIX):
            return CardConfirmation(status=PaymentStatus.SUCCEEDED)
        data = {"payment_method": payment_method}
        if self._settings.PAYMENT_RETURN_URL:
            # Required by Stripe for methods that redirect (3-D Secure)
            data["return_url"] = self._settings.PAYMENT_RETURN_URL
        try:
            body = await self._request("POST", f"/payment_intents/{intent_id}/confirm", data)
            status = parse_status(body)
        except PaymentDeclined as e:
            return CardConfirmation(error=e.detail)
        return CardConfirmation(status=status, next_action=parse_next_action(body.get("next_action")))

    async def get_payment_status(self, intent_id: str) -> PaymentStatus:
        if intent_id.startswith(MOCK_PREFIX):
            return PaymentStatus.SUCCEEDED
        body = await self._request("GET", f"/payment_intents/{intent_id}")
        return parse_status(body)

    async def aclose(self) -> None:
        if self._aclient is not None:
            await self._aclient.aclose()
            self._aclient = None


_client: Optional[StripeClient] = None


def get_stripe_client() -> StripeClient:
    global _client
    if _client is None:
        _client = StripeClient()
    return _client
