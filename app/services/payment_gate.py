"""
Payment gate: the precondition in front of every analysis request.

One gate belongs to one session. It charges a single fixed amount and
refuses a second request while one is outstanding, so a double click or
a retried HTTP call can never create a second intent.

Two steps, which callers may run apart:
- confirm_card: confirm a card intent with a PaymentMethod id; the
  returned intent carries the new status and any next action (3-D Secure)
- settle: poll the intent status every `poll_interval` seconds until it
  is terminal (PIX, or a card answering requires_action/processing)
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from app.core.config import get_settings
from app.core.errors import PaymentDeclined, PaymentInProgress
from app.core.logger import get_logger
from app.schemas.payment import PaymentIntent, PaymentMethod, PaymentRecord, PaymentStatus
from app.services.stripe_client import PaymentCollaborator

log = get_logger(__name__)

_POLLABLE = {
    PaymentStatus.REQUIRES_ACTION,
    PaymentStatus.PROCESSING,
    PaymentStatus.REQUIRES_CONFIRMATION,
}

# Card intents that still need the payer's PaymentMethod
_AWAITING_CARD = {
    PaymentStatus.REQUIRES_PAYMENT_METHOD,
    PaymentStatus.REQUIRES_CONFIRMATION,
}

StatusCallback = Callable[[PaymentStatus], None]


def awaiting_card(intent: PaymentIntent) -> bool:
    return intent.status in _AWAITING_CARD


class PaymentGate:
    def __init__(
        self,
        collaborator: PaymentCollaborator,
        amount: Optional[float] = None,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.collaborator = collaborator
        self.amount = amount if amount is not None else settings.ANALYSIS_PRICE
        self.poll_interval = poll_interval if poll_interval is not None else settings.PAYMENT_POLL_INTERVAL
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.PAYMENT_POLL_TIMEOUT
        self._outstanding = False
        self._cancelled = False

    @property
    def outstanding(self) -> bool:
        return self._outstanding

    async def create_intent(self, method: PaymentMethod) -> PaymentIntent:
        """Open a payment attempt; settle() (or confirm()) closes it."""
        if self._outstanding:
            raise PaymentInProgress("A payment is already outstanding for this session")
        self._outstanding = True
        self._cancelled = False
        try:
            return await self.collaborator.create_payment_intent(self.amount, method)
        except Exception:
            self._outstanding = False
            raise

    async def confirm_card(self, intent: PaymentIntent, payment_method: Optional[str]) -> PaymentIntent:
        """Confirm a card intent. A decline closes the attempt."""
        try:
            if not payment_method:
                raise PaymentDeclined("Card payment requires a payment method")
            result = await self.collaborator.confirm_card_payment(intent.client_secret, payment_method)
            if result.error:
                raise PaymentDeclined(result.error)
            status = result.status or PaymentStatus.PROCESSING
            if status != PaymentStatus.SUCCEEDED and status not in _POLLABLE:
                raise PaymentDeclined(f"Payment ended with status {status.value}")
        except Exception:
            self._outstanding = False
            raise
        if result.next_action is not None:
            log.info("Payment %s needs payer action (%s)", intent.id, result.next_action.type)
        return intent.model_copy(update={"status": status, "next_action": result.next_action})

    async def settle(
        self,
        intent: PaymentIntent,
        method: PaymentMethod,
        on_status: Optional[StatusCallback] = None,
    ) -> PaymentRecord:
        """Wait for `intent` to reach a terminal status; only `succeeded` returns normally."""
        try:
            status = intent.status
            if status != PaymentStatus.SUCCEEDED:
                if status not in _POLLABLE and method is not PaymentMethod.PIX:
                    raise PaymentDeclined(f"Payment ended with status {status.value}")
                status = await self._poll(intent.id, on_status)

            log.info("Payment %s succeeded", intent.id)
            return PaymentRecord(intent_id=intent.id, status=status, method=method, amount=self.amount)
        finally:
            self._outstanding = False

    async def confirm(
        self,
        intent: PaymentIntent,
        method: PaymentMethod,
        payment_method: Optional[str] = None,
    ) -> PaymentRecord:
        if method is PaymentMethod.CARD and intent.status in _AWAITING_CARD:
            intent = await self.confirm_card(intent, payment_method)
        return await self.settle(intent, method)

    async def request_payment(self, method: PaymentMethod, payment_method: Optional[str] = None) -> PaymentRecord:
        intent = await self.create_intent(method)
        return await self.confirm(intent, method, payment_method)

    def cancel(self) -> None:
        """Stop an in-flight poll at its next tick."""
        self._cancelled = True

    async def _poll(self, intent_id: str, on_status: Optional[StatusCallback] = None) -> PaymentStatus:
        deadline = time.monotonic() + self.poll_timeout
        last: Optional[PaymentStatus] = None
        while True:
            if self._cancelled:
                raise PaymentDeclined("Payment cancelled by user")
            status = await self.collaborator.get_payment_status(intent_id)
            if on_status is not None and status != last:
                on_status(status)
            last = status
            if status == PaymentStatus.SUCCEEDED:
                return status
            if status == PaymentStatus.CANCELED:
                log.warning("Payment %s was canceled by the gateway", intent_id)
                raise PaymentDeclined("Payment canceled")
            if time.monotonic() >= deadline:
                log.warning("Payment %s still %s after %.0fs; giving up", intent_id, status.value, self.poll_timeout)
                raise PaymentDeclined("Payment expired")
            await asyncio.sleep(self.poll_interval)
