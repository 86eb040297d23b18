import asyncio

import pytest

from app.core.errors import PaymentDeclined, PaymentInProgress
from app.schemas.payment import CardConfirmation, PaymentIntent, PaymentMethod, PaymentStatus
from app.services.payment_gate import PaymentGate

from conftest import FakeCollaborator


def pix_intent(status=PaymentStatus.REQUIRES_ACTION):
    return PaymentIntent.from_gateway(
        {
            "id": "pi_pix",
            "client_secret": "pi_pix_secret_1",
            "status": status.value,
            "next_action": {
                "type": "pix_display_qr_code",
                "pix_display_qr_code": {"data": "00020101021226...", "expires_at": 1767225600},
            },
        }
    )


@pytest.mark.asyncio
async def test_card_payment_succeeds_with_fixed_amount():
    collab = FakeCollaborator()
    gate = PaymentGate(collab, amount=10.0)

    record = await gate.request_payment(PaymentMethod.CARD, "pm_card_visa")

    assert record.succeeded
    assert record.amount == 10.0
    assert collab.created == [(10.0, PaymentMethod.CARD)]
    assert collab.confirmed == [("pi_test_secret_abc", "pm_card_visa")]
    assert not gate.outstanding


@pytest.mark.asyncio
async def test_card_decline_surfaces_payment_declined():
    collab = FakeCollaborator(confirmation=CardConfirmation(error="Your card was declined."))
    gate = PaymentGate(collab)
    with pytest.raises(PaymentDeclined, match="declined"):
        await gate.request_payment(PaymentMethod.CARD, "pm_card_chargeDeclined")
    assert not gate.outstanding


@pytest.mark.asyncio
async def test_card_requiring_action_falls_back_to_polling():
    collab = FakeCollaborator(
        confirmation=CardConfirmation(status=PaymentStatus.REQUIRES_ACTION),
        statuses=["processing", "succeeded"],
    )
    record = await PaymentGate(collab).request_payment(PaymentMethod.CARD, "pm_3ds")
    assert record.succeeded
    assert len(collab.polled) == 2


@pytest.mark.asyncio
async def test_pix_polls_until_succeeded():
    collab = FakeCollaborator(intent=pix_intent(), statuses=["requires_action", "requires_action", "succeeded"])
    record = await PaymentGate(collab, poll_interval=0).request_payment(PaymentMethod.PIX)
    assert record.succeeded
    assert collab.polled == ["pi_pix"] * 3


@pytest.mark.asyncio
async def test_pix_canceled_stops_polling():
    collab = FakeCollaborator(intent=pix_intent(), statuses=["requires_action", "canceled", "succeeded"])
    with pytest.raises(PaymentDeclined):
        await PaymentGate(collab, poll_interval=0).request_payment(PaymentMethod.PIX)
    assert len(collab.polled) == 2


@pytest.mark.asyncio
async def test_pix_gives_up_after_timeout():
    collab = FakeCollaborator(intent=pix_intent(), statuses=["requires_action"])
    with pytest.raises(PaymentDeclined, match="expired"):
        await PaymentGate(collab, poll_interval=0.01, poll_timeout=0.05).request_payment(PaymentMethod.PIX)


@pytest.mark.asyncio
async def test_second_request_while_outstanding_is_rejected():
    collab = FakeCollaborator(intent=pix_intent(), statuses=["requires_action"])
    gate = PaymentGate(collab, poll_interval=0.01)

    first = asyncio.create_task(gate.request_payment(PaymentMethod.PIX))
    await asyncio.sleep(0.02)
    with pytest.raises(PaymentInProgress):
        await gate.request_payment(PaymentMethod.PIX)
    assert len(collab.created) == 1

    gate.cancel()
    with pytest.raises(PaymentDeclined):
        await first


def test_next_action_variants():
    intent = pix_intent()
    assert intent.pix_qr_code.data.startswith("0002")

    redirect = PaymentIntent.from_gateway(
        {
            "id": "pi_r",
            "client_secret": "s",
            "status": "requires_action",
            "next_action": {"type": "redirect_to_url", "redirect_to_url": {"url": "https://bank.example/3ds"}},
        }
    )
    assert redirect.pix_qr_code is None
    assert redirect.next_action.redirect_to_url.url == "https://bank.example/3ds"

    unknown = PaymentIntent.from_gateway(
        {"id": "pi_u", "client_secret": "s", "status": "requires_action", "next_action": {"type": "use_stripe_sdk"}}
    )
    assert unknown.next_action is None


@pytest.mark.asyncio
async def test_confirm_card_returns_intent_with_3ds_redirect():
    collab = FakeCollaborator(
        confirmation=CardConfirmation(
            status=PaymentStatus.REQUIRES_ACTION,
            next_action={"type": "redirect_to_url", "redirect_to_url": {"url": "https://hooks.stripe.com/3d_secure/abc"}},
        ),
    )
    gate = PaymentGate(collab)
    intent = await gate.create_intent(PaymentMethod.CARD)

    confirmed = await gate.confirm_card(intent, "pm_3ds")

    assert confirmed.id == intent.id
    assert confirmed.status is PaymentStatus.REQUIRES_ACTION
    assert confirmed.redirect_url == "https://hooks.stripe.com/3d_secure/abc"
    assert gate.outstanding  # still waiting on the payer
    assert collab.polled == []


@pytest.mark.asyncio
async def test_confirm_card_decline_closes_the_attempt():
    collab = FakeCollaborator(confirmation=CardConfirmation(error="Your card was declined."))
    gate = PaymentGate(collab)
    intent = await gate.create_intent(PaymentMethod.CARD)
    with pytest.raises(PaymentDeclined):
        await gate.confirm_card(intent, "pm_card_chargeDeclined")
    assert not gate.outstanding


@pytest.mark.asyncio
async def test_settle_reports_each_new_status():
    collab = FakeCollaborator(intent=pix_intent(), statuses=["requires_action", "requires_action", "processing", "succeeded"])
    gate = PaymentGate(collab, poll_interval=0)
    intent = await gate.create_intent(PaymentMethod.PIX)
    seen = []

    record = await gate.settle(intent, PaymentMethod.PIX, on_status=seen.append)

    assert record.succeeded
    assert seen == [PaymentStatus.REQUIRES_ACTION, PaymentStatus.PROCESSING, PaymentStatus.SUCCEEDED]
    assert not gate.outstanding
