from types import SimpleNamespace

import pytest
import stripe

from slotbook.core.errors import TransientFailure
from slotbook.services.payment_service import SandboxPaymentAuthority, StripePaymentAuthority


@pytest.fixture
def authority(monkeypatch):
    monkeypatch.setattr(stripe, "api_key", None)
    monkeypatch.setattr(stripe, "default_http_client", None)
    return StripePaymentAuthority("sk_test_123", currency="usd")


def _raise(error):
    def call(*args, **kwargs):
        raise error
    return call


def test_authorize_places_manual_capture_hold(authority, monkeypatch):
    seen = {}

    def create(**kwargs):
        seen.update(kwargs)
        return SimpleNamespace(id="pi_1", status="requires_capture")

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    auth = authority.authorize(amount_cents=3500, payment_token="pm_card_visa",
                               metadata={"booking_id": "b1", "idempotency_key": "booking-b1"})
    assert (auth.authorized, auth.reference, auth.status) == (True, "pi_1", "authorized")
    assert seen["capture_method"] == "manual"
    assert seen["idempotency_key"] == "booking-b1"
    assert seen["metadata"] == {"booking_id": "b1"}
    assert "customer" not in seen


def test_declined_card_is_not_an_error(authority, monkeypatch):
    declined = stripe.CardError("Your card was declined.", None, "card_declined")
    monkeypatch.setattr(stripe.PaymentIntent, "create", _raise(declined))
    auth = authority.authorize(amount_cents=3500, payment_token="pm_card_chargeDeclined")
    assert not auth.authorized
    assert auth.reference is None


def test_refused_capture_and_refund_come_back_unauthorized(authority, monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "capture", _raise(stripe.InvalidRequestError("hold expired", None)))
    monkeypatch.setattr(stripe.Refund, "create", _raise(stripe.InvalidRequestError("charge disputed", None)))
    capture = authority.capture("pi_1", 3500)
    assert (capture.authorized, capture.status) == (False, "authorized")
    refund = authority.refund("pi_1", 3500)
    assert (refund.authorized, refund.status) == (False, "paid")


def test_no_show_charge_with_missing_setup_intent(authority, monkeypatch):
    missing = stripe.InvalidRequestError("No such setupintent", "id")
    monkeypatch.setattr(stripe.SetupIntent, "retrieve", _raise(missing))
    assert not authority.charge_setup("seti_gone", 2500).authorized


def test_provider_outage_is_transient(authority, monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "capture", _raise(stripe.APIConnectionError("connection reset")))
    with pytest.raises(TransientFailure):
        authority.capture("pi_1")
    monkeypatch.setattr(stripe.Refund, "create", _raise(stripe.RateLimitError("slow down")))
    with pytest.raises(TransientFailure):
        authority.refund("pi_1")


def test_void_of_finished_intent_is_ignored(authority, monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "cancel", _raise(stripe.InvalidRequestError("already captured", None)))
    authority.void("pi_1")


def test_sandbox_fail_later_token():
    sandbox = SandboxPaymentAuthority()
    auth = sandbox.authorize(amount_cents=1000, payment_token="pm_card_captureFails")
    assert auth.authorized
    assert not sandbox.capture(auth.reference).authorized
    assert not sandbox.refund(auth.reference).authorized
    assert sandbox.captured == [] and sandbox.refunded == []
