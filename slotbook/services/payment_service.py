"""
Payment authority used by the booking flow.

The booking core only looks at `authorized` and the opaque `reference`;
provider states stay inside this module. Provider outages raise
TransientFailure; refusals come back as an unauthorized PaymentAuthorization.
"""
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass

import stripe

from slotbook.core.config import settings
from slotbook.core.errors import TransientFailure

logger = logging.getLogger(__name__)

# outages and throttling; anything else from Stripe is a refusal
_UNAVAILABLE = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


@dataclass
class PaymentAuthorization:
    authorized: bool
    reference: str | None = None
    status: str = "pending"  # maps onto Booking.payment_status
    message: str = ""


class PaymentAuthority:
    def authorize(self, *, amount_cents: int, payment_token: str, customer_ref: str | None = None,
                  metadata: dict | None = None) -> PaymentAuthorization:
        """Place a hold for a card booking."""
        raise NotImplementedError

    def setup(self, *, payment_token: str, customer_ref: str | None = None,
              metadata: dict | None = None) -> PaymentAuthorization:
        """Save a card on file for a cash booking (no-show fee)."""
        raise NotImplementedError

    def capture(self, reference: str, amount_cents: int | None = None) -> PaymentAuthorization:
        raise NotImplementedError

    def void(self, reference: str) -> None:
        raise NotImplementedError

    def cancel_setup(self, reference: str) -> None:
        raise NotImplementedError

    def refund(self, reference: str, amount_cents: int | None = None) -> PaymentAuthorization:
        raise NotImplementedError

    def charge_setup(self, reference: str, amount_cents: int, customer_ref: str | None = None) -> PaymentAuthorization:
        raise NotImplementedError


@contextmanager
def _provider(action: str):
    try:
        yield
    except _UNAVAILABLE as e:
        logger.error("Stripe %s failed: %s", action, e)
        raise TransientFailure(f"payment provider unavailable during {action}") from e


def _params(**kwargs) -> dict:
    return {k: v for k, v in kwargs.items() if v is not None}


class StripePaymentAuthority(PaymentAuthority):
    """Manual-capture PaymentIntents for card bookings, off-session SetupIntents for cash ones."""

    def __init__(self, secret_key: str, currency: str = "usd", api_base: str | None = None, timeout: int = 20):
        stripe.api_key = secret_key
        if api_base:
            stripe.api_base = api_base
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        self.currency = currency

    def authorize(self, *, amount_cents, payment_token, customer_ref=None, metadata=None):
        metadata = dict(metadata or {})
        idempotency_key = metadata.pop("idempotency_key", None)
        try:
            with _provider("authorize"):
                pi = stripe.PaymentIntent.create(**_params(
                    amount=int(amount_cents),
                    currency=self.currency,
                    payment_method=payment_token,
                    customer=customer_ref,
                    confirm=True,
                    capture_method="manual",
                    automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                    metadata=metadata,
                    idempotency_key=idempotency_key,
                ))
        except stripe.StripeError as e:
            logger.info("Stripe declined authorization: %s", e)
            return PaymentAuthorization(False, None, "pending", e.user_message or str(e))
        if pi.status != "requires_capture":
            # 3DS or similar; the hold is not in place
            self.void(pi.id)
            return PaymentAuthorization(False, pi.id, "pending", f"payment intent status {pi.status}")
        return PaymentAuthorization(True, pi.id, "authorized")

    def setup(self, *, payment_token, customer_ref=None, metadata=None):
        metadata = dict(metadata or {})
        metadata.pop("idempotency_key", None)
        try:
            with _provider("card setup"):
                si = stripe.SetupIntent.create(**_params(
                    payment_method=payment_token,
                    customer=customer_ref,
                    confirm=True,
                    usage="off_session",
                    automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                    metadata=metadata,
                ))
        except stripe.StripeError as e:
            logger.info("Stripe declined card setup: %s", e)
            return PaymentAuthorization(False, None, "pending", e.user_message or str(e))
        if si.status != "succeeded":
            return PaymentAuthorization(False, si.id, "pending", f"setup intent status {si.status}")
        return PaymentAuthorization(True, si.id, "cash_pending")

    def capture(self, reference, amount_cents=None):
        try:
            with _provider("capture"):
                pi = stripe.PaymentIntent.capture(reference, **_params(
                    amount_to_capture=int(amount_cents) if amount_cents else None))
        except stripe.StripeError as e:
            # expired or already cancelled holds answer 400
            logger.warning("Stripe capture of %s refused: %s", reference, e)
            return PaymentAuthorization(False, reference, "authorized", e.user_message or str(e))
        return PaymentAuthorization(pi.status == "succeeded", reference, "paid", f"payment intent status {pi.status}")

    def void(self, reference):
        try:
            with _provider("void"):
                stripe.PaymentIntent.cancel(reference)
        except stripe.StripeError as e:
            # already cancelled / captured intents answer 400; nothing left to release
            logger.warning("Stripe void of %s rejected: %s", reference, e)

    def cancel_setup(self, reference):
        try:
            with _provider("setup cancel"):
                stripe.SetupIntent.cancel(reference)
        except stripe.StripeError as e:
            logger.warning("Stripe setup cancel of %s rejected: %s", reference, e)

    def refund(self, reference, amount_cents=None):
        try:
            with _provider("refund"):
                refund = stripe.Refund.create(**_params(
                    payment_intent=reference, amount=int(amount_cents) if amount_cents else None))
        except stripe.StripeError as e:
            logger.warning("Stripe refund of %s refused: %s", reference, e)
            return PaymentAuthorization(False, reference, "paid", e.user_message or str(e))
        ok = refund.status in ("succeeded", "pending")
        return PaymentAuthorization(ok, refund.id, "refunded" if ok else "paid", f"refund status {refund.status}")

    def charge_setup(self, reference, amount_cents, customer_ref=None):
        try:
            with _provider("no-show charge"):
                si = stripe.SetupIntent.retrieve(reference)
                if not si.payment_method:
                    return PaymentAuthorization(False, None, "pending", "no payment method on file")
                pi = stripe.PaymentIntent.create(**_params(
                    amount=int(amount_cents),
                    currency=self.currency,
                    payment_method=si.payment_method,
                    customer=customer_ref or si.customer,
                    confirm=True,
                    off_session=True,
                    metadata={"setup_intent": reference},
                ))
        except stripe.StripeError as e:
            logger.warning("Stripe no-show charge on %s refused: %s", reference, e)
            return PaymentAuthorization(False, None, "pending", e.user_message or str(e))
        return PaymentAuthorization(pi.status == "succeeded", pi.id, "no_show_charged")


class SandboxPaymentAuthority(PaymentAuthority):
    """
    Local-dev authority: never leaves the process. Decline tokens are refused
    up front; holds placed with a FAIL_LATER token authorize but refuse
    capture and refund, like an expired hold would.
    """

    DECLINE_TOKENS = ("decline", "tok_chargeDeclined", "pm_card_chargeDeclined")
    FAIL_LATER_TOKENS = ("pm_card_captureFails", "tok_captureFails")

    def __init__(self):
        self.voided: list[str] = []
        self.captured: list[str] = []
        self.refunded: list[str] = []
        self.failing: set[str] = set()

    def authorize(self, *, amount_cents, payment_token, customer_ref=None, metadata=None):
        if payment_token in self.DECLINE_TOKENS:
            return PaymentAuthorization(False, None, "pending", "card declined")
        reference = f"pi_sandbox_{uuid.uuid4().hex[:16]}"
        if payment_token in self.FAIL_LATER_TOKENS:
            self.failing.add(reference)
        return PaymentAuthorization(True, reference, "authorized")

    def setup(self, *, payment_token, customer_ref=None, metadata=None):
        if payment_token in self.DECLINE_TOKENS:
            return PaymentAuthorization(False, None, "pending", "card declined")
        reference = f"seti_sandbox_{uuid.uuid4().hex[:16]}"
        if payment_token in self.FAIL_LATER_TOKENS:
            self.failing.add(reference)
        return PaymentAuthorization(True, reference, "cash_pending")

    def capture(self, reference, amount_cents=None):
        if reference in self.failing:
            return PaymentAuthorization(False, reference, "authorized", "hold expired")
        self.captured.append(reference)
        return PaymentAuthorization(True, reference, "paid")

    def void(self, reference):
        self.voided.append(reference)

    def cancel_setup(self, reference):
        self.voided.append(reference)

    def refund(self, reference, amount_cents=None):
        if reference in self.failing:
            return PaymentAuthorization(False, reference, "paid", "refund refused")
        self.refunded.append(reference)
        return PaymentAuthorization(True, f"re_sandbox_{uuid.uuid4().hex[:16]}", "refunded")

    def charge_setup(self, reference, amount_cents, customer_ref=None):
        if reference in self.failing:
            return PaymentAuthorization(False, None, "pending", "card on file declined")
        return PaymentAuthorization(True, f"pi_sandbox_{uuid.uuid4().hex[:16]}", "no_show_charged")


_authority: PaymentAuthority | None = None


def get_payment_authority() -> PaymentAuthority:
    global _authority
    if _authority is None:
        if settings.STRIPE_SANDBOX or not settings.STRIPE_SECRET_KEY:
            if not settings.STRIPE_SANDBOX:
                logger.warning("STRIPE_SECRET_KEY not set; using sandbox payment authority")
            _authority = SandboxPaymentAuthority()
        else:
            _authority = StripePaymentAuthority(
                settings.STRIPE_SECRET_KEY,
                currency=settings.STRIPE_CURRENCY,
                api_base=settings.STRIPE_API_BASE,
                timeout=settings.STRIPE_TIMEOUT,
            )
    return _authority
