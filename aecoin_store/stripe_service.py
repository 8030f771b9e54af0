import json
import logging

import stripe

from aecoin_store import config
from aecoin_store.errors import ProviderQueryError, SignatureInvalid
from aecoin_store.events import PaymentFailed, PaymentSucceeded, TransactionStatus, Unrecognized

logger = logging.getLogger(__name__)

stripe.api_key = config.STRIPE_SECRET_KEY


def create_payment(amount: int, currency: str, idempotency_key: str, metadata: dict = None):
    return stripe.PaymentIntent.create(
        amount=amount,
        currency=currency.lower(),
        automatic_payment_methods={"enabled": True},
        metadata=metadata or {},
        idempotency_key=idempotency_key
    )


def verify_and_parse(payload: bytes, signature_header: str):
    """
    Authenticates a webhook delivery and maps it to a canonical event.

    The signature is checked before the body is even decoded. Without a
    configured secret only development deployments accept unsigned events.
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureInvalid("Invalid payload")

    secret = config.STRIPE_WEBHOOK_SECRET
    if secret:
        if not signature_header:
            raise SignatureInvalid("Missing signature")
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError:
            raise SignatureInvalid("Invalid signature")
    elif config.is_development():
        logger.warning("STRIPE_WEBHOOK_SECRET not set, accepting unsigned webhook (development only)")
    else:
        logger.error("STRIPE_WEBHOOK_SECRET not configured, rejecting webhook")
        raise SignatureInvalid("Webhook secret not configured")

    try:
        event = json.loads(payload)
    except ValueError:
        raise SignatureInvalid("Invalid payload")
    return parse_event(event)


def parse_event(event):
    if not isinstance(event, dict):
        return Unrecognized()

    event_type = event.get("type") or ""
    intent = (event.get("data") or {}).get("object") or {}
    intent_id = intent.get("id")
    if not intent_id:
        return Unrecognized(event_type)

    if event_type == "payment_intent.succeeded":
        amount = intent.get("amount_received", intent.get("amount"))
        currency = intent.get("currency")
        if not isinstance(amount, int) or not currency:
            logger.warning("Succeeded event %s without usable amount/currency", intent_id)
            return Unrecognized(event_type)
        return PaymentSucceeded(intent_id, amount, currency.upper())

    if event_type in ("payment_intent.payment_failed", "payment_intent.canceled"):
        error = intent.get("last_payment_error") or {}
        return PaymentFailed(intent_id, error.get("message") or event_type)

    return Unrecognized(event_type)


def query_transaction(payment_intent_id: str) -> TransactionStatus:
    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        raise ProviderQueryError(f"Stripe query failed: {e}")

    status = getattr(intent, "status", None)
    if status != "succeeded":
        return TransactionStatus(settled=False, declined=status == "canceled")

    amount = getattr(intent, "amount_received", None) or getattr(intent, "amount", None)
    currency = getattr(intent, "currency", None)
    return TransactionStatus(
        settled=True,
        paid_amount_minor_units=amount if isinstance(amount, int) else None,
        currency=currency.upper() if currency else None,
        invoice_ref=getattr(intent, "latest_charge", None),
    )
