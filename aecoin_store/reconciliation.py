"""
Entry points for every way a payment result reaches the store.

Stripe pushes signed webhooks; ToyyibPay sends the browser back (and may call
back server side) with hints that must be confirmed by querying ToyyibPay;
the client may also poll. All of them converge on ``settle``, which applies
the same verification before handing over to the fulfillment pipeline.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from aecoin_store import config, ledger, stripe_service, toyyibpay_service
from aecoin_store.errors import PendingPaymentNotFound, ProviderQueryError
from aecoin_store.events import PaymentFailed, PaymentSucceeded, TransactionStatus
from aecoin_store.fulfillment import find_order_by_payment_id, fulfill
from aecoin_store.models import Order, PaymentProvider, PendingPayment, PendingPaymentStatus
from aecoin_store.verification import verify_settlement

logger = logging.getLogger(__name__)


class ReturnOutcome(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class Completion:
    order: Optional[Order] = None
    status: Optional[str] = None


def settle(db: Session, event: PaymentSucceeded) -> Order:
    existing = find_order_by_payment_id(db, event.external_id)
    if existing:
        return existing

    pending = ledger.find_by_external_id(db, event.external_id)
    if pending is None:
        logger.error("INTEGRITY: settlement reported for unknown payment %s", event.external_id)
        raise PendingPaymentNotFound(event.external_id)

    verify_settlement(db, pending, event.paid_amount_minor_units, event.currency)
    return fulfill(db, event.external_id, event)


def apply_event(db: Session, event) -> Optional[Order]:
    if isinstance(event, PaymentSucceeded):
        return settle(db, event)
    if isinstance(event, PaymentFailed):
        if ledger.mark_failed(db, event.external_id):
            logger.info("Payment failed for %s: %s", event.external_id, event.reason)
        return None
    logger.debug("Ignoring payment event %s", getattr(event, "event_type", event))
    return None


def handle_stripe_webhook(db: Session, payload: bytes, signature: Optional[str]) -> Optional[Order]:
    event = stripe_service.verify_and_parse(payload, signature)
    return apply_event(db, event)


def query_provider(pending: PendingPayment) -> TransactionStatus:
    if pending.provider == PaymentProvider.STRIPE.value:
        return stripe_service.query_transaction(pending.external_id)
    if pending.provider == PaymentProvider.TOYYIBPAY.value:
        return toyyibpay_service.query_transaction(pending.external_id)
    raise ProviderQueryError(f"Unknown provider {pending.provider!r}")


def reverify_with_provider(db: Session, pending: PendingPayment) -> Optional[Order]:
    """
    Asks the provider directly whether the payment settled and, if so, settles it.

    An unanswered or inconclusive query changes nothing; only an explicit
    decline marks the ledger failed.
    """
    external_id = pending.external_id
    try:
        status = query_provider(pending)
    except ProviderQueryError:
        logger.exception("Provider query failed for %s, treating as not verified", external_id)
        return None
    return apply_event(db, status.as_event(external_id))


def _ledger_outcome(db: Session, external_id: str) -> ReturnOutcome:
    pending = ledger.find_by_external_id(db, external_id)
    if pending is not None and pending.status == PendingPaymentStatus.FAILED.value:
        return ReturnOutcome.FAILED
    return ReturnOutcome.PENDING


def handle_toyyibpay_return(db: Session, params) -> ReturnOutcome:
    hint = toyyibpay_service.parse_return(params)
    if not hint.external_id:
        return ReturnOutcome.FAILED

    if find_order_by_payment_id(db, hint.external_id):
        logger.info("Order already fulfilled for ToyyibPay bill %s", hint.external_id)
        return ReturnOutcome.SUCCESS

    if not hint.claims_success:
        logger.info("ToyyibPay return for %s without success flag", hint.external_id)
        return ReturnOutcome.FAILED

    pending = ledger.find_by_external_id(db, hint.external_id)
    if pending is None:
        logger.error("INTEGRITY: ToyyibPay return for unknown bill %s", hint.external_id)
        raise PendingPaymentNotFound(hint.external_id)

    if reverify_with_provider(db, pending) is not None:
        return ReturnOutcome.SUCCESS
    return _ledger_outcome(db, hint.external_id)


def complete_order(db: Session, user_id: str, external_id: str) -> Completion:
    """Status poll from the client; may fall back to one provider query."""
    order = find_order_by_payment_id(db, external_id)
    if order:
        if order.user_id != user_id:
            raise PendingPaymentNotFound(external_id)
        return Completion(order=order, status=order.status)

    pending = ledger.find_by_external_id(db, external_id)
    if pending is None or pending.user_id != user_id:
        raise PendingPaymentNotFound(external_id)

    if pending.status == PendingPaymentStatus.CREATED.value and config.PAYMENT_STATUS_FALLBACK:
        order = reverify_with_provider(db, pending)
        if order is not None:
            logger.info("Payment %s completed through status poll fallback", external_id)
            return Completion(order=order, status=order.status)

    db.refresh(pending)
    return Completion(status=pending.status)
