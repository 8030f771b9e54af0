"""
Checkout intent creation: price the live cart server side, freeze it, ask the
provider for a transaction handle, then record the ledger entry under that
handle.
"""
import logging
import uuid
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from aecoin_store import config, ledger, stripe_service, toyyibpay_service
from aecoin_store.cart import snapshot_cart
from aecoin_store.errors import EmptyCart
from aecoin_store.models import Coupon, PaymentProvider, PendingPayment, User
from aecoin_store.pricing import Quote, evaluate

logger = logging.getLogger(__name__)


def quote_cart(db: Session, user_id: str, coupon_code: Optional[str]):
    lines = snapshot_cart(db, user_id)
    if not lines:
        raise EmptyCart("Cart is empty")

    coupon = None
    if coupon_code:
        coupon = db.query(Coupon).filter_by(code=coupon_code.strip().upper()).first()
    return lines, evaluate(lines, coupon)


def create_stripe_intent(db: Session, user_id: str, coupon_code: Optional[str]) -> Tuple[PendingPayment, str, Quote]:
    """Returns the ledger entry, the PaymentIntent client secret and the quote."""
    lines, quote = quote_cart(db, user_id, coupon_code)

    intent = stripe_service.create_payment(
        quote.total_minor_units,
        config.STORE_CURRENCY,
        idempotency_key=str(uuid.uuid4()),
        metadata={
            "userId": user_id,
            "couponCode": quote.applied_coupon or "",
            "subtotal": str(quote.subtotal),
            "discount": str(quote.discount),
            "total": str(quote.total),
        },
    )

    pending = ledger.open_pending_payment(
        db,
        user_id=user_id,
        provider=PaymentProvider.STRIPE,
        external_id=intent.id,
        quote=quote,
        currency=config.STORE_CURRENCY,
        cart_snapshot=lines,
    )
    return pending, intent.client_secret, quote


def create_toyyibpay_bill(db: Session, user_id: str, coupon_code: Optional[str]) -> Tuple[PendingPayment, str, Quote]:
    """Returns the ledger entry, the payment page URL and the quote."""
    lines, quote = quote_cart(db, user_id, coupon_code)
    user = db.get(User, user_id)

    reference = str(uuid.uuid4())
    bill_code = toyyibpay_service.create_bill(
        amount_minor_units=quote.total_minor_units,
        external_reference=reference,
        name=f"AECOIN Order {reference[:8]}",
        description="AECOIN Package Purchase",
        payer_name=user.username if user else user_id,
        payer_email=(user.email if user else None) or "",
        return_url=f"{config.BASE_URL}/api/toyyibpay/return",
        callback_url=f"{config.BASE_URL}/api/toyyibpay/callback",
    )

    pending = ledger.open_pending_payment(
        db,
        user_id=user_id,
        provider=PaymentProvider.TOYYIBPAY,
        external_id=bill_code,
        quote=quote,
        currency=toyyibpay_service.CURRENCY,
        cart_snapshot=lines,
        extra_metadata={"externalReferenceNo": reference},
    )
    return pending, toyyibpay_service.payment_url(bill_code), quote
