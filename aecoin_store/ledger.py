"""
Pending payment ledger: the durable record of a checkout in flight.

A row is written once, when the provider has minted its transaction id, and
from then on only its status moves, and only forward (created -> succeeded |
failed). Rows are never deleted.
"""
import json
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from aecoin_store.models import PaymentProvider, PendingPayment, PendingPaymentStatus
from aecoin_store.pricing import Quote, from_minor_units
from aecoin_store.schemas import PaymentBreakdown, SnapshotLine

logger = logging.getLogger(__name__)


def open_pending_payment(
    db: Session,
    *,
    user_id: str,
    provider: PaymentProvider,
    external_id: str,
    quote: Quote,
    currency: str,
    cart_snapshot: List[SnapshotLine],
    extra_metadata: Optional[dict] = None,
) -> PendingPayment:
    metadata = PaymentBreakdown(subtotal=quote.subtotal, discount=quote.discount, **(extra_metadata or {}))
    pending = PendingPayment(
        user_id=user_id,
        provider=PaymentProvider(provider).value,
        external_id=external_id,
        amount_minor_units=quote.total_minor_units,
        currency=currency.upper(),
        status=PendingPaymentStatus.CREATED.value,
        cart_snapshot=json.dumps([line.model_dump(mode="json", by_alias=True) for line in cart_snapshot]),
        coupon_code=quote.applied_coupon,
        payment_metadata=metadata.model_dump_json(),
    )
    db.add(pending)
    db.commit()
    db.refresh(pending)
    logger.info(
        "Opened pending payment %s provider=%s amount=%s %s",
        external_id, pending.provider, pending.amount_minor_units, pending.currency,
    )
    return pending


def find_by_external_id(db: Session, external_id: str) -> Optional[PendingPayment]:
    if not external_id:
        return None
    return db.query(PendingPayment).filter_by(external_id=external_id).first()


def _transition(db: Session, external_id: str, target: PendingPaymentStatus) -> bool:
    updated = (
        db.query(PendingPayment)
        .filter(
            PendingPayment.external_id == external_id,
            PendingPayment.status == PendingPaymentStatus.CREATED.value,
        )
        .update({PendingPayment.status: target.value}, synchronize_session=False)
    )
    db.commit()
    if updated:
        logger.info("Pending payment %s -> %s", external_id, target.value)
    return updated > 0


def mark_succeeded(db: Session, external_id: str) -> bool:
    """Returns True if this call moved the row; repeating it is a no-op."""
    return _transition(db, external_id, PendingPaymentStatus.SUCCEEDED)


def mark_failed(db: Session, external_id: str) -> bool:
    return _transition(db, external_id, PendingPaymentStatus.FAILED)


def load_snapshot(pending: PendingPayment) -> List[SnapshotLine]:
    return [SnapshotLine.model_validate(line) for line in json.loads(pending.cart_snapshot)]


def load_breakdown(pending: PendingPayment) -> PaymentBreakdown:
    if not pending.payment_metadata:
        # Nothing recorded: the charged amount is both subtotal and total
        return PaymentBreakdown(subtotal=from_minor_units(pending.amount_minor_units))
    return PaymentBreakdown.model_validate_json(pending.payment_metadata)
