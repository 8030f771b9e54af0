"""
Order fulfillment: turns a verified payment into exactly one Order.

Every trigger (Stripe webhook, ToyyibPay return or callback, the client's
status poll) ends up in ``fulfill``. The only concurrency control is the
unique index on ``orders.payment_id``: whoever inserts the Order row issues
the codes and applies the side effects, every other caller gets that Order
back untouched.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from aecoin_store import ledger
from aecoin_store.cart import clear_cart
from aecoin_store.codes import CodePolicy, credited_amount, issue_unique_code, policy_from_config
from aecoin_store.errors import (
    NotificationError,
    PendingPaymentNotFound,
    ProvisioningSinkError,
    VerificationFailed,
)
from aecoin_store.events import PaymentSucceeded
from aecoin_store.models import (
    CodeStatus,
    Coupon,
    Order,
    OrderItem,
    OrderStatus,
    PendingPayment,
    RedemptionCode,
    User,
)
from aecoin_store.notifications import send_order_confirmation
from aecoin_store.pricing import from_minor_units
from aecoin_store.provisioning import push_code
from aecoin_store.schemas import SnapshotLine
from aecoin_store.verification import verify_settlement

logger = logging.getLogger(__name__)

# (code, credited amount, package name)
IssuedCode = Tuple[str, int, str]


def find_order_by_payment_id(db: Session, payment_id: str) -> Optional[Order]:
    return db.query(Order).filter_by(payment_id=payment_id).first()


def fulfill(db: Session, external_id: str, event: PaymentSucceeded, policy: Optional[CodePolicy] = None) -> Order:
    existing = find_order_by_payment_id(db, external_id)
    if existing:
        logger.info("Order already exists for payment %s", external_id)
        return existing

    pending = ledger.find_by_external_id(db, external_id)
    if pending is None:
        logger.error("INTEGRITY: no pending payment for %s, refusing to create an order", external_id)
        raise PendingPaymentNotFound(external_id)

    if event.external_id != external_id:
        logger.error("Event for %s handed to fulfillment of %s", event.external_id, external_id)
        raise VerificationFailed("Payment verification failed")
    verify_settlement(db, pending, event.paid_amount_minor_units, event.currency)

    policy = policy or policy_from_config()
    user_id, coupon_code = pending.user_id, pending.coupon_code
    snapshot = ledger.load_snapshot(pending)

    try:
        order = _create_order(db, pending)
        issued = _materialize_lines(db, order, snapshot, policy)
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = find_order_by_payment_id(db, external_id)
        if winner is None:
            raise
        logger.info("Payment %s fulfilled concurrently, returning order %s", external_id, winner.id)
        return winner

    order_id = order.id
    logger.info("Order %s created for payment %s with %s codes", order_id, external_id, len(issued))

    for code, amount, _ in issued:
        try:
            push_code(code, amount)
        except ProvisioningSinkError:
            logger.exception("Failed to provision code %s for order %s", code, order_id)
        except Exception:
            # The order still moves to fulfilled
            logger.exception("Unexpected error provisioning code %s for order %s", code, order_id)

    order.status = OrderStatus.FULFILLED.value
    db.commit()

    _apply_side_effects(db, external_id, user_id, coupon_code, order, issued)
    logger.info("Order %s fulfilled via %s", order_id, order.payment_method)
    return order


def _create_order(db: Session, pending: PendingPayment) -> Order:
    breakdown = ledger.load_breakdown(pending)
    order = Order(
        user_id=pending.user_id,
        total_amount=breakdown.subtotal,
        discount_amount=breakdown.discount,
        final_amount=from_minor_units(pending.amount_minor_units),
        status=OrderStatus.PAID.value,
        payment_method=pending.provider,
        payment_id=pending.external_id,
        coupon_code=pending.coupon_code,
    )
    db.add(order)
    db.flush()
    return order


def _materialize_lines(db: Session, order: Order, snapshot: List[SnapshotLine], policy: CodePolicy) -> List[IssuedCode]:
    issued: List[IssuedCode] = []
    for line in snapshot:
        db.add(OrderItem(
            order_id=order.id,
            package_id=line.package_id,
            quantity=line.quantity,
            price_at_purchase=line.unit_price_at_checkout,
        ))
        amount = credited_amount(line.currency_amount_per_unit, policy)
        for _ in range(line.quantity):
            code = issue_unique_code(db, line.currency_amount_per_unit, policy)
            db.add(RedemptionCode(
                code=code,
                package_id=line.package_id,
                order_id=order.id,
                aecoin_amount=amount,
                status=CodeStatus.ACTIVE.value,
            ))
            db.flush()
            issued.append((code, amount, line.package_name))
    return issued


def increment_coupon_use(db: Session, code: str) -> bool:
    updated = (
        db.query(Coupon)
        .filter(Coupon.code == code)
        .update({Coupon.current_uses: Coupon.current_uses + 1}, synchronize_session=False)
    )
    db.commit()
    return updated > 0


def _apply_side_effects(db: Session, external_id: str, user_id: str, coupon_code, order: Order, issued: List[IssuedCode]):
    # Each step stands alone: a failure is logged and the order stays fulfilled.
    if coupon_code:
        try:
            if not increment_coupon_use(db, coupon_code):
                logger.warning("Coupon %s recorded on %s no longer exists", coupon_code, external_id)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to increment coupon %s for order %s", coupon_code, order.id)

    try:
        clear_cart(db, user_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to clear cart of user %s after order %s", user_id, order.id)

    try:
        ledger.mark_succeeded(db, external_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to mark pending payment %s succeeded", external_id)

    try:
        user = db.get(User, user_id)
        if user is None or not user.email:
            logger.info("No email on file for user %s, skipping confirmation", user_id)
            return
        send_order_confirmation(
            user.email,
            order.id,
            order.final_amount,
            [(code, package_name) for code, _, package_name in issued],
        )
    except (NotificationError, SQLAlchemyError):
        db.rollback()
        logger.exception("Failed to send confirmation email for order %s", order.id)
