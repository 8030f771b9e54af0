import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from aecoin_store.database import Base


def _uuid():
    return str(uuid.uuid4())


def _now():
    return datetime.now(timezone.utc)


class PaymentProvider(str, Enum):
    STRIPE = "stripe"          # push-style: signed webhook
    TOYYIBPAY = "toyyibpay"    # redirect-style: browser return + server query


class PendingPaymentStatus(str, Enum):
    CREATED = "created"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OrderStatus(str, Enum):
    PAID = "paid"
    FULFILLED = "fulfilled"


class CodeStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    username = Column(String, nullable=False)
    email = Column(String)


class Package(Base):
    __tablename__ = "packages"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    aecoin_amount = Column(Integer, nullable=False)


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    package_id = Column(String, ForeignKey("packages.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(String, primary_key=True, default=_uuid)
    code = Column(String, unique=True, index=True, nullable=False)
    discount_type = Column(String, nullable=False)      # percentage | fixed
    discount_value = Column(Numeric(10, 2), nullable=False)
    min_purchase = Column(Numeric(10, 2))
    max_uses = Column(Integer)
    current_uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True))
    is_active = Column(Boolean, nullable=False, default=True)


class PendingPayment(Base):
    __tablename__ = "pending_payments"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    provider = Column(String, nullable=False)
    external_id = Column(String, unique=True, index=True, nullable=False)   # PaymentIntent id / bill code
    amount_minor_units = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String, nullable=False, default=PendingPaymentStatus.CREATED.value)
    cart_snapshot = Column(Text, nullable=False)
    coupon_code = Column(String)
    payment_metadata = Column("metadata", Text)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    final_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default=OrderStatus.PAID.value)
    payment_method = Column(String, nullable=False)
    payment_id = Column(String, unique=True, index=True, nullable=False)     # idempotency key
    coupon_code = Column(String)
    created_at = Column(DateTime(timezone=True), default=_now)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("orders.id"), index=True, nullable=False)
    package_id = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_purchase = Column(Numeric(10, 2), nullable=False)


class RedemptionCode(Base):
    __tablename__ = "redemption_codes"

    id = Column(String, primary_key=True, default=_uuid)
    code = Column(String, unique=True, index=True, nullable=False)
    package_id = Column(String, nullable=False)
    order_id = Column(String, ForeignKey("orders.id"), index=True, nullable=False)
    aecoin_amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=CodeStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), default=_now)
