from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from aecoin_store import cart, checkout, reconciliation
from aecoin_store.auth import get_current_user_id
from aecoin_store.database import SessionLocal
from aecoin_store.models import CartItem, Coupon, Order, OrderItem, Package, RedemptionCode
from aecoin_store.pricing import coupon_rejection_reason, to_money
from aecoin_store.schemas import (
    CartAddRequest,
    CartUpdateRequest,
    CheckoutRequest,
    CompleteOrderRequest,
)

router = APIRouter(prefix="/api")


def _money(value):
    return str(to_money(value)) if value is not None else None


def _order_dict(order: Order, items=None):
    data = {
        "id": order.id,
        "status": order.status,
        "totalAmount": _money(order.total_amount),
        "discountAmount": _money(order.discount_amount),
        "finalAmount": _money(order.final_amount),
        "paymentMethod": order.payment_method,
        "paymentId": order.payment_id,
        "couponCode": order.coupon_code,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
    }
    if items is not None:
        data["items"] = [
            {"packageId": i.package_id, "quantity": i.quantity, "priceAtPurchase": _money(i.price_at_purchase)}
            for i in items
        ]
    return data


def _code_dict(code: RedemptionCode):
    return {
        "code": code.code,
        "packageId": code.package_id,
        "aecoinAmount": code.aecoin_amount,
        "status": code.status,
    }


def _package_dict(pkg: Package):
    return {
        "id": pkg.id,
        "name": pkg.name,
        "price": _money(pkg.price),
        "aecoinAmount": pkg.aecoin_amount,
    }


def _cart_item_dict(item: CartItem, pkg: Optional[Package]):
    return {
        "id": item.id,
        "packageId": item.package_id,
        "quantity": item.quantity,
        "package": _package_dict(pkg) if pkg else None,
    }


@router.get("/packages")
def list_packages():
    db = SessionLocal()
    try:
        return [_package_dict(pkg) for pkg in db.query(Package).order_by(Package.price, Package.name).all()]
    finally:
        db.close()


@router.get("/packages/{package_id}")
def get_package(package_id: str):
    db = SessionLocal()
    try:
        pkg = db.get(Package, package_id)
        if pkg is None:
            raise HTTPException(status_code=404, detail="Package not found")
        return _package_dict(pkg)
    finally:
        db.close()


@router.get("/cart")
def get_cart(user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        return [_cart_item_dict(item, db.get(Package, item.package_id)) for item in cart.get_cart_items(db, user_id)]
    finally:
        db.close()


@router.post("/cart")
def add_to_cart(request: CartAddRequest, user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        item = cart.add_to_cart(db, user_id, request.package_id, request.quantity)
        if item is None:
            raise HTTPException(status_code=404, detail="Package not found")
        return _cart_item_dict(item, db.get(Package, item.package_id))
    finally:
        db.close()


@router.patch("/cart/{item_id}")
def update_cart_item(item_id: str, request: CartUpdateRequest, user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        item = cart.update_quantity(db, user_id, item_id, request.quantity)
        if item is None:
            raise HTTPException(status_code=404, detail="Cart item not found")
        return _cart_item_dict(item, db.get(Package, item.package_id))
    finally:
        db.close()


@router.delete("/cart/{item_id}")
def remove_cart_item(item_id: str, user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        if not cart.remove_item(db, user_id, item_id):
            raise HTTPException(status_code=404, detail="Cart item not found")
        return {"message": "Item removed from cart"}
    finally:
        db.close()


@router.delete("/cart")
def clear_cart(user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        cart.clear_cart(db, user_id)
        return {"message": "Cart cleared"}
    finally:
        db.close()


@router.get("/coupons/{code}")
def check_coupon(code: str, subtotal: float = 0):
    db = SessionLocal()
    try:
        coupon = db.query(Coupon).filter_by(code=code.strip().upper()).first()
        if not coupon:
            raise HTTPException(status_code=404, detail="Coupon not found")
        reason = coupon_rejection_reason(coupon, to_money(subtotal))
        if reason:
            raise HTTPException(status_code=400, detail=reason)
        return {
            "code": coupon.code,
            "discountType": coupon.discount_type,
            "discountValue": _money(coupon.discount_value),
            "minPurchase": _money(coupon.min_purchase),
        }
    finally:
        db.close()


@router.post("/create-payment-intent")
def create_payment_intent(request: Optional[CheckoutRequest] = None, user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        pending, client_secret, quote = checkout.create_stripe_intent(
            db, user_id, request.coupon_code if request else None
        )
        return {
            "clientSecret": client_secret,
            "paymentIntentId": pending.external_id,
            "amount": str(quote.total),
        }
    finally:
        db.close()


@router.post("/create-toyyibpay-bill")
def create_toyyibpay_bill(request: Optional[CheckoutRequest] = None, user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        pending, url, quote = checkout.create_toyyibpay_bill(
            db, user_id, request.coupon_code if request else None
        )
        return {
            "billCode": pending.external_id,
            "paymentUrl": url,
            "amount": str(quote.total),
            "metadata": {
                "couponCode": quote.applied_coupon or "",
                "subtotal": str(quote.subtotal),
                "discount": str(quote.discount),
                "total": str(quote.total),
            },
        }
    finally:
        db.close()


@router.post("/orders/complete")
def complete_order(request: CompleteOrderRequest, user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        result = reconciliation.complete_order(db, user_id, request.reference)
        if result.order is not None:
            return {"success": True, "order": _order_dict(result.order)}
        return {
            "success": False,
            "status": result.status,
            "message": "Payment failed" if result.status == "failed" else "Payment processing...",
        }
    finally:
        db.close()


@router.get("/orders")
def list_orders(user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        orders = db.query(Order).filter_by(user_id=user_id).order_by(Order.created_at.desc()).all()
        return [_order_dict(o) for o in orders]
    finally:
        db.close()


def _owned_order(db, order_id, user_id) -> Order:
    order = db.get(Order, order_id)
    if not order or order.user_id != user_id:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/orders/{order_id}")
def get_order(order_id: str, user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        order = _owned_order(db, order_id, user_id)
        items = db.query(OrderItem).filter_by(order_id=order.id).all()
        return _order_dict(order, items)
    finally:
        db.close()


@router.get("/orders/{order_id}/codes")
def get_order_codes(order_id: str, user_id: str = Depends(get_current_user_id)):
    db = SessionLocal()
    try:
        order = _owned_order(db, order_id, user_id)
        codes = db.query(RedemptionCode).filter_by(order_id=order.id).order_by(RedemptionCode.created_at).all()
        return [_code_dict(c) for c in codes]
    finally:
        db.close()
