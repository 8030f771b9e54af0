from decimal import Decimal

import requests
from jose import jwt

from aecoin_store import config
from aecoin_store.auth import get_current_user_id
from aecoin_store.main import app as fastapi_app
from aecoin_store.models import Order, PendingPayment, RedemptionCode
from conftest import OTHER_USER_ID, USER_ID, TestingSessionLocal, sign_stripe_payload, stripe_event


def add_order(owner=USER_ID, payment_id="pi_seed", code="AE1000-ABCD-EFGH-JKLM"):
    db = TestingSessionLocal()
    order = Order(user_id=owner, total_amount=Decimal("98.00"), discount_amount=Decimal("0.00"),
                  final_amount=Decimal("98.00"), status="fulfilled", payment_method="stripe",
                  payment_id=payment_id)
    db.add(order)
    db.flush()
    db.add(RedemptionCode(code=code, package_id="pkg-1000",
                          order_id=order.id, aecoin_amount=1000))
    db.commit()
    order_id = order.id
    db.close()
    return order_id


# --- AUTH ---

def test_missing_token_is_rejected(client):
    fastapi_app.dependency_overrides.pop(get_current_user_id)

    response = client.get("/api/cart")

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or missing token"


def test_bearer_token_identifies_user(client, shop, monkeypatch):
    fastapi_app.dependency_overrides.pop(get_current_user_id)
    monkeypatch.setattr(config, "JWT_SECRET", "test-secret")
    token = jwt.encode({"sub": USER_ID}, "test-secret", algorithm="HS256")

    response = client.get("/api/cart", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == []


def test_forged_token_is_rejected(client, monkeypatch):
    fastapi_app.dependency_overrides.pop(get_current_user_id)
    monkeypatch.setattr(config, "JWT_SECRET", "test-secret")
    token = jwt.encode({"sub": USER_ID}, "other-secret", algorithm="HS256")

    response = client.get("/api/cart", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


# --- PACKAGES ---

def test_list_packages(client, shop):
    response = client.get("/api/packages")

    assert response.status_code == 200
    assert response.json() == [
        {"id": "pkg-1000", "name": "1000 AECOIN", "price": "98.00", "aecoinAmount": 1000},
        {"id": "pkg-5000", "name": "5000 AECOIN", "price": "450.00", "aecoinAmount": 5000},
    ]


def test_get_package(client, shop):
    response = client.get("/api/packages/pkg-5000")

    assert response.status_code == 200
    assert response.json()["price"] == "450.00"
    assert response.json()["aecoinAmount"] == 5000


def test_get_unknown_package(client, shop):
    response = client.get("/api/packages/pkg-nope")

    assert response.status_code == 404
    assert response.json()["detail"] == "Package not found"


def test_packages_need_no_login(client, shop):
    fastapi_app.dependency_overrides.pop(get_current_user_id)

    assert client.get("/api/packages").status_code == 200
    assert client.get("/api/packages/pkg-1000").status_code == 200
    assert client.get("/api/cart").status_code == 401


# --- CART ---

def test_cart_crud(client, shop):
    response = client.post("/api/cart", json={"packageId": "pkg-1000", "quantity": 1})
    assert response.status_code == 200
    item_id = response.json()["id"]

    # Adding the same package again merges the lines
    client.post("/api/cart", json={"packageId": "pkg-1000", "quantity": 2})
    [line] = client.get("/api/cart").json()
    assert line["quantity"] == 3
    assert line["package"]["price"] == "98.00"

    assert client.patch(f"/api/cart/{item_id}", json={"quantity": 1}).json()["quantity"] == 1
    assert client.delete(f"/api/cart/{item_id}").status_code == 200
    assert client.get("/api/cart").json() == []


def test_cart_unknown_package(client, shop):
    response = client.post("/api/cart", json={"packageId": "pkg-nope", "quantity": 1})

    assert response.status_code == 404
    assert response.json()["detail"] == "Package not found"


def test_cart_rejects_non_positive_quantity(client, shop):
    assert client.post("/api/cart", json={"packageId": "pkg-1000", "quantity": 0}).status_code == 422


def test_clear_cart(client, shop):
    client.post("/api/cart", json={"packageId": "pkg-1000"})

    response = client.delete("/api/cart")

    assert response.json() == {"message": "Cart cleared"}
    assert client.get("/api/cart").json() == []


# --- COUPONS ---

def test_check_coupon(client, shop):
    response = client.get("/api/coupons/save10?subtotal=98")

    assert response.status_code == 200
    assert response.json()["discountType"] == "percentage"
    assert response.json()["discountValue"] == "10.00"


def test_check_unknown_coupon(client, shop):
    assert client.get("/api/coupons/NOPE").status_code == 404


# --- CHECKOUT ---

def test_checkout_with_empty_cart(client, shop, mocker):
    create = mocker.patch("stripe.PaymentIntent.create")

    response = client.post("/api/create-payment-intent", json={})

    assert response.status_code == 400
    assert response.json()["detail"] == "Cart is empty"
    create.assert_not_called()


def test_checkout_ignores_client_amount(client, shop, mocker):
    mock_intent = mocker.Mock()
    mock_intent.id = "pi_123"
    mock_intent.client_secret = "secret_123"
    create = mocker.patch("stripe.PaymentIntent.create", return_value=mock_intent)
    client.post("/api/cart", json={"packageId": "pkg-1000"})

    response = client.post("/api/create-payment-intent", json={"couponCode": "save10", "amount": 1})

    assert response.status_code == 200
    assert response.json() == {"clientSecret": "secret_123", "paymentIntentId": "pi_123", "amount": "88.20"}
    assert create.call_args.kwargs["amount"] == 8820

    db = TestingSessionLocal()
    pending = db.query(PendingPayment).filter_by(external_id="pi_123").one()
    assert pending.amount_minor_units == 8820
    assert pending.user_id == USER_ID
    db.close()


def test_provider_outage_at_checkout_leaves_no_ledger_entry(client, shop, mocker):
    mocker.patch("aecoin_store.toyyibpay_service.requests.post", side_effect=requests.Timeout("slow"))
    client.post("/api/cart", json={"packageId": "pkg-1000"})

    response = client.post("/api/create-toyyibpay-bill", json={})

    assert response.status_code == 502
    db = TestingSessionLocal()
    assert db.query(PendingPayment).count() == 0
    db.close()


# --- ORDERS ---

def test_orders_are_owner_only(client, shop):
    mine = add_order(USER_ID, "pi_mine")
    theirs = add_order(OTHER_USER_ID, "pi_theirs", "AE1000-WXYZ-WXYZ-WXYZ")

    assert [o["id"] for o in client.get("/api/orders").json()] == [mine]
    assert client.get(f"/api/orders/{theirs}").status_code == 404
    assert client.get(f"/api/orders/{theirs}/codes").status_code == 404


def test_order_codes(client, shop):
    order_id = add_order()

    [code] = client.get(f"/api/orders/{order_id}/codes").json()

    assert code == {"code": "AE1000-ABCD-EFGH-JKLM", "packageId": "pkg-1000", "aecoinAmount": 1000, "status": "active"}


def test_complete_requires_a_reference(client, shop):
    assert client.post("/api/orders/complete", json={}).status_code == 422


def test_complete_unknown_payment(client, shop):
    response = client.post("/api/orders/complete", json={"paymentIntentId": "pi_nope"})

    assert response.status_code == 404
    assert response.json()["detail"] == "Payment not found"


# --- PROVIDER ENDPOINTS ---

def test_stripe_webhook_invalid_signature(client, shop):
    payload = stripe_event("payment_intent.succeeded", "pi_123")

    response = client.post("/api/webhooks/stripe", content=payload, headers={"stripe-signature": "t=1,v1=bad"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Webhook verification failed"


def test_stripe_webhook_for_unknown_intent(client, shop):
    payload = stripe_event("payment_intent.succeeded", "pi_unknown")

    response = client.post("/api/webhooks/stripe", content=payload,
                           headers={"stripe-signature": sign_stripe_payload(payload)})

    assert response.status_code == 400


def test_stripe_webhook_ignores_other_events(client, shop):
    payload = stripe_event("charge.refunded", "ch_1")

    response = client.post("/api/webhooks/stripe", content=payload,
                           headers={"stripe-signature": sign_stripe_payload(payload)})

    assert response.status_code == 200
    assert response.json() == {"received": True, "orderId": None}


def test_toyyibpay_return_without_bill_code(client, shop):
    response = client.get("/api/toyyibpay/return?status_id=1", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/payment/failed"


def test_code_generation_failure_creates_no_order(client, shop, mocker):
    from aecoin_store.errors import CodeGenerationError
    mock_pi = mocker.Mock()
    mock_pi.id = "pi_codes_exhausted"
    mock_pi.client_secret = "secret"
    mocker.patch("stripe.PaymentIntent.create", return_value=mock_pi)
    mocker.patch("aecoin_store.fulfillment.issue_unique_code",
                 side_effect=CodeGenerationError("Could not generate a unique redemption code after 10 attempts"))
    client.post("/api/cart", json={"packageId": "pkg-1000"})
    client.post("/api/create-payment-intent", json={})

    payload = stripe_event("payment_intent.succeeded", "pi_codes_exhausted", amount=9800)
    response = client.post("/api/webhooks/stripe", content=payload,
                           headers={"stripe-signature": sign_stripe_payload(payload)})

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal error"}
    db = TestingSessionLocal()
    assert db.query(Order).count() == 0
    assert db.query(PendingPayment).filter_by(external_id="pi_codes_exhausted").one().status == "created"
    db.close()
