import hashlib
import hmac
import json
import os
import time
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_aecoin.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from aecoin_store import config, ledger
from aecoin_store.auth import get_current_user_id
from aecoin_store.database import Base
from aecoin_store.main import app as fastapi_app
from aecoin_store.models import Coupon, Package, PaymentProvider, User
from aecoin_store.pricing import evaluate
from aecoin_store.schemas import SnapshotLine

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_aecoin.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

WEBHOOK_SECRET = "whsec_test_secret"
USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def store_config(monkeypatch):
    monkeypatch.setattr(config, "APP_ENV", "test")
    monkeypatch.setattr(config, "STORE_CURRENCY", "MYR")
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(config, "PAYMENT_STATUS_FALLBACK", True)
    monkeypatch.setattr(config, "GAME_DATABASE_URL", "")
    monkeypatch.setattr(config, "SMTP_HOST", "")
    monkeypatch.setattr(config, "CODE_PREFIX", "AE")
    monkeypatch.setattr(config, "CODE_ENCODE_DENOMINATION", True)
    monkeypatch.setattr(config, "CODE_BONUS_AMOUNT", 0)
    monkeypatch.setattr(config, "CODE_BLOCKS", 3)
    monkeypatch.setattr(config, "CODE_BLOCK_LENGTH", 4)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def shop(db):
    """Two users, two packages and a 10% coupon."""
    db.add_all([
        User(id=USER_ID, username="player1", email="player1@example.com"),
        User(id=OTHER_USER_ID, username="player2", email="player2@example.com"),
        Package(id="pkg-1000", name="1000 AECOIN", price=Decimal("98.00"), aecoin_amount=1000),
        Package(id="pkg-5000", name="5000 AECOIN", price=Decimal("450.00"), aecoin_amount=5000),
        Coupon(code="SAVE10", discount_type="percentage", discount_value=Decimal("10"),
               current_uses=0, is_active=True),
    ])
    db.commit()
    return db


@pytest.fixture
def make_pending(shop):
    """Opens a ledger entry directly, as checkout would after minting the handle."""
    def _make(external_id="pi_test_1", lines=None, coupon_code=None,
              provider=PaymentProvider.STRIPE, user_id=USER_ID, currency="MYR"):
        lines = lines or [SnapshotLine(
            package_id="pkg-1000", package_name="1000 AECOIN", quantity=1,
            unit_price_at_checkout=Decimal("98.00"), currency_amount_per_unit=1000,
        )]
        coupon = shop.query(Coupon).filter_by(code=coupon_code).first() if coupon_code else None
        return ledger.open_pending_payment(
            shop,
            user_id=user_id,
            provider=provider,
            external_id=external_id,
            quote=evaluate(lines, coupon),
            currency=currency,
            cart_snapshot=lines,
        )
    return _make


def sign_stripe_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, intent_id: str, amount: int = 8820, currency: str = "myr") -> str:
    return json.dumps({
        "id": "evt_test",
        "type": event_type,
        "data": {"object": {"id": intent_id, "amount": amount, "amount_received": amount, "currency": currency}},
    })


@pytest.fixture
def client(monkeypatch):
    # Point every HTTP module at the test database
    monkeypatch.setattr("aecoin_store.routes.SessionLocal", TestingSessionLocal)
    monkeypatch.setattr("aecoin_store.main.SessionLocal", TestingSessionLocal)

    # Request-scoped identity without issuing real tokens
    fastapi_app.dependency_overrides[get_current_user_id] = lambda: USER_ID

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()
