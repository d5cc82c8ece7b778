"""
Integration tests for POST /subscriptions/verify-payment.
"""
import hashlib
import hmac
import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core import config
from app.db.base import Base
from app.db.models import (
    PaymentStatus,
    SubscriptionEvent,
    SubscriptionPlan,
    SubscriptionStatus,
    User,
    UserSubscription,
)
from app.db.models.subscription_plan import SubscriptionCategory
from app.db.session import get_db
from app.services import payment_verification_service
from app.services.payment_verification_service import compute_period_end


KEY_SECRET = "rzp_test_key_secret"
SUBSCRIPTION_ID = "sub_VerifyTest01"
PAYMENT_ID = "pay_VerifyTest01"

# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def sign(message, secret):
    """Hex HMAC-SHA256, the way Razorpay signs callbacks and webhook bodies."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def override_get_db():
    """Override get_db dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db, monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", KEY_SECRET)
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def plan(db):
    plan = SubscriptionPlan(
        name="Mindset Quarterly",
        category=SubscriptionCategory.PSYCHOLOGY,
        price=2499,
        billing_cycle=3,
        billing_period="quarterly",
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


@pytest.fixture
def subscription(db, plan):
    user = User(full_name="Test Client", email="client@example.com")
    db.add(user)
    db.commit()

    sub = UserSubscription(
        user_id=user.id,
        plan_id=plan.id,
        razorpay_subscription_id=SUBSCRIPTION_ID,
        status=SubscriptionStatus.AUTHENTICATED,
        payment_status=PaymentStatus.PENDING,
        paid_count=0,
        remaining_count=12,
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub


def signed_body(payment_id=PAYMENT_ID, subscription_id=SUBSCRIPTION_ID, secret=KEY_SECRET):
    return {
        "razorpay_subscription_id": subscription_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": sign(f"{payment_id}|{subscription_id}", secret),
    }


def test_verify_payment_activates_subscription(client, db, subscription):
    """Test a valid signature activates the subscription and opens a billing period."""
    response = client.post("/subscriptions/verify-payment", json=signed_body())

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["subscription"] == {
        "id": subscription.id,
        "status": "ACTIVE",
        "payment_status": "COMPLETED",
    }

    db.expire_all()
    sub = db.get(UserSubscription, subscription.id)
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.payment_status == PaymentStatus.COMPLETED
    assert sub.paid_count == 1
    assert sub.remaining_count == 11
    assert sub.current_start is not None
    # 3-month plan
    assert 89 <= (sub.current_end - sub.current_start).days <= 92

    event = db.query(SubscriptionEvent).filter(SubscriptionEvent.event_type == "payment.verified").one()
    assert event.subscription_id == subscription.id
    assert event.payment_id == PAYMENT_ID
    assert event.event_metadata["verification_method"] == "frontend_callback"


def test_verify_payment_when_already_active_keeps_status(client, db, subscription):
    """Test verification after a webhook already activated the subscription is a partial write."""
    subscription.status = SubscriptionStatus.ACTIVE
    db.commit()

    response = client.post("/subscriptions/verify-payment", json=signed_body())

    assert response.status_code == 200
    assert response.json()["subscription"]["status"] == "ACTIVE"
    assert response.json()["subscription"]["payment_status"] == "COMPLETED"


def test_verify_payment_rejects_bad_signature(client, db, subscription):
    """Test a forged signature is rejected without touching the database."""
    body = signed_body(secret="not-the-secret")

    response = client.post("/subscriptions/verify-payment", json=body)

    assert response.status_code == 400
    assert response.json()["error_type"] == "SIGNATURE_VERIFICATION_FAILED"

    db.expire_all()
    sub = db.get(UserSubscription, subscription.id)
    assert sub.status == SubscriptionStatus.AUTHENTICATED
    assert sub.payment_status == PaymentStatus.PENDING
    assert sub.paid_count == 0
    assert db.query(SubscriptionEvent).count() == 0


def test_verify_payment_rejects_swapped_signature_order(client, subscription):
    """Test the signature must cover payment_id|subscription_id in that order."""
    body = signed_body()
    body["razorpay_signature"] = sign(f"{SUBSCRIPTION_ID}|{PAYMENT_ID}", KEY_SECRET)

    response = client.post("/subscriptions/verify-payment", json=body)

    assert response.status_code == 400
    assert response.json()["error_type"] == "SIGNATURE_VERIFICATION_FAILED"


def test_verify_payment_missing_fields(client):
    response = client.post("/subscriptions/verify-payment", json={"razorpay_payment_id": PAYMENT_ID})

    assert response.status_code == 400
    body = response.json()
    assert body["error_type"] == "MISSING_PARAMETERS"
    assert body["missing_fields"] == ["razorpay_subscription_id", "razorpay_signature"]


def test_verify_payment_unknown_subscription(client, db):
    response = client.post("/subscriptions/verify-payment", json=signed_body(subscription_id="sub_Unknown"))

    assert response.status_code == 404
    assert response.json()["error_type"] == "SUBSCRIPTION_NOT_FOUND"


def test_verify_payment_without_secret(client, subscription, monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", None)

    response = client.post("/subscriptions/verify-payment", json=signed_body())

    assert response.status_code == 500
    assert response.json()["error_type"] == "CONFIGURATION_ERROR"


def test_verify_payment_race_returns_current_state(client, db, subscription, monkeypatch):
    """Test a write conflict falls back to the persisted row instead of failing."""
    def locked(*args, **kwargs):
        raise OperationalError("UPDATE user_subscriptions", {}, Exception("database is locked"))

    monkeypatch.setattr(payment_verification_service, "safe_update_subscription_status", locked)

    response = client.post("/subscriptions/verify-payment", json=signed_body())

    assert response.status_code == 200
    assert response.json()["subscription"]["status"] == "AUTHENTICATED"


def test_compute_period_end(db, plan):
    start = datetime(2026, 11, 30, 10, 0, tzinfo=timezone.utc)

    # 3 months from Nov 30 clamps to Feb 28
    assert compute_period_end(db, plan.id, start) == datetime(2027, 2, 28, 10, 0, tzinfo=timezone.utc)


def test_compute_period_end_without_plan(db):
    start = datetime(2026, 1, 15, tzinfo=timezone.utc)
    assert compute_period_end(db, 404, start) == start


def test_compute_period_end_non_positive_cycle(db, plan):
    plan.billing_cycle = 0
    db.commit()

    start = datetime(2026, 1, 15, tzinfo=timezone.utc)
    assert compute_period_end(db, plan.id, start) == start
