"""
Tests for the /health endpoint.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core import config
from app.db.base import Base
from app.db.models import WebhookEvent
from app.db.session import get_db


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


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
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", "key_secret")
    monkeypatch.setattr(config, "RAZORPAY_WEBHOOK_SECRET", "webhook_secret")
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


def test_health_reports_failed_webhook_backlog(client, db):
    db.add_all([
        WebhookEvent(webhook_id="evt_1", event_type="subscription.charged", status="failed"),
        WebhookEvent(webhook_id="evt_2", event_type="subscription.charged", status="success"),
    ])
    db.commit()

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["razorpay_configured"] is True
    assert body["failed_webhooks"] == 1


def test_health_degraded_without_razorpay_secrets(client, monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_WEBHOOK_SECRET", None)

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["razorpay_configured"] is False
    assert body["database"] == "connected"
