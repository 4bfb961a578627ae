import hashlib
import hmac
import time
import pytest
from fastapi.testclient import TestClient
from cadogy.api.dependencies import get_email_service, get_payment_gateway
from cadogy.core.config import Settings
from cadogy.core.security import create_session_token, get_password_hash
from cadogy.main import create_app
from cadogy.models.user import User
from cadogy.services.email_service import EmailService
from cadogy.services.payment_service import CheckoutSession, StripeGateway
from cadogy.utils.dates import utcnow

STATIC_API_KEY = "static-service-key"
WEBHOOK_SECRET = "whsec_test_secret"
PASSWORD = "Abcd1234"


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Stripe-Signature header value for `payload`, signed the way Stripe signs webhooks"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class RecordingSender:
    """Keeps sent emails in memory instead of delivering them"""

    def __init__(self):
        self.sent = []

    def send(self, to, subject, html):
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True


class FakeGateway(StripeGateway):
    """Checkout sessions are kept in a dict; webhook verification is the real one"""

    def __init__(self, webhook_secret):
        super().__init__("", webhook_secret)
        self.sessions = {}
        self.created = []

    def create_checkout_session(self, *, user_id, email, tokens, amount, price_id, success_url, cancel_url):
        session = CheckoutSession(
            id=f"cs_test_{len(self.created) + 1}",
            payment_status="unpaid",
            url="https://checkout.stripe.test/session",
            client_reference_id=str(user_id),
            metadata={"userId": str(user_id), "tokens": str(tokens)},
            amount_total=round(amount * 100),
            customer_email=email,
        )
        self.created.append(session)
        self.sessions[session.id] = session
        return session

    def retrieve_checkout_session(self, session_id):
        return self.sessions[session_id]


@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret-key",
        ENVIRONMENT="test",
        APP_URL="http://localhost:3000",
        TRUSTED_HOSTS="testserver,localhost",
        VALID_API_KEYS=STATIC_API_KEY,
        STRIPE_SECRET_KEY="sk_test",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        ENABLE_SCHEDULER=False,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def outbox():
    return RecordingSender()


@pytest.fixture
def gateway():
    return FakeGateway(WEBHOOK_SECRET)


@pytest.fixture
def app(test_settings, outbox, gateway):
    app = create_app(test_settings)
    email_service = EmailService(outbox, test_settings.APP_URL)
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    return app


@pytest.fixture
def client(app):
    # Entering the context runs the lifespan, which creates a fresh in-memory database
    with TestClient(app) as client:
        yield client


@pytest.fixture
def db(client):
    session = client.app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make_user(email="user@example.com", password=PASSWORD, verified=True, role="user", balance=0, name="Test User"):
        user = User(
            email=email,
            hashed_password=get_password_hash(password) if password else None,
            email_verified_at=utcnow() if verified else None,
            role=role,
            name=name,
            token_balance=balance,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def auth_headers(test_settings):
    """Bearer headers carrying a session token for `user`"""
    def _auth_headers(user, role=None):
        claims = {"sub": str(user.id), "role": role or user.role, "name": user.name, "email": user.email, "image": None}
        token, _ = create_session_token(claims, test_settings)
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers
