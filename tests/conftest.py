import os

# Settings are read at import time, so the environment must be in place first.
os.environ.update({
    "DATABASE_HOSTNAME": "localhost",
    "DATABASE_NAME": "otp_test",
    "DATABASE_USERNAME": "otp",
    "DATABASE_PASSWORD": "otp",
    "JWT_SECRET": "test-jwt-secret-0123456789-abcdefghijklmnop",
    "MAIL_FROM": "store@cartlyfy.com",
    "MAIL_PASSWORD": "re_test_key",
    "MAIL_SUPPRESS_SEND": "true",
    "OTP_PEPPER": "test-pepper",
    "ADMIN_OTP_EMAIL": "Admin@Cartlyfy.com",
    "APP_NAME": "cartlyfy",
    "RATE_LIMIT_ENABLED": "false",
})

import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient

from app.config import get_settings
from app.database import Base, get_db
from app.main import app
from app.models import Order
from app.services import otp_service
from app.services.email_service import get_fast_mail

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_settings, None)


@pytest.fixture
def outbox(settings):
    with get_fast_mail(settings).record_messages() as messages:
        yield messages


@pytest.fixture
def issued_codes(monkeypatch):
    """Makes generate_otp hand out the given codes in order."""
    def _use(*codes):
        remaining = iter(codes)
        monkeypatch.setattr(otp_service, "generate_otp", lambda length=6: next(remaining))
    return _use


@pytest.fixture
def make_token(settings):
    def _make(sub, role="authenticated", expires_in=timedelta(minutes=30), secret=None, audience=None):
        now = datetime.now(timezone.utc)
        payload = {
            "sub": sub,
            "role": role,
            "aud": audience or settings.jwt_audience,
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(payload, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return _make


@pytest.fixture
def make_order(db_session):
    def _make(user_id, status="delivered", return_status=None, customer_email="Buyer@Shop.io", reference="CF-1001"):
        order = Order(
            id=uuid.uuid4(),
            order_id=reference,
            user_id=uuid.UUID(user_id),
            status=status,
            customer_email=customer_email,
            return_status=return_status,
            created_at=datetime.now(timezone.utc),
        )
        db_session.add(order)
        db_session.commit()
        return order.id
    return _make
