import importlib.util
import os
import sys
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import ModuleType, SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

# Create a test engine BEFORE any app imports
_test_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Create a mock for the app.db module that uses our test engine
class TestBase(DeclarativeBase):
    pass


_TestSessionLocal = sessionmaker(bind=_test_engine, autoflush=False, autocommit=False)


class TimestampMixin:
    """Mixin that adds created_at / updated_at columns to any model."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


mock_db_module = ModuleType("app.db")
mock_db_module.Base = TestBase
mock_db_module.TimestampMixin = TimestampMixin
mock_db_module.SessionLocal = _TestSessionLocal
mock_db_module.get_engine = lambda: _test_engine

# Also mock app.config to prevent .env loading
mock_config_module = ModuleType("app.config")

WEBHOOK_AUTH = "test-webhook-credential"


class MockSettings:
    database_url = "sqlite+pysqlite:///:memory:"
    redis_url = "redis://localhost:6379/0"
    db_pool_size = 5
    db_max_overflow = 10
    db_pool_timeout = 30
    db_pool_recycle = 1800
    jwt_secret = "test-secret"
    jwt_algorithm = "HS256"
    paylink_base_url = "https://restpilot.paylink.sa"
    paylink_api_id = "APP_ID_TEST"
    paylink_secret = "paylink-test-secret"
    paylink_webhook_auth = WEBHOOK_AUTH
    paylink_timeout_seconds = 5.0
    paylink_token_margin_seconds = 60
    paylink_default_token_ttl_seconds = 1800
    app_url = "https://market.example.com"
    payment_currency = "SAR"
    invoice_draft_ttl_hours = 24
    payments_simulation_enabled = False
    price_contacts_access = "190"
    contacts_access_days = 365
    price_listing_player = "140"
    price_listing_coach = "190"
    listing_days = 365
    price_promotion_player_per_day = "7"
    price_promotion_coach_per_day = "9"
    price_promotion_player_year = "1500"
    price_promotion_coach_year = "1800"
    promotion_default_days = 15
    reconcile_batch_limit = 50
    reconcile_interval_seconds = 900
    cors_origins = ""


mock_config_module.settings = MockSettings()
mock_config_module.Settings = MockSettings
mock_config_module.validate_settings = lambda s: []

# Insert mocks before any app imports
sys.modules["app.config"] = mock_config_module
sys.modules["app.db"] = mock_db_module


def _load_real_db():
    """Execute app/db.py against the test engine so its helpers run for real."""
    spec = importlib.util.spec_from_file_location(
        "real_app_db", Path(__file__).resolve().parents[1] / "app" / "db.py"
    )
    module = importlib.util.module_from_spec(spec)
    with patch("sqlalchemy.create_engine", return_value=_test_engine):
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    return module


real_db_module = _load_real_db()
mock_db_module.run_atomic = real_db_module.run_atomic

os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"

# Now import the models - they'll use our mocked db module
from app.errors import GatewayError  # noqa: E402
from app.models.billing import Entitlement, Invoice, PaymentEvent  # noqa: E402, F401
from app.models.user import Profile, User  # noqa: E402
from app.services.payment_gateway import (  # noqa: E402
    InvoiceStatusSnapshot,
    ProviderStatus,
    RemoteInvoice,
)

# Create all tables
TestBase.metadata.create_all(_test_engine)

Base = TestBase


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture()
def db_session(engine):
    """Session on the shared StaticPool connection; tables are emptied afterwards."""
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = Session()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(TestBase.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    def _make_user(**overrides) -> User:
        user = User(
            name=overrides.pop("name", "Test User"),
            email=overrides.pop("email", _unique_email()),
            phone=overrides.pop("phone", "0551234567"),
            **overrides,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def user(make_user) -> User:
    return make_user()


@pytest.fixture()
def other_user(make_user) -> User:
    return make_user(name="Other User")


@pytest.fixture()
def make_profile(db_session) -> Callable[..., Profile]:
    def _make_profile(owner: User, job: str = "player", **overrides) -> Profile:
        profile = Profile(user_id=owner.id, name=f"{job} card", job=job, **overrides)
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(profile)
        return profile

    return _make_profile


@pytest.fixture()
def player_profile(make_profile, user) -> Profile:
    return make_profile(user, "player")


@pytest.fixture()
def coach_profile(make_profile, user) -> Profile:
    return make_profile(user, "coach")


# ============ Gateway doubles ============


def paid_snapshot(
    transaction_no: str | None = None, order_number: str | None = None, receipt_url=None
) -> InvoiceStatusSnapshot:
    return InvoiceStatusSnapshot(
        status=ProviderStatus.paid,
        raw_status="Paid",
        transaction_no=transaction_no,
        order_number=order_number,
        receipt_url=receipt_url,
    )


def unpaid_snapshot(
    transaction_no: str | None = None,
    order_number: str | None = None,
    errors: list[dict] | None = None,
    raw_status: str = "Pending",
) -> InvoiceStatusSnapshot:
    return InvoiceStatusSnapshot(
        status=ProviderStatus.not_paid,
        raw_status=raw_status,
        payment_errors=errors or [],
        transaction_no=transaction_no,
        order_number=order_number,
    )


class FakeGateway:
    """In-memory stand-in for PaylinkGateway keyed by transaction or order number."""

    provider = "paylink"

    def __init__(self) -> None:
        self.statuses: dict[str, InvoiceStatusSnapshot | Exception] = {}
        self.lookups: list[str] = []
        self.created: list[dict] = []
        self.create_error: Exception | None = None
        self.next_provider_id: str | None = None

    def is_configured(self) -> bool:
        return True

    def _lookup(self, key: str) -> InvoiceStatusSnapshot:
        self.lookups.append(key)
        value = self.statuses.get(key)
        if value is None:
            raise GatewayError(f"No status for {key}")
        if isinstance(value, Exception):
            raise value
        return value

    def create_remote_invoice(
        self,
        order_number,
        amount,
        currency,
        customer,
        callback_url,
        cancel_url,
        line_items,
        note=None,
    ) -> RemoteInvoice:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(
            {
                "order_number": order_number,
                "amount": amount,
                "currency": currency,
                "customer": customer,
                "callback_url": callback_url,
                "cancel_url": cancel_url,
                "line_items": line_items,
                "note": note,
            }
        )
        provider_id = self.next_provider_id or f"TXN-{order_number}"
        return RemoteInvoice(
            pay_url=f"https://pay.example.com/{provider_id}", provider_invoice_id=provider_id
        )

    def get_invoice_status(self, provider_invoice_id: str) -> InvoiceStatusSnapshot:
        return self._lookup(provider_invoice_id)

    def get_order_status_by_order_number(self, order_number: str) -> InvoiceStatusSnapshot:
        return self._lookup(order_number)


@pytest.fixture()
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def snapshots() -> SimpleNamespace:
    return SimpleNamespace(paid=paid_snapshot, unpaid=unpaid_snapshot)


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def client(db_session, fake_gateway):
    """Create a test client with database and gateway overrides."""
    from app.api.deps import get_db as api_get_db
    from app.main import app
    from app.services.auth_dependencies import _get_db as auth_deps_get_db

    def override_get_db():
        yield db_session

    app.dependency_overrides[api_get_db] = override_get_db
    app.dependency_overrides[auth_deps_get_db] = override_get_db
    app.state.payment_gateway = fake_gateway

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    app.state.payment_gateway = None


def _create_access_token(user_id: str, roles: list[str] | None = None) -> str:
    """Create a JWT access token for testing."""
    secret = os.getenv("JWT_SECRET", "test-secret")
    algorithm = os.getenv("JWT_ALGORITHM", "HS256")
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "roles": roles or [],
        "exp": int((now + timedelta(minutes=15)).timestamp()),
        "iat": int(now.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


@pytest.fixture()
def auth_headers(user):
    return {"Authorization": f"Bearer {_create_access_token(str(user.id))}"}


@pytest.fixture()
def other_headers(other_user):
    return {"Authorization": f"Bearer {_create_access_token(str(other_user.id))}"}


@pytest.fixture()
def admin_user(make_user) -> User:
    return make_user(name="Admin User")


@pytest.fixture()
def admin_headers(admin_user):
    token = _create_access_token(str(admin_user.id), roles=["admin"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def webhook_headers():
    return {"Authorization": WEBHOOK_AUTH}
