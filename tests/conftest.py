"""
Shared test fixtures.

Sets up an isolated SQLite database so tests never touch
the real database. Tables are created before and dropped
after every test.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from payment_reconciliation.config import get_settings
from payment_reconciliation.main import app
from payment_reconciliation.models.base import Base, get_db
from payment_reconciliation.models.user import User
from payment_reconciliation.models.enums import UserRole
from payment_reconciliation.security import create_access_token


# SQLite keeps CI free of database infrastructure
TEST_DATABASE_URL = "sqlite:///./test.db"

WEBHOOK_SECRET = "test-webhook-secret"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


def _insert_user(db_session, email="student@test.com", role=UserRole.STUDENT,
                 balance=0, is_active=True):
    user = User(
        email=email,
        name=email.split("@")[0].title(),
        role=role,
        balance=balance,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    return user


def _bearer(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def _casso_payload(description, amount, reference="FT25001234567",
                   counter_account_name="NGUYEN VAN A", error=0):
    return {
        "error": error,
        "data": {
            "id": 123456,
            "reference": reference,
            "description": description,
            "amount": amount,
            "runningBalance": 25000000,
            "transactionDateTime": "2025-03-01 10:15:00",
            "accountNumber": "CASS55252503",
            "bankName": "OCB",
            "bankAbbreviation": "OCB",
            "counterAccountName": counter_account_name,
            "counterAccountNumber": "0123456789",
            "counterAccountBankId": "970422",
            "counterAccountBankName": "MB Bank",
        },
    }


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop them after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch):
    """
    Pin the provider secret for every test.

    Settings are cached process-wide, so the attribute is patched
    on the shared instance and restored afterwards.
    """
    monkeypatch.setattr(get_settings(), "CASSO_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def other_session():
    """A second, independent session, standing in for a concurrent request."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db_session):
    """Provide a test client bound to the test session."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def student(db_session):
    return _insert_user(db_session)


@pytest.fixture
def admin(db_session):
    return _insert_user(db_session, email="admin@test.com", role=UserRole.ADMIN)


@pytest.fixture
def student_headers(student):
    return _bearer(student)


@pytest.fixture
def admin_headers(admin):
    return _bearer(admin)


@pytest.fixture
def make_user(db_session):
    """Factory: insert and commit a user."""
    def _make(**kwargs):
        return _insert_user(db_session, **kwargs)
    return _make


@pytest.fixture
def casso_payload():
    """Factory: a Casso V2 webhook body."""
    return _casso_payload


@pytest.fixture
def auth_headers():
    """Factory: Authorization header for any user."""
    return _bearer
