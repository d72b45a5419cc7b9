# Pytest configuration for booking API tests.
# Forces a local SQLite DB, disables Redis and the background sweepers, and wires a JWT secret.
import os
from decimal import Decimal
from typing import Iterator, Tuple

import pytest
from fastapi.testclient import TestClient

# Test-time environment: local SQLite DB, Redis disabled, no sweeper threads, predictable JWT secret
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SWEEP_ENABLED", "false")
os.environ.setdefault("FARMSTAY_JWT_SECRET", "test-secret")

import sys
# Ensure the repo root is on sys.path so 'farmstay' resolves when running pytest from anywhere
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from farmstay.main import app  # noqa: E402
from farmstay.db import Base, SessionLocal, engine  # noqa: E402
from farmstay import models  # noqa: E402
from farmstay.routes.auth import create_access_token  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_db() -> Iterator[None]:
    """
    Session-level database bootstrap using a local SQLite file.

    Drops and recreates schema once per test session to ensure a clean slate.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_db() -> Iterator[None]:
    """Function-level isolation: drop and recreate schema before each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """FastAPI TestClient bound to the application for HTTP-level tests."""
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _make_user(role: str, name: str, email: str, mobile_no: str) -> Tuple[str, int]:
    with SessionLocal() as session:
        user = models.User(
            name=name,
            email=email,
            mobile_no=mobile_no,
            role=role,
            login_type="email",
            booking_history=[],
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return create_access_token(user=user), user.id


@pytest.fixture()
def admin() -> Tuple[str, int]:
    """(access_token, user_id) of an admin account."""
    return _make_user("admin", "Admin", "admin@example.com", "9000000001")


@pytest.fixture()
def customer() -> Tuple[str, int]:
    """(access_token, user_id) of a registered customer."""
    return _make_user("customer", "Asha", "asha@example.com", "9000000002")


def seed_farmhouse(
    slug: str = "green-acres",
    check_in_from: str = "10:00",
    check_out_to: str = "22:00",
    max_persons: int = 20,
    prices: dict | None = None,
) -> int:
    """Insert an active farmhouse with price options; returns its id."""
    prices = prices or {
        "REGULAR_12HR": ("2000", 10),
        "REGULAR_24HR": ("3500", 15),
        "WEEKEND_12HR": ("5000", 10),
        "WEEKEND_24HR": ("9000", 20),
    }
    with SessionLocal() as session:
        farmhouse = models.Farmhouse(
            name=slug.replace("-", " ").title(),
            slug=slug,
            farm_no=f"F-{slug[:3].upper()}",
            max_persons=max_persons,
            check_in_from=check_in_from,
            check_out_to=check_out_to,
            status=True,
            price_options=[
                models.PriceOption(category=category, price=Decimal(price), max_people=cap)
                for category, (price, cap) in prices.items()
            ],
        )
        session.add(farmhouse)
        session.commit()
        return farmhouse.id


@pytest.fixture()
def farmhouse() -> int:
    """Farmhouse with check-in 10:00, check-out 22:00 and a REGULAR_12HR price of 2000."""
    return seed_farmhouse()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
