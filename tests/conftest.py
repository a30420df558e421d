"""
Shared fixtures: in-memory SQLite schema per test, a session, factories
for users/products/coupons, and an authenticated API client.
"""

import os
from datetime import timedelta
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402  (registers every model on Base)
from config.database import Base, engine, SessionLocal  # noqa: E402
from common.helpers import now_utc  # noqa: E402
from common.security import create_token  # noqa: E402
from modules.user.models import User, UserRole  # noqa: E402
from modules.catalog.models import Product  # noqa: E402
from modules.coupon.service import coupon_service  # noqa: E402


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ==========================================
# Factories
# ==========================================

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        crops = kwargs.pop("primary_crops", ["wheat", "rice"])
        user = User(
            name=kwargs.pop("name", f"Farmer {counter['n']}"),
            email=kwargs.pop("email", f"farmer{counter['n']}@example.com"),
            role=kwargs.pop("role", UserRole.FARMER.value),
            state=kwargs.pop("state", "Punjab"),
            district=kwargs.pop("district", "Ludhiana"),
            soil_type=kwargs.pop("soil_type", "alluvial"),
            farm_size=kwargs.pop("farm_size", Decimal("5")),
            **kwargs,
        )
        user.primary_crops = crops
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        crops = kwargs.pop("suitable_crops", ["wheat"])
        product = Product(
            name=kwargs.pop("name", f"Product {counter['n']}"),
            slug=kwargs.pop("slug", f"product-{counter['n']}"),
            category=kwargs.pop("category", "Seeds"),
            price=kwargs.pop("price", Decimal("850.00")),
            discount_price=kwargs.pop("discount_price", None),
            stock=kwargs.pop("stock", 100),
            unit=kwargs.pop("unit", "packet"),
            **kwargs,
        )
        product.suitable_crops = crops
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(**data):
        now = now_utc()
        payload = {
            "code": "WELCOME10",
            "name": "Welcome offer",
            "discount_type": "percentage",
            "value": Decimal("10"),
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=30),
        }
        payload.update(data)
        coupon = coupon_service.create_coupon(db, payload)
        db.commit()
        return coupon

    return _make


# ==========================================
# API client
# ==========================================

@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def auth_headers():
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_token({'sub': str(user.id)})}"}

    return _headers
