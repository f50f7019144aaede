"""Pytest fixtures for storefront tests."""

import mongomock
import pytest
from argon2 import PasswordHasher
from fastapi.testclient import TestClient

import database
import security
from catalog import ProductCatalog
from config import Settings
from main import create_app
from payment import PaymentGateway, PaymentResult, validate_payment_request
from schemas import ProductCreate, ShippingAddress, SignupRequest
from security import AuthService


class ScriptedGateway(PaymentGateway):
    """Payment gateway that approves or declines according to a script.

    With an empty script every charge succeeds. ``on_charge`` runs before
    the result is produced, which lets a test change the store mid-checkout.
    """

    def __init__(self, outcomes=None, on_charge=None):
        self.outcomes = list(outcomes or [])
        self.on_charge = on_charge
        self.requests = []

    def charge(self, request):
        validate_payment_request(request)
        self.requests.append(request)
        if self.on_charge:
            self.on_charge(request)
        approved = self.outcomes.pop(0) if self.outcomes else True
        if approved:
            return PaymentResult(success=True, transaction_id="TXN-TEST-0001", amount=request.amount,
                                 status="completed", timestamp="2024-01-01T00:00:00",
                                 message="Payment processed successfully")
        return PaymentResult(success=False, transaction_id="TXN-TEST-0002", amount=request.amount,
                             status="failed", timestamp="2024-01-01T00:00:00",
                             message="Card declined", error_code="ERR-042")


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    monkeypatch.setattr(security, "password_hasher", PasswordHasher(time_cost=1, memory_cost=8, parallelism=1))


@pytest.fixture
def db():
    handle = mongomock.MongoClient()["storefront_test"]
    database.ensure_indexes(handle)
    return handle


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def make_gateway():
    return ScriptedGateway


@pytest.fixture
def settings():
    return Settings(payment_min_delay=0, payment_max_delay=0, allow_admin_signup=True)


@pytest.fixture
def app(db, gateway, settings):
    return create_app(settings=settings, db=db, payment_gateway=gateway)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    """Create a user and return (user document, bearer headers)."""
    auth = AuthService(db, allow_admin_signup=True)
    counter = {"n": 0}

    def _make(role="customer", email=None):
        counter["n"] += 1
        user = auth.signup(SignupRequest(
            first_name="Test",
            last_name=f"User{counter['n']}",
            email=email or f"user{counter['n']}@example.com",
            password="secret123",
            role=role,
        ))
        token = auth.issue_token(user)
        return user, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin")


@pytest.fixture
def catalog(db):
    return ProductCatalog(db)


@pytest.fixture
def make_product(catalog, admin):
    def _make(owner=None, **overrides):
        fields = {
            "name": "Laptop Pro",
            "description": "A fast laptop for serious work",
            "price": 999.99,
            "category": "electronics",
            "stock": 10,
        }
        fields.update(overrides)
        return catalog.create(ProductCreate(**fields), owner or admin[0])

    return _make


@pytest.fixture
def address():
    return ShippingAddress(
        first_name="Ada",
        last_name="Lovelace",
        street="12 Analytical Way",
        city="London",
        state="LDN",
        zip_code="12345",
    )


@pytest.fixture
def checkout_body():
    return {
        "shippingAddress": {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "street": "12 Analytical Way",
            "city": "London",
            "state": "LDN",
            "zipCode": "12345",
        },
        "paymentMethod": "credit_card",
    }
