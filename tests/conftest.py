"""
Pytest fixtures for storefront backend tests.

Provides test database setup, users, products and an authenticated test client.
"""

import sys
from pathlib import Path

import pytest

# Add backend to path for imports
REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))

from storefront import create_app  # noqa: E402
from storefront.extensions import db  # noqa: E402
from storefront.models import Product, User  # noqa: E402
from storefront.services.auth_service import hash_password  # noqa: E402


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_ROUNDS': 4,
    'SHIPPING_FEE': 3000,
    'LOGIN_MAX_FAILED_ATTEMPTS': 5,
    'LOGIN_LOCKOUT_MINUTES': 120,
    'IAMPORT_API_KEY': None,
    'IAMPORT_API_SECRET': None,
    'PAYMENT_FALLBACK_MODE': 'client-reported',
}

PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_user(db_session, email, *, name="Test User", phone="010-1234-5678", role="customer", password=PASSWORD):
    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name,
        phone=phone,
        role=role,
        is_active=True,
        login_attempts=0,
    )
    db_session.add(user)
    db_session.commit()
    return user


def make_product(db_session, sku, *, name=None, price=10000, stock=5, discount=0, sales_count=0):
    product = Product(
        sku=sku,
        name=name or f"Product {sku}",
        price=price,
        stock=stock,
        sales_count=sales_count,
        discount_enabled=discount > 0,
        discount_rate=discount,
        is_active=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer(db_session):
    return make_user(db_session, "kim@example.com", name="Kim Minji", phone="010-1111-2222")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return make_user(db_session, "lee@example.com", name="Lee Jun", phone="010-3333-4444")


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user(db_session, "admin@example.com", name="Admin", role="admin")


@pytest.fixture(scope='function')
def product(db_session):
    """Plain product: price 10000, stock 5."""
    return make_product(db_session, "SKU-001", name="Linen Shirt")


@pytest.fixture(scope='function')
def discounted_product(db_session):
    """20000 at 10% off -> 18000, stock 10."""
    return make_product(db_session, "SKU-002", name="Wool Coat", price=20000, stock=10, discount=10)


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/users/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(client, customer):
    return auth_headers(get_auth_token(client, customer.email))


@pytest.fixture(scope='function')
def other_customer_headers(client, other_customer):
    return auth_headers(get_auth_token(client, other_customer.email))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.email))


def shipping_payload(**overrides):
    shipping = {
        "recipientName": "Kim Minji",
        "recipientPhone": "010-1111-2222",
        "postalCode": "06236",
        "address1": "123 Teheran-ro, Gangnam-gu",
        "address2": "Apt 1201",
        "city": "Seoul",
        "deliveryRequest": "Leave at the door",
    }
    shipping.update(overrides)
    return shipping


def payment_payload(transaction_id="imp_0001", amount=None, status="completed", method="card"):
    payment = {
        "method": method,
        "status": status,
        "transactionId": transaction_id,
        "paidAt": "2025-03-01T10:00:00Z",
    }
    if amount is not None:
        payment["amount"] = amount
    return payment


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database, for tests that use several connections."""
    config = dict(TEST_CONFIG)
    config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{tmp_path / 'storefront-test.sqlite3'}"
    config["SQLALCHEMY_ENGINE_OPTIONS"] = {"connect_args": {"timeout": 30}}
    app = create_app(config)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
