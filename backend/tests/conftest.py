"""
Pytest fixtures for pasal backend tests.

Provides the app on a temporary SQLite file (analytics worker threads need a
shared database), per-test table truncation, users, tokens and catalog rows.
"""

import pytest

from pasal import create_app
from pasal.extensions import db
from pasal.models.auth import ROLE_ADMIN, ROLE_USER
from pasal.services import address_service, catalog_service
from pasal.services.auth_service import create_user


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "pasal-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SHIPPING_FEE_PAISA': 10_000,
        'PAYMENT_VERIFY_WITH_GATEWAY': False,
        'PAYMENT_HTTP_TRANSPORT': None,
        'KHALTI_SECRET_KEY': 'test-khalti-key',
        'REVIEW_MODERATION': False,
        'OAUTH_BRIDGE_SECRET': None,
    })

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


@pytest.fixture
def app_config(app):
    """Temporarily override app config values; restored after the test."""
    saved = {}

    def _set(**values):
        for key, value in values.items():
            saved.setdefault(key, app.config.get(key))
            app.config[key] = value

    yield _set
    app.config.update(saved)


# =============================================================================
# USERS AND TOKENS
# =============================================================================

@pytest.fixture(scope='function')
def shopper(db_session):
    return create_user(name="Sita Sharma", email="sita@example.com", password=PASSWORD, role=ROLE_USER)


@pytest.fixture(scope='function')
def other_shopper(db_session):
    return create_user(name="Hari Thapa", email="hari@example.com", password=PASSWORD, role=ROLE_USER)


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user(name="Store Admin", email="admin@example.com", password=PASSWORD, role=ROLE_ADMIN)


@pytest.fixture
def shopper_headers(client, shopper):
    return auth_headers(get_auth_token(client, shopper.email, PASSWORD))


@pytest.fixture
def other_headers(client, other_shopper):
    return auth_headers(get_auth_token(client, other_shopper.email, PASSWORD))


@pytest.fixture
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.email, PASSWORD))


# =============================================================================
# CATALOG AND ADDRESSES
# =============================================================================

@pytest.fixture(scope='function')
def category(db_session):
    return catalog_service.create_category({"name": "Fashion"})


@pytest.fixture(scope='function')
def brand(db_session):
    return catalog_service.create_brand({"name": "Kathmandu Crafts"})


@pytest.fixture(scope='function')
def product(db_session, category, brand):
    """Rs. 1,000 shawl, 20 in stock."""
    return catalog_service.create_product({
        "name": "Pashmina Shawl",
        "price_paisa": 100_000,
        "stock": 20,
        "category_id": category.id,
        "brand_id": brand.id,
        "images": ["https://cdn.example.com/shawl.jpg"],
    })


@pytest.fixture(scope='function')
def product_b(db_session):
    """Rs. 500 uncategorized item, 5 in stock."""
    return catalog_service.create_product({"name": "Dhaka Topi", "price_paisa": 50_000, "stock": 5})


@pytest.fixture(scope='function')
def address(db_session, shopper):
    return address_service.add_address(shopper.id, address_payload())


def address_payload(**overrides) -> dict:
    data = {
        "full_name": "Sita Sharma",
        "phone": "9841234567",
        "address": "Thamel Marg 12",
        "locality": "Thamel",
        "district": "Kathmandu",
        "province": "Bagmati",
        "postal_code": "44600",
        "address_type": "home",
    }
    data.update(overrides)
    return data


def cart_item(product, quantity: int = 1, price_paisa: int | None = None) -> dict:
    return {
        "product_id": product.id,
        "name": product.name,
        "price_paisa": price_paisa if price_paisa is not None else product.price_paisa,
        "quantity": quantity,
    }


def get_auth_token(client, email: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
