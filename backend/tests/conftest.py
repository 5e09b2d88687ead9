"""
Pytest fixtures for stockledger backend tests.

Provides the in-memory test database, users for each role, catalog
products, a fake payment gateway and login helpers.
"""

import pytest

from stockledger import create_app
from stockledger.config import GatewayConfig
from stockledger.errors import PaymentGatewayError
from stockledger.extensions import db
from stockledger.models import Product, User
from stockledger.models.auth import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_VIEWER
from stockledger.services.auth_service import hash_password
from stockledger.services.inventory_service import create_inventory
from stockledger.services.payment_service import PaymentCoordinator


TEST_PASSWORD = "Password123"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LOG_LEVEL': 'DEBUG',
    'MERCADO_PAGO_ACCESS_TOKEN': '',
    'MERCADO_PAGO_USER_ID': '',
    'MERCADO_PAGO_POS_ID': '',
    'WEBHOOK_SECRET': '',
}


class FakeGateway:
    """In-memory stand-in for MercadoPagoClient."""

    def __init__(self):
        self.orders = []
        self.payments = {}
        self.fail_with = None

    def create_qr_order(self, order):
        if self.fail_with:
            raise self.fail_with
        self.orders.append(order)
        return {
            "qr_data": f"00020101021243650016COM.MERCADOLIBRE-{order['external_reference']}-{len(self.orders)}",
            "in_store_order_id": f"order-{len(self.orders)}",
        }

    def get_payment(self, payment_id):
        if self.fail_with:
            raise self.fail_with
        if payment_id not in self.payments:
            raise PaymentGatewayError("Payment provider request failed", details={"gateway_status": 404})
        return self.payments[payment_id]

    def add_payment(self, payment_id, invoice_id, status="approved"):
        self.payments[str(payment_id)] = {
            "id": payment_id,
            "status": status,
            "external_reference": None if invoice_id is None else str(invoice_id),
        }


def gateway_config(**overrides) -> GatewayConfig:
    values = dict(
        api_url="https://gateway.test",
        access_token="test-token",
        user_id="123456",
        pos_id="POS001",
        webhook_secret="",
        qr_expiration_hours=24,
        timeout=5.0,
    )
    values.update(overrides)
    return GatewayConfig(**values)


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


@pytest.fixture(scope='function')
def gateway(app):
    """Swap the app's payment coordinator for one backed by FakeGateway."""
    fake = FakeGateway()
    previous = app.extensions["payment_coordinator"]
    app.extensions["payment_coordinator"] = PaymentCoordinator(fake, gateway_config())
    yield fake
    app.extensions["payment_coordinator"] = previous


def make_user(db_session, username: str, role: str) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        # Low bcrypt cost keeps the suite fast
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        full_name=username.title(),
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def employee_user(db_session):
    return make_user(db_session, "employee", ROLE_EMPLOYEE)


@pytest.fixture(scope='function')
def viewer_user(db_session):
    return make_user(db_session, "viewer", ROLE_VIEWER)


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(sku="SKU-001", name="Widget", price_cents=1250)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session):
    product = Product(sku="SKU-002", name="Gadget", price_cents=500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def inventory(db_session, product, admin_user):
    """Widget stock: quantity 10, min_stock 2."""
    return create_inventory(product_id=product.id, quantity=10, min_stock=2, actor_user_id=admin_user.id)


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def employee_headers(client, employee_user):
    return auth_headers(get_auth_token(client, employee_user.username))


@pytest.fixture(scope='function')
def viewer_headers(client, viewer_user):
    return auth_headers(get_auth_token(client, viewer_user.username))
