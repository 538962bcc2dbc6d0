"""
Pytest fixtures for posledger backend tests.

Provides test database setup, two-tenant fixtures, and test client.
Products are created through product_service so their opening stock is a
ledger IN movement, never a bare current_stock assignment.
"""

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models import Customer, Organization, PaymentMethod, Store, User
from posledger.services import product_service
from posledger.services.tenant_service import TenantContext


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_WRITE_RETRY_BACKOFF': 0.01,
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


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    """Create Store A in Organization A."""
    store = Store(org_id=org_a.id, name="Store A1", code="A1", sale_number_prefix="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, org_b):
    """Create Store B in Organization B."""
    store = Store(org_id=org_b.id, name="Store B1", code="B1", sale_number_prefix="B1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def user_a(db_session, org_a, store_a):
    """Create User A in Organization A."""
    user = User(
        org_id=org_a.id,
        store_id=store_a.id,
        username="user_a",
        email="user_a@acme.com",
        role="ADMIN",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_b(db_session, org_b, store_b):
    """Create User B in Organization B."""
    user = User(
        org_id=org_b.id,
        store_id=store_b.id,
        username="user_b",
        email="user_b@beta.com",
        role="ADMIN",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def seller_a(db_session, org_a, store_a):
    """Create a SELLER in Organization A (no reversal or cancel rights)."""
    user = User(
        org_id=org_a.id,
        store_id=store_a.id,
        username="seller_a",
        email="seller_a@acme.com",
        role="SELLER",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def ctx_a(org_a, user_a):
    return TenantContext(org_id=org_a.id, user_id=user_a.id)


@pytest.fixture(scope='function')
def ctx_b(org_b, user_b):
    return TenantContext(org_id=org_b.id, user_id=user_b.id)


@pytest.fixture(scope='function')
def seller_ctx_a(org_a, seller_a):
    return TenantContext(org_id=org_a.id, user_id=seller_a.id)


@pytest.fixture(scope='function')
def product_a(ctx_a, store_a):
    """Product in Org A with 10 units of opening stock."""
    return product_service.create_product(
        ctx_a,
        name="Product A",
        sku="PROD-A-001",
        sale_price_cents=1000,
        cost_price_cents=600,
        min_stock=2,
        initial_stock=10,
        store_id=store_a.id,
    )


@pytest.fixture(scope='function')
def product_b(ctx_b, store_b):
    """Product in Org B with 10 units of opening stock."""
    return product_service.create_product(
        ctx_b,
        name="Product B",
        sku="PROD-B-001",
        sale_price_cents=2000,
        initial_stock=10,
        store_id=store_b.id,
    )


@pytest.fixture(scope='function')
def cash_a(db_session, org_a):
    method = PaymentMethod(org_id=org_a.id, name="Cash", type="CASH")
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def cash_b(db_session, org_b):
    method = PaymentMethod(org_id=org_b.id, name="Cash", type="CASH")
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def customer_a(db_session, org_a):
    customer = Customer(org_id=org_a.id, first_name="Ada", last_name="Lovelace", email="ada@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


def auth_headers(user) -> dict:
    """Gateway headers identifying a user and their tenant."""
    return {'X-Org-Id': str(user.org_id), 'X-User-Id': str(user.id)}


@pytest.fixture(scope='function')
def headers_a(user_a):
    return auth_headers(user_a)


@pytest.fixture(scope='function')
def headers_b(user_b):
    return auth_headers(user_b)


@pytest.fixture(scope='function')
def seller_headers_a(seller_a):
    return auth_headers(seller_a)
