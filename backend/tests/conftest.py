"""
Pytest fixtures for boutique backend tests.

Provides test database setup, product/stock fixtures, identity headers and
the test client.
"""

import pytest
from boutique import create_app
from boutique.extensions import db
from boutique.models import Product, StockLevel
from boutique.services import stock_ledger


PRIVILEGED_EMAIL = "owner@boutique.test"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PRIVILEGED_EMAILS': PRIVILEGED_EMAIL,
        'STOCK_RETRY_BACKOFF': 0,
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


def make_product(session, name="Linen Shirt", price_cents=4500, **kwargs):
    product = Product(name=name, price_cents=price_cents, **kwargs)
    session.add(product)
    session.commit()
    return product


def add_stock(session, product_id, quantity, size=None, color=None, reserved=0):
    row = StockLevel(
        product_id=product_id,
        size=size,
        color=color,
        stock_quantity=quantity,
        reserved_quantity=reserved,
    )
    session.add(row)
    session.commit()
    return row


def slot(product_id, size=None, color=None):
    """Re-read a stock row from the database, bypassing the identity map."""
    db.session.expire_all()
    return stock_ledger.get_slot(product_id, size, color)


@pytest.fixture(scope='function')
def product(db_session):
    """Product with general stock 20, nothing reserved."""
    p = make_product(db_session)
    add_stock(db_session, p.id, 20)
    return p


@pytest.fixture(scope='function')
def sized_product(db_session):
    """Product stocked only by size: S=2, M=5, L=8."""
    p = make_product(db_session, name="Ankara Dress", price_cents=9000)
    add_stock(db_session, p.id, 2, size="S")
    add_stock(db_session, p.id, 5, size="M")
    add_stock(db_session, p.id, 8, size="L")
    return p


@pytest.fixture(scope='function')
def untracked_product(db_session):
    """Product with no stock rows at all."""
    return make_product(db_session, name="Gift Card", price_cents=1000)


def identity_headers(email: str, role: str | None = None, user_id: str | None = None) -> dict:
    headers = {"X-User-Email": email}
    if role:
        headers["X-User-Role"] = role
    if user_id:
        headers["X-User-Id"] = user_id
    return headers


@pytest.fixture
def admin_headers():
    return identity_headers(PRIVILEGED_EMAIL, user_id="admin-1")


@pytest.fixture
def manager_headers():
    return identity_headers("manager@boutique.test", "manager", "manager-1")


@pytest.fixture
def seller_headers():
    return identity_headers("seller@boutique.test", "seller", "seller-1")


@pytest.fixture
def customer_headers():
    return identity_headers("shopper@example.com", user_id="cust-1")
