"""
Pytest fixtures for print shop backend tests.

Provides the application on an in-memory database, a per-test table wipe,
staff users for every role, customers, catalog products with pricing rules
and a few order helpers.
"""

import pytest

from printshop import create_app
from printshop.extensions import db
from printshop.models.auth import ROLE_ADMIN, ROLE_COUNTER, ROLE_MANAGER, ROLE_PRODUCTION, ROLE_QA
from printshop.models.customers import CUSTOMER_CREDIT, CUSTOMER_REGULAR
from printshop.services import customers_service, order_service, products_service, users_service


BUSINESS_CARD_TIERS = [
    {"min_qty": 1, "max_qty": 100, "price": "1.00"},
    {"min_qty": 101, "max_qty": 500, "price": "0.75"},
    {"min_qty": 501, "max_qty": 1000, "price": "0.60"},
    {"min_qty": 1001, "max_qty": None, "price": "0.50"},
]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TAX_RATE_PERCENT': '10',
        'DISCOUNT_APPROVAL_THRESHOLD_PERCENT': '15',
        'DEFAULT_CREDIT_PERIOD_DAYS': 30,
        'RETRY_ATTEMPTS': 1,
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


# =============================================================================
# USERS
# =============================================================================

@pytest.fixture(scope='function')
def admin(db_session):
    return users_service.create_user("admin", "Ada Admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager(db_session):
    return users_service.create_user("manager", "Max Manager", ROLE_MANAGER)


@pytest.fixture(scope='function')
def counter(db_session):
    return users_service.create_user("counter", "Cory Counter", ROLE_COUNTER)


@pytest.fixture(scope='function')
def operator(db_session):
    return users_service.create_user("operator", "Pat Press", ROLE_PRODUCTION)


@pytest.fixture(scope='function')
def inspector(db_session):
    return users_service.create_user("inspector", "Quinn Check", ROLE_QA)


@pytest.fixture(scope='function')
def actor_headers():
    """Helper to create the actor header for a user."""
    def _headers(user) -> dict:
        return {'X-User-Id': str(user.id)}
    return _headers


# =============================================================================
# CUSTOMERS
# =============================================================================

@pytest.fixture(scope='function')
def credit_customer(db_session):
    """Credit customer with a 1000.00 limit and 30-day terms."""
    return customers_service.create_customer(
        "Acme Stationers",
        customer_type=CUSTOMER_CREDIT,
        credit_limit="1000.00",
        credit_period_days=30,
    )


@pytest.fixture(scope='function')
def regular_customer(db_session):
    return customers_service.create_customer("Jo Regular", customer_type=CUSTOMER_REGULAR)


# =============================================================================
# CATALOG
# =============================================================================

@pytest.fixture(scope='function')
def business_cards(db_session):
    """Service product priced by quantity tiers."""
    product = products_service.create_product("BC-STD", "Business Cards", "service")
    products_service.create_pricing_rule(product.id, "quantity_tier", {"tiers": BUSINESS_CARD_TIERS})
    return product


@pytest.fixture(scope='function')
def banner(db_session):
    """Dimension product: 2.50 per sqft, billed for at least 4 sqft, at most 100 sqft."""
    product = products_service.create_product("BAN-VINYL", "Vinyl Banner", "dimension")
    products_service.create_pricing_rule(
        product.id,
        "dimension",
        {"unit": "sqft", "base_price": "2.50", "min_size": "4", "max_size": "100"},
    )
    return product


@pytest.fixture(scope='function')
def paper(db_session):
    """Inventory product with a fixed price; never needs production."""
    product = products_service.create_product("PAP-A4", "A4 Paper Ream", "inventory", stock_qty=50)
    products_service.create_pricing_rule(product.id, "fixed", {"price": "5.00"})
    return product


# =============================================================================
# ORDER HELPERS
# =============================================================================

@pytest.fixture(scope='function')
def make_order(counter):
    """Factory for DRAFT orders created by the counter user."""
    def _make(items, customer=None, payment_terms="immediate"):
        return order_service.create_order(
            counter.id,
            customer_id=customer.id if customer is not None else None,
            items=items,
            payment_terms=payment_terms,
        )
    return _make
