"""
Pytest fixtures for storepos backend tests.

Provides an in-memory database, the Flask test client, and small factories
for products and sales.
"""

import pytest
from sqlalchemy import update

from storepos import create_app
from storepos.extensions import db
from storepos.models import Product, Sale
from storepos.services import sales_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'SALE_CODE_PREFIX': 'AS',
    'SALE_RETRY_BACKOFF': 0,
    'BCRYPT_ROUNDS': 4,
}


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
def make_product(db_session):
    """Factory: create a committed product and return its id."""
    counter = {"n": 0}

    def _make(stock=10, sale_price_cents=1000, purchase_price_cents=600, name=None, sku=None):
        counter["n"] += 1
        product = Product(
            sku=sku or f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            sale_price_cents=sale_price_cents,
            purchase_price_cents=purchase_price_cents,
            stock=stock,
        )
        db_session.add(product)
        db_session.commit()
        return product.id

    return _make


@pytest.fixture(scope='function')
def sell(db_session):
    """Factory: record a sale of {product_id: quantity} and return the Sale."""
    def _sell(lines: dict, customer_name="Walk-in", operator_id="1"):
        items = [
            {"productId": pid, "quantity": qty, "unitPrice": 1000}
            for pid, qty in lines.items()
        ]
        return sales_service.record_sale(
            customer={"name": customer_name, "contact": "555-0100", "id": "CI-1"},
            items=items,
            operator={"id": operator_id, "name": "Cashier One"},
        )

    return _sell


@pytest.fixture(scope='function')
def stock_of(db_session):
    """Read stock straight from the table, bypassing the identity map."""
    def _stock(product_id: int) -> int:
        return db_session.query(Product.stock).filter(Product.id == product_id).scalar()

    return _stock


@pytest.fixture(scope='function')
def overwrite_snapshot(db_session):
    """Simulate a historical row whose snapshot was written by another client."""
    def _overwrite(sale_id: int, raw) -> None:
        db_session.execute(update(Sale).where(Sale.id == sale_id).values(items_snapshot=raw))
        db_session.commit()
        db_session.expire_all()

    return _overwrite


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "sales: Sale recording and annulment tests")
    config.addinivalue_line("markers", "products: Product catalog tests")
    config.addinivalue_line("markers", "concurrent: Multi-threaded concurrency tests")
