"""
Pytest fixtures for stockbill backend tests.

Provides test database setup, catalog/card fixtures, and test client.
"""

from datetime import datetime

import pytest

from stockbill import create_app
from stockbill.extensions import db
from stockbill.models import Product, Card
from stockbill.services.inventory_service import replenish_stock


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
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
def product(db_session):
    """Active product with no stock."""
    product = Product(sku="TV-55", name="Televisor 55", stock=0, min_stock=2, price_cents=150000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def card(db_session):
    """Card closing on the 20th, due on the 5th."""
    card = Card(alias="Visa Galicia", closing_day=20, due_day=5)
    db_session.add(card)
    db_session.commit()
    return card


@pytest.fixture(scope='function')
def stocked_product(product):
    """
    Product with three lots:
      lot A: 5 units @ 1000, received 2026-01-10
      lot B: 3 units @ 1500, received 2026-02-10
      lot C: 4 units @ 1200, received 2026-02-10 (same instant as B)
    """
    lots = {}
    for name, qty, cost, received in (
        ("A", 5, 1000, datetime(2026, 1, 10, 12, 0)),
        ("B", 3, 1500, datetime(2026, 2, 10, 12, 0)),
        ("C", 4, 1200, datetime(2026, 2, 10, 12, 0)),
    ):
        result = replenish_stock(
            product_id=product.id,
            quantity=qty,
            unit_cost_cents=cost,
            received_at=received,
        )
        lots[name] = result.lot.id
    return product, lots
