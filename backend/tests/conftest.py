"""
Pytest fixtures for barbertab backend tests.

Provides test database setup, catalog fixtures, and test client.
"""

from datetime import datetime

import pytest
from barbertab import create_app
from barbertab.extensions import db
from barbertab.models import Client, Product, Service, Staff


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def barber(db_session):
    """Active barber (S1)."""
    staff = Staff(name="Rafael", role="Barber", commission_rate_bps=4000)
    db_session.add(staff)
    db_session.commit()
    return staff


@pytest.fixture(scope='function')
def second_barber(db_session):
    staff = Staff(name="Bruno", role="Barber", commission_rate_bps=4000)
    db_session.add(staff)
    db_session.commit()
    return staff


@pytest.fixture(scope='function')
def haircut(db_session):
    """Corte: 45.00, 30 minutes."""
    service = Service(name="Corte", category="Cabelo", price_cents=4500, duration_minutes=30)
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture(scope='function')
def pomade(db_session):
    """Retail product priced 20.00 with 10 on hand."""
    product = Product(
        sku="POM-001",
        name="Pomada Modeladora",
        price_cents=2000,
        cost_price_cents=900,
        stock_quantity=10,
        minimum_stock=2,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def regular_client(db_session):
    client = Client(name="Ana Souza", phone="11 99999-0000")
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture(scope='function')
def booking_time():
    return datetime(2026, 10, 20, 10, 0)
