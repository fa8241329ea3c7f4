"""
Pytest fixtures for pharmacy backend tests.

Provides the test app (in-memory SQLite), a clean database per test,
medicine factories and actor headers.
"""

import pytest
from pharmacy import create_app
from pharmacy.extensions import db
from pharmacy.services import stock_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LOG_LEVEL': 'DEBUG',
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
def make_medicine(db_session):
    """
    Factory creating medicines through the stock ledger.

    Returns the created MedicineSnapshot.
    """
    def _make(name="Paracetamol", quantity=20, price="1.50", expiry_date=None, actor_id="setup"):
        medicine_id = stock_service.create_medicine(
            {
                "name": name,
                "quantity": quantity,
                "price": price,
                "expiry_date": expiry_date,
            },
            actor_id,
        )
        return stock_service.get_medicine(medicine_id)

    return _make


@pytest.fixture(scope='function')
def paracetamol(make_medicine):
    """Paracetamol, 20 in stock at 1.50."""
    return make_medicine(name="Paracetamol", quantity=20, price="1.50")
