"""
Pytest fixtures for optiledger backend tests.

Provides an in-memory database per test, a test client, and small
factories for clients, orders and an open cash register.
"""

import pytest

from optiledger import create_app
from optiledger.extensions import db
from optiledger.models import Customer, LegacyClient, Order
from optiledger.services import register_service


ACTOR = "cashier-1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BOLETO_API_BASE_URL': 'https://boletos.test',
        'BOLETO_ACCESS_TOKEN': 'static-test-token',
        'BOLETO_COOPERATIVE_CODE': '0001',
        'BOLETO_POST_CODE': '02',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test; the schema is kept."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {"X-User-Id": ACTOR}


@pytest.fixture
def open_register(db_session):
    """An open session with R$ 100,00 in the drawer."""
    return register_service.open_register(10000, ACTOR)


@pytest.fixture
def make_customer(db_session):
    def _make(name="Maria Silva", cpf="12345678909", **kwargs):
        customer = Customer(name=name, cpf=cpf, **kwargs)
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture
def make_legacy_client(db_session):
    def _make(name="Jose Souza", cpf="98765432100", **kwargs):
        legacy = LegacyClient(name=name, cpf=cpf, **kwargs)
        db_session.add(legacy)
        db_session.commit()
        return legacy
    return _make


@pytest.fixture
def make_order(db_session):
    def _make(customer=None, legacy_client=None, final_price_cents=10000, payment_entry_cents=0, **kwargs):
        order = Order(
            customer_id=customer.id if customer else None,
            legacy_client_id=legacy_client.id if legacy_client else None,
            total_price_cents=final_price_cents,
            discount_cents=0,
            final_price_cents=final_price_cents,
            payment_entry_cents=payment_entry_cents,
            **kwargs,
        )
        db_session.add(order)
        db_session.commit()
        return order
    return _make

