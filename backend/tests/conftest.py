"""
Pytest fixtures for the adega backend tests.

Provides an in-memory database, a test client, a broadcaster that records
every publish, and small factories for catalog, customer and courier rows.
"""

from decimal import Decimal

import pytest
from adega import create_app
from adega.extensions import db
from adega.models import Address, Category, Courier, Customer, Product
from adega.services.broadcast_service import EventBroadcaster


class RecordingBroadcaster(EventBroadcaster):
    """Real broadcaster that also keeps (event, payload) for assertions."""

    def __init__(self):
        super().__init__(channel_buffer=64)
        self.published = []

    def publish(self, event, payload=None):
        self.published.append((event, payload))
        return super().publish(event, payload)

    def events(self):
        return [event for event, _ in self.published]

    def reset(self):
        self.published.clear()


@pytest.fixture(scope='session')
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture(scope='session')
def app(broadcaster):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SSE_HEARTBEAT_ENABLED': False,
        'BROADCASTER': broadcaster,
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
def db_session(app, broadcaster):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()
        broadcaster.reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_category(db_session):
    def _make(name="CERVEJAS", **kwargs):
        category = Category(name=name, **kwargs)
        db_session.add(category)
        db_session.commit()
        return category
    return _make


@pytest.fixture(scope='function')
def make_product(db_session, make_category):
    """Product with stock written directly (fixture setup, not a ledger move)."""
    def _make(name="Heineken 600ml", *, category=None, stock=10, sale_price="12.00",
              cost_price="7.00", is_prepared=False, **kwargs):
        if category is None:
            category = make_category()
        product = Product(
            category_id=category.id,
            name=name,
            stock=stock,
            sale_price=Decimal(sale_price),
            cost_price=Decimal(cost_price),
            is_prepared=is_prepared,
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def beers(make_category):
    return make_category("CERVEJAS")


@pytest.fixture(scope='function')
def caipirinhas(make_category):
    return make_category("CAIPIRINHAS")


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Maria Souza", whatsapp="11999990000")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def address(db_session, customer):
    address = Address(
        user_id=customer.id,
        street="Rua das Flores",
        number="120",
        neighborhood="Centro",
        city="Sao Paulo",
        state="SP",
        zip_code="01000-000",
    )
    db_session.add(address)
    db_session.commit()
    return address


@pytest.fixture(scope='function')
def make_courier(db_session):
    def _make(name="Joao", whatsapp="11988887777", is_active=True):
        courier = Courier(name=name, whatsapp=whatsapp, is_active=is_active)
        db_session.add(courier)
        db_session.commit()
        return courier
    return _make


@pytest.fixture(scope='function')
def courier(make_courier):
    return make_courier()


def delivery_payload(customer, address, items, **overrides) -> dict:
    """JSON body for POST /api/orders (delivery)."""
    payload = {
        'orderType': 'delivery',
        'userId': customer.id,
        'addressId': address.id,
        'paymentMethod': 'pix',
        'deliveryFee': 5,
        'items': [{'productId': p.id, 'quantity': q} for p, q in items],
    }
    payload.update(overrides)
    return payload


def counter_payload(items, **overrides) -> dict:
    """JSON body for POST /api/orders (counter sale)."""
    payload = {
        'orderType': 'counter',
        'paymentMethod': 'cash',
        'customerName': 'Balcao',
        'items': [{'productId': p.id, 'quantity': q} for p, q in items],
    }
    payload.update(overrides)
    return payload
